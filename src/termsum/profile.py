'''Profile class definition
One-dimensional scans of a CustomSummation along a single argument'''

import numpy as np
import pandas as pd
from typing import Optional, Sequence, TYPE_CHECKING
import plotly.graph_objects as go
from .config import config
from .errors import ArityMismatch, IndexOutOfRange
if TYPE_CHECKING:
    from .summation import CustomSummation

class Profile:
    """
    Value and derivative of a summation along one argument.

    All other arguments are held at ``base_arguments``. Samples are computed
    on construction, so later changes to the summation do not affect an
    existing Profile.

    Attributes:
        summation: CustomSummation that was scanned
        which: Index of the scanned argument
        grid: Sampled values of the scanned argument
        values: Function value at each sample
        derivatives: Partial derivative along the scanned argument
    """
    # ========== CONSTRUCTION ==========
    def __init__(self, summation: "CustomSummation", base_arguments: Sequence[float],
                 which: int, start: float, stop: float,
                 n_points: Optional[int] = None):
        base = np.array(base_arguments, dtype=float)
        if base.ndim != 1 or len(base) != summation.num_arguments:
            raise ArityMismatch(
                f"Expected {summation.num_arguments} base arguments, "
                f"got shape {base.shape}"
            )
        if not 0 <= which < summation.num_arguments:
            raise IndexOutOfRange(
                f"Scan index {which} out of range [0, {summation.num_arguments})"
            )
        if n_points is None:
            n_points = config.DEFAULT_SCAN_POINTS
        if n_points < 2:
            raise ValueError(f"A profile needs at least 2 points, got {n_points}")

        self._summation = summation
        self._base = base
        self._which = which
        self._grid = np.linspace(float(start), float(stop), n_points)
        self._values = np.empty(n_points)
        self._derivatives = np.empty(n_points)
        arguments = base.copy()
        for k, x in enumerate(self._grid):
            arguments[which] = x
            self._values[k] = summation.evaluate(arguments)
            self._derivatives[k] = summation.evaluate_derivative(arguments, which)

    # ========== PROPERTY ACCESS ==========
    @property
    def summation(self) -> "CustomSummation":
        return self._summation

    @property
    def which(self) -> int:
        return self._which

    @property
    def base_arguments(self) -> np.ndarray:
        return self._base.copy()

    @property
    def grid(self) -> np.ndarray:
        return self._grid.copy()

    @property
    def values(self) -> np.ndarray:
        return self._values.copy()

    @property
    def derivatives(self) -> np.ndarray:
        return self._derivatives.copy()

    # ========== UTILITY METHODS ==========
    def to_dataframe(self) -> pd.DataFrame:
        """
        Export the profile to a pandas DataFrame.

        Returns:
            DataFrame with columns 'argument', 'value' and 'derivative'
        """
        data = {
            'argument': self._grid,
            'value': self._values,
            'derivative': self._derivatives,
        }
        return pd.DataFrame(data)

    def __len__(self):
        return len(self._grid)

    def __repr__(self):
        return (f"Profile(which={self._which}, "
                f"range=[{self._grid[0]}, {self._grid[-1]}], n_points={len(self._grid)})")

    # ========== PLOTTING ==========
    def plot(self, show_derivative: bool = True,
             value_color: Optional[str] = None,
             derivative_color: Optional[str] = None) -> go.Figure:
        """
        Plot the value (and optionally the derivative) against the argument.

        Parameters:
            show_derivative: Add the derivative on a secondary y axis (default: True)
            value_color: Color of the value line (default: config.DEFAULT_VALUE_COLOR)
            derivative_color: Color of the derivative line
                (default: config.DEFAULT_DERIVATIVE_COLOR)

        Returns:
            Plotly Figure object
        """
        value_color = value_color or config.DEFAULT_VALUE_COLOR
        derivative_color = derivative_color or config.DEFAULT_DERIVATIVE_COLOR
        label = f"argument {self._which}"

        fig = go.Figure()
        fig.add_trace(go.Scatter(
            x=self._grid,
            y=self._values,
            mode='lines',
            line=dict(color=value_color, width=2),
            name='Value',
            hovertemplate='x: %{x:.6f}<br>f: %{y:.6f}<extra></extra>'
        ))
        if show_derivative:
            fig.add_trace(go.Scatter(
                x=self._grid,
                y=self._derivatives,
                mode='lines',
                line=dict(color=derivative_color, width=2, dash='dash'),
                name='Derivative',
                yaxis='y2',
                hovertemplate='x: %{x:.6f}<br>df/dx: %{y:.6f}<extra></extra>'
            ))

        fig.update_layout(
            xaxis_title=label,
            yaxis=dict(title='Value'),
            title=f"Profile of {self._summation.expression}",
            showlegend=True
        )
        if show_derivative:
            fig.update_layout(
                yaxis2=dict(title='Derivative', overlaying='y', side='right')
            )
        return fig
