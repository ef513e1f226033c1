"""Core data structures for series handled by the meta-learning pipeline."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np


@dataclass(frozen=True, eq=False)
class TimeSeries:
    """
    Immutable univariate time series with its seasonal period.

    Attributes:
        values: Ordered observations (stored as a read-only float array)
        period: Seasonal period, 1 for non-seasonal data
        horizon: Optional number of trailing observations held out as the test segment
        series_id: Identifier used in batch results and feature tables
        metadata: Free-form metadata (source, category, ...)
    """
    values: np.ndarray
    period: int = 1
    horizon: Optional[int] = None
    series_id: str = "series"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate and freeze the observations."""
        values = np.array(self.values, dtype=float, copy=True)
        if values.ndim != 1:
            raise ValueError(f"TimeSeries values must be one-dimensional, got shape {values.shape}")
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

        if isinstance(self.period, bool) or int(self.period) != self.period or self.period < 1:
            raise ValueError(f"period must be an integer >= 1, got {self.period!r}")
        object.__setattr__(self, "period", int(self.period))

        if self.horizon is not None:
            if int(self.horizon) != self.horizon or not 0 < self.horizon < len(values):
                raise ValueError(
                    f"horizon must be an integer in (0, {len(values)}), got {self.horizon!r}"
                )
            object.__setattr__(self, "horizon", int(self.horizon))

    def __len__(self) -> int:
        return len(self.values)

    @property
    def train(self) -> np.ndarray:
        """Observations available for fitting (everything before the held-out horizon)."""
        if self.horizon is None:
            return self.values
        return self.values[: len(self.values) - self.horizon]

    @property
    def test(self) -> np.ndarray:
        """Held-out observations, empty when no horizon is set."""
        if self.horizon is None:
            return self.values[:0]
        return self.values[len(self.values) - self.horizon:]

    def training_series(self) -> "TimeSeries":
        """Return the training segment as a series without a split."""
        return TimeSeries(
            values=self.train,
            period=self.period,
            series_id=self.series_id,
            metadata=dict(self.metadata),
        )

    def __repr__(self) -> str:
        return (
            f"TimeSeries(series_id='{self.series_id}', n={len(self)}, "
            f"period={self.period}, horizon={self.horizon})"
        )
