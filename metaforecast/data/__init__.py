"""Series containers, corpus loading, and simulation-based augmentation."""

from .structs import TimeSeries
from .loaders import SeriesLoader, ValidationResult
from .simulation import SeriesSimulator

__all__ = [
    "TimeSeries",
    "SeriesLoader",
    "ValidationResult",
    "SeriesSimulator",
]
