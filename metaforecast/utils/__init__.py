"""Logging, configuration, error types, serialization and parallel helpers."""

from metaforecast.utils.error_handling import (
    MetaForecastError,
    InsufficientDataError,
    FeatureDimensionMismatchError,
    MismatchedModelSetError,
    TrainingConvergenceError,
    RecoveryContext,
)
from metaforecast.utils.parallel import BatchProcessor, BatchResult

__all__ = [
    "MetaForecastError",
    "InsufficientDataError",
    "FeatureDimensionMismatchError",
    "MismatchedModelSetError",
    "TrainingConvergenceError",
    "RecoveryContext",
    "BatchProcessor",
    "BatchResult",
]
