"""Exception types and failure capture for per-series processing."""

import logging
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict

logger = logging.getLogger(__name__)


class MetaForecastError(Exception):
    """Base class for all metaforecast errors."""


class InsufficientDataError(MetaForecastError):
    """Series is too short (or otherwise unusable) for the requested features or period."""


class FeatureDimensionMismatchError(MetaForecastError):
    """Feature vector does not match the schema a model was trained on."""


class MismatchedModelSetError(MetaForecastError):
    """Weights reference a different set of candidate models than was forecast."""


class TrainingConvergenceError(MetaForecastError):
    """The classifier or booster back-end failed to produce a usable model."""


_MAX_LOCAL_REPR = 500


@dataclass
class RecoveryContext:
    """Captures the context of a failure for a single unit of work."""
    series_id: str
    timestamp: float = field(default_factory=time.time)
    exception_type: str = ""
    exception_message: str = ""
    stack_trace: str = ""
    local_variables: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, series_id: str, exc: BaseException) -> "RecoveryContext":
        """
        Create context from an exception.
        Captures locals from the frame where the exception was raised.
        """
        stack_trace = "".join(traceback.format_tb(exc.__traceback__))

        locals_repr = {}
        if exc.__traceback__:
            ptr = exc.__traceback__
            while ptr.tb_next:
                ptr = ptr.tb_next
            frame = ptr.tb_frame

            for k, v in frame.f_locals.items():
                try:
                    val_str = str(v)
                except Exception:
                    val_str = "<unprintable>"
                if len(val_str) > _MAX_LOCAL_REPR:
                    val_str = val_str[:_MAX_LOCAL_REPR] + "..."
                locals_repr[k] = val_str

        return cls(
            series_id=series_id,
            exception_type=type(exc).__name__,
            exception_message=str(exc),
            stack_trace=stack_trace,
            local_variables=locals_repr,
        )

    def summary(self) -> str:
        """One-line description of the failure."""
        return f"{self.series_id}: {self.exception_type}: {self.exception_message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "series_id": self.series_id,
            "timestamp": self.timestamp,
            "exception_type": self.exception_type,
            "exception_message": self.exception_message,
            "stack_trace": self.stack_trace,
            "local_variables": self.local_variables,
        }
