"""Error types and failure-policy utilities."""

import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class RollcastError(Exception):
    """Base class for all errors raised by rollcast."""


class ConfigurationError(RollcastError, ValueError):
    """Raised when an evaluation cannot produce any meaningful split.

    Always fatal; never downgraded by an error policy.
    """


class IncrementalUpdateMismatchError(RollcastError, ValueError):
    """Raised when appended rows do not contiguously continue a series."""


class SplitError(RollcastError):
    """Base for errors that are scoped to a single split and backend."""

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        split_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.backend = backend
        self.split_index = split_index

    def with_context(
        self, backend: Optional[str] = None, split_index: Optional[int] = None
    ) -> "SplitError":
        """Attach backend/split context, keeping values already set."""
        if self.backend is None:
            self.backend = backend
        if self.split_index is None:
            self.split_index = split_index
        return self

    def __str__(self) -> str:
        where = []
        if self.split_index is not None:
            where.append(f"split {self.split_index}")
        if self.backend is not None:
            where.append(f"backend '{self.backend}'")
        if where:
            return f"[{', '.join(where)}] {self.message}"
        return self.message


class HorizonTooShortError(SplitError):
    """Raised when a prediction is shorter than the test range it is scored on."""


class BackendError(SplitError):
    """Base for failures inside a forecasting backend."""


class BackendTrainError(BackendError):
    """Raised when a backend fails to train (convergence, numerical failure)."""


class BackendPredictError(BackendError):
    """Raised when a backend fails to produce a forecast."""


class ErrorPolicy(str, Enum):
    """What to do when a backend fails on one split."""
    FAIL_FAST = "fail"
    WARN = "warn"

    @classmethod
    def parse(cls, value: Any) -> "ErrorPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown error policy '{value}', expected 'fail' or 'warn'"
            )


@dataclass
class SplitFailure:
    """Record of a split that was skipped under the warn policy."""
    split_index: Optional[int]
    backend: Optional[str]
    exception_type: str
    exception_message: str
    stack_trace: str = ""
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_exception(cls, exc: Exception) -> "SplitFailure":
        """Create a failure record from a split-scoped exception."""
        return cls(
            split_index=getattr(exc, "split_index", None),
            backend=getattr(exc, "backend", None),
            exception_type=type(exc).__name__,
            exception_message=getattr(exc, "message", str(exc)),
            stack_trace="".join(traceback.format_tb(exc.__traceback__)),
        )

    def describe(self) -> str:
        return (
            f"split {self.split_index} skipped: backend '{self.backend}' "
            f"raised {self.exception_type}: {self.exception_message}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "split_index": self.split_index,
            "backend": self.backend,
            "exception_type": self.exception_type,
            "exception_message": self.exception_message,
            "stack_trace": self.stack_trace,
            "timestamp": self.timestamp,
        }
