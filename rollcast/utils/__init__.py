"""Errors, logging, configuration and worker-pool utilities."""

from rollcast.utils.error_handling import (
    BackendPredictError,
    BackendTrainError,
    ConfigurationError,
    ErrorPolicy,
    HorizonTooShortError,
    IncrementalUpdateMismatchError,
    SplitFailure,
)

__all__ = [
    "BackendPredictError",
    "BackendTrainError",
    "ConfigurationError",
    "ErrorPolicy",
    "HorizonTooShortError",
    "IncrementalUpdateMismatchError",
    "SplitFailure",
]
