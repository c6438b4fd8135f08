"""Time series tasks and rolling-origin resampling."""

from .structs import FeatureTask, TaskType, TimeSeriesTask
from .splitters import (
    ForecastHoldoutResampler,
    RollingOriginResampler,
    Split,
    Window,
    generate_splits,
)

__all__ = [
    "FeatureTask",
    "TaskType",
    "TimeSeriesTask",
    "ForecastHoldoutResampler",
    "RollingOriginResampler",
    "Split",
    "Window",
    "generate_splits",
]
