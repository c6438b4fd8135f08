"""Pytest configuration and shared fixtures."""

import logging

import numpy as np
import pandas as pd
import pytest

from rollcast.data.structs import TimeSeriesTask
from rollcast.utils.logging_config import QUIET_LOGGERS
from tests.helpers import make_seasonal_frame


@pytest.fixture
def seasonal_frame():
    return make_seasonal_frame()


@pytest.fixture
def seasonal_task(seasonal_frame):
    """200 daily points with a weekly cycle."""
    return TimeSeriesTask(seasonal_frame, targets="y", frequency=7, task_id="seasonal")


@pytest.fixture
def trend_task():
    """Noise-free linear trend y = 2t + 1 on an integer index."""
    t = np.arange(60)
    frame = pd.DataFrame({"y": 2.0 * t + 1.0}, index=pd.Index(t, name="t"))
    return TimeSeriesTask(frame, targets="y", frequency=1, task_id="trend")


@pytest.fixture
def multi_target_task():
    rng = np.random.default_rng(7)
    dates = pd.date_range(start="2022-01-01", periods=80, freq="D")
    frame = pd.DataFrame({
        "a": np.cumsum(rng.normal(0, 1, 80)),
        "b": 10 + np.cumsum(rng.normal(0, 1, 80)),
    }, index=dates)
    return TimeSeriesTask(frame, targets=["a", "b"], frequency=7, task_id="multi")


@pytest.fixture
def restore_root_logger():
    """Undo setup_logging's handler swap after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    library_levels = {name: logging.getLogger(name).level for name in QUIET_LOGGERS}
    yield
    for name, library_level in library_levels.items():
        logging.getLogger(name).setLevel(library_level)
    for handler in root.handlers:
        handler.close()
    root.handlers = handlers
    root.setLevel(level)
