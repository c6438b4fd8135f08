"""Reference baseline backends.

Simple benchmark forecasters, each applied independently to every target
column. All of them support incremental update.
"""

import logging
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from rollcast.data.structs import TimeSeriesTask
from rollcast.models.base_model import ForecastBackend, Model, register_backend
from rollcast.utils.error_handling import BackendTrainError

logger = logging.getLogger(__name__)


def _target_values(task: TimeSeriesTask) -> np.ndarray:
    values = task.target_frame().to_numpy(dtype=float)
    if np.isnan(values).all(axis=0).any():
        raise BackendTrainError(f"A target of task '{task.task_id}' has no observed values")
    return values


@register_backend("mean")
class MeanBackend(ForecastBackend):
    """Forecasts the mean of all observed values."""

    supports_update = True

    def history_rows(self, frequency: int) -> Optional[int]:
        return 1

    def _fit(self, task: TimeSeriesTask) -> Dict[str, np.ndarray]:
        values = _target_values(task)
        return {
            "sum": np.nansum(values, axis=0),
            "count": (~np.isnan(values)).sum(axis=0),
        }

    def _forecast(self, model: Model, steps: int) -> np.ndarray:
        mean = model.state["sum"] / model.state["count"]
        return np.tile(mean, (steps, 1))

    def _update_state(self, model: Model, new_targets: pd.DataFrame) -> Dict[str, np.ndarray]:
        values = new_targets.to_numpy(dtype=float)
        return {
            "sum": model.state["sum"] + np.nansum(values, axis=0),
            "count": model.state["count"] + (~np.isnan(values)).sum(axis=0),
        }


@register_backend("naive")
class NaiveBackend(ForecastBackend):
    """Random walk: repeats the last observation."""

    supports_update = True

    def history_rows(self, frequency: int) -> Optional[int]:
        return 1

    def _fit(self, task: TimeSeriesTask) -> np.ndarray:
        return _target_values(task)[-1]

    def _forecast(self, model: Model, steps: int) -> np.ndarray:
        return np.tile(model.state, (steps, 1))

    def _update_state(self, model: Model, new_targets: pd.DataFrame) -> np.ndarray:
        return new_targets.to_numpy(dtype=float)[-1]


@register_backend("seasonal_naive")
class SeasonalNaiveBackend(ForecastBackend):
    """Repeats the last observed seasonal cycle.

    Hyperparameters:
        period: Season length, defaults to the task frequency
    """

    supports_update = True

    def _period(self, frequency: int) -> int:
        return int(self.hyperparameters.get("period") or frequency)

    def history_rows(self, frequency: int) -> Optional[int]:
        return self._period(frequency)

    def _fit(self, task: TimeSeriesTask) -> np.ndarray:
        period = self._period(task.frequency)
        values = _target_values(task)
        if len(values) < period:
            raise BackendTrainError(
                f"seasonal_naive needs a full season of {period} rows, got {len(values)}"
            )
        return values[-period:]

    def _forecast(self, model: Model, steps: int) -> np.ndarray:
        season = model.state
        positions = np.arange(steps) % len(season)
        return season[positions]

    def _update_state(self, model: Model, new_targets: pd.DataFrame) -> np.ndarray:
        combined = np.vstack([model.state, new_targets.to_numpy(dtype=float)])
        return combined[-len(model.state):]


@register_backend("drift")
class DriftBackend(ForecastBackend):
    """Random walk with drift estimated from the first and last observations."""

    supports_update = True

    def history_rows(self, frequency: int) -> Optional[int]:
        return 1

    def _fit(self, task: TimeSeriesTask) -> Dict[str, Any]:
        values = _target_values(task)
        return {"first": values[0], "last": values[-1], "n": len(values)}

    def _forecast(self, model: Model, steps: int) -> np.ndarray:
        state = model.state
        if state["n"] > 1:
            slope = (state["last"] - state["first"]) / (state["n"] - 1)
        else:
            slope = np.zeros_like(state["last"])
        steps_ahead = np.arange(1, steps + 1).reshape(-1, 1)
        return state["last"] + steps_ahead * slope

    def _update_state(self, model: Model, new_targets: pd.DataFrame) -> Dict[str, Any]:
        values = new_targets.to_numpy(dtype=float)
        return {
            "first": model.state["first"],
            "last": values[-1],
            "n": model.state["n"] + len(values),
        }
