"""Forecast performance measures."""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union
import logging

import numpy as np
from sklearn.metrics import (
    mean_absolute_error,
    mean_absolute_percentage_error,
    mean_squared_error,
)

from rollcast.utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Measure:
    """
    A performance measure ``(truth, response) -> scalar``.

    Attributes:
        name: Identifier
        func: Scoring function
        minimize: Whether lower scores are better
        requires_train: Whether ``func`` also takes the training series
            and the seasonal frequency (scaled measures such as MASE)
    """
    name: str
    func: Callable[..., float]
    minimize: bool = True
    requires_train: bool = False

    def __call__(
        self,
        truth: np.ndarray,
        response: np.ndarray,
        train: Optional[np.ndarray] = None,
        frequency: int = 1,
    ) -> float:
        truth = np.asarray(truth, dtype=float)
        response = np.asarray(response, dtype=float)
        if truth.shape != response.shape:
            raise ValueError(
                f"truth and response lengths differ: {truth.shape} vs {response.shape}"
            )
        if self.requires_train:
            if train is None:
                raise ValueError(f"Measure '{self.name}' needs the training series")
            return float(self.func(truth, response, np.asarray(train, dtype=float), frequency))
        return float(self.func(truth, response))


def mse(truth: np.ndarray, response: np.ndarray) -> float:
    return mean_squared_error(truth, response)


def rmse(truth: np.ndarray, response: np.ndarray) -> float:
    return np.sqrt(mean_squared_error(truth, response))


def mae(truth: np.ndarray, response: np.ndarray) -> float:
    return mean_absolute_error(truth, response)


def mape(truth: np.ndarray, response: np.ndarray) -> float:
    return mean_absolute_percentage_error(truth, response)


def smape(truth: np.ndarray, response: np.ndarray) -> float:
    """Symmetric MAPE in [0, 2]; 0/0 terms count as perfect."""
    denom = np.abs(truth) + np.abs(response)
    terms = np.divide(
        2.0 * np.abs(truth - response),
        denom,
        out=np.zeros_like(denom, dtype=float),
        where=denom != 0,
    )
    return float(np.mean(terms))


def mase(truth: np.ndarray, response: np.ndarray, train: np.ndarray, frequency: int = 1) -> float:
    """
    Mean absolute scaled error.

    The scale is the in-sample MAE of the seasonal naive forecast on the
    training series, falling back to lag 1 when the training series is
    shorter than one season.
    """
    train = train[~np.isnan(train)]
    lag = frequency if len(train) > frequency else 1
    if len(train) <= lag:
        logger.warning("Training series too short to scale MASE")
        return np.nan
    scale = np.mean(np.abs(train[lag:] - train[:-lag]))
    if scale == 0:
        logger.warning("MASE scale is zero for a constant training series")
        return np.nan
    return float(np.mean(np.abs(truth - response)) / scale)


MEASURES: Dict[str, Measure] = {
    "mse": Measure("mse", mse),
    "rmse": Measure("rmse", rmse),
    "mae": Measure("mae", mae),
    "mape": Measure("mape", mape),
    "smape": Measure("smape", smape),
    "mase": Measure("mase", mase, requires_train=True),
}


def get_measure(measure: Union[str, Measure, Callable[..., float]]) -> Measure:
    """Resolve a name, Measure or plain ``(truth, response)`` callable to a Measure."""
    if isinstance(measure, Measure):
        return measure
    if isinstance(measure, str):
        try:
            return MEASURES[measure]
        except KeyError:
            raise ConfigurationError(
                f"Unknown measure '{measure}', available: {available_measures()}"
            )
    if callable(measure):
        return Measure(getattr(measure, "__name__", "custom"), measure)
    raise ConfigurationError(f"Cannot use {measure!r} as a measure")


def available_measures() -> List[str]:
    return sorted(MEASURES)
