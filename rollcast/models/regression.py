"""
Lagged-target regression backend.

Turns the forecasting task into a supervised one with LagDiffFeaturizer
(lags of the, optionally differenced, target as features), fits a
scikit-learn or XGBoost regressor per target, and forecasts recursively.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import xgboost as xgb
from sklearn.linear_model import LinearRegression, Ridge

from rollcast.data.structs import TimeSeriesTask
from rollcast.features.engineering import (
    LagDiffFeaturizer,
    LagSpec,
    difference,
    integrate,
    to_supervised,
)
from rollcast.models.base_model import ForecastBackend, Model, register_backend
from rollcast.utils.error_handling import BackendTrainError, ConfigurationError

logger = logging.getLogger(__name__)

ESTIMATORS = ("linear", "ridge", "xgboost")


@register_backend("lagged_regression")
class LaggedRegressionBackend(ForecastBackend):
    """
    Recursive multi-step regression on lagged targets.

    Hyperparameters:
        lags: Row lags used as features (default (1, 2, 3))
        seasonal_lags: Lags in seasonal cycles (default ())
        differences: Difference order of the modelled series (default 0)
        estimator: 'linear', 'ridge' or 'xgboost'
        alpha: Ridge regularisation strength
        estimator_params: Extra keyword arguments for the estimator
        min_train_rows: Minimum supervised rows required to fit (default 5)

    ``update`` appends observations to the stored history without refitting,
    so the next forecast starts from the new origin.
    """

    supports_update = True

    def __init__(self, **hyperparameters: Any):
        super().__init__(**hyperparameters)
        self.estimator_name = self.hyperparameters.get("estimator", "linear")
        if self.estimator_name not in ESTIMATORS:
            raise ConfigurationError(
                f"Unknown estimator '{self.estimator_name}', expected one of {ESTIMATORS}"
            )
        self.lag_spec = LagSpec(
            lags=tuple(self.hyperparameters.get("lags", (1, 2, 3))),
            seasonal_lags=tuple(self.hyperparameters.get("seasonal_lags", ())),
            differences=self.hyperparameters.get("differences", 0),
            pad_missing=False,
        )
        self.min_train_rows = int(self.hyperparameters.get("min_train_rows", 5))

    def history_rows(self, frequency: int) -> Optional[int]:
        return self.lag_spec.history_length(frequency)

    def _make_estimator(self):
        params = dict(self.hyperparameters.get("estimator_params", {}))
        if self.estimator_name == "ridge":
            return Ridge(alpha=self.hyperparameters.get("alpha", 1.0), **params)
        if self.estimator_name == "xgboost":
            params.setdefault("n_estimators", 100)
            params.setdefault("max_depth", 6)
            params.setdefault("learning_rate", 0.1)
            # Single thread per fit; parallelism happens across splits
            params.setdefault("n_jobs", 1)
            return xgb.XGBRegressor(objective="reg:squarederror", **params)
        return LinearRegression(**params)

    def _feature_columns(self, target: str, frequency: int) -> List[str]:
        order = self.lag_spec.differences
        return [
            self.lag_spec.column_name(target, lag, order)
            for lag in self.lag_spec.offsets(frequency)
        ]

    def _fit(self, task: TimeSeriesTask) -> Dict[str, Tuple[Any, List[str]]]:
        featurizer = LagDiffFeaturizer(self.lag_spec)
        order = self.lag_spec.differences
        state: Dict[str, Tuple[Any, List[str]]] = {}

        for target in task.targets:
            single = TimeSeriesTask(
                task.target_frame()[[target]], targets=target, frequency=task.frequency
            )
            if single.n_rows <= self.lag_spec.history_length(task.frequency):
                raise BackendTrainError(
                    f"{single.n_rows} rows cannot cover {self.lag_spec.history_length(task.frequency)} "
                    f"rows of lag history"
                )
            feature_task = featurizer.featurize(single)
            X, _ = to_supervised(feature_task, target)
            columns = self._feature_columns(target, task.frequency)
            # Model the highest-order difference of the target
            y = difference(single.data[target], order).loc[X.index]
            mask = y.notna()
            X, y = X.loc[mask, columns], y[mask]
            if len(X) < self.min_train_rows:
                raise BackendTrainError(
                    f"Only {len(X)} complete training rows for target '{target}', "
                    f"need {self.min_train_rows}"
                )

            estimator = self._make_estimator()
            estimator.fit(X, y)
            state[target] = (estimator, columns)
            logger.debug(f"Fitted {self.estimator_name} on {len(X)} rows for target '{target}'")

        return state

    def _forecast(self, model: Model, steps: int) -> np.ndarray:
        order = self.lag_spec.differences
        offsets = self.lag_spec.offsets(model.frequency)
        forecasts = np.empty((steps, len(model.targets)))

        for j, target in enumerate(model.targets):
            estimator, columns = model.state[target]
            levels = list(model.history[target].to_numpy(dtype=float))
            for step in range(steps):
                diffed = difference(np.asarray(levels), order).to_numpy()
                row = pd.DataFrame([[diffed[-lag] for lag in offsets]], columns=columns)
                next_diff = float(estimator.predict(row)[0])
                if order == 0:
                    next_level = next_diff
                else:
                    next_level = integrate(
                        np.r_[np.full(order, np.nan), next_diff], levels[-order:]
                    )[-1]
                levels.append(next_level)
                forecasts[step, j] = next_level

        return forecasts

    def _update_state(self, model: Model, new_targets: pd.DataFrame) -> Any:
        # Coefficients are kept; the base class extends the history tail
        return model.state
