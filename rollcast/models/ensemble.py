"""Stacked forecast ensemble trained on out-of-fold base predictions."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import xgboost as xgb
from sklearn.base import BaseEstimator, RegressorMixin, clone
from sklearn.linear_model import LinearRegression, Ridge
from sklearn.model_selection import GridSearchCV, TimeSeriesSplit

from rollcast.data.splitters import Split, Window
from rollcast.data.structs import TimeSeriesTask
from rollcast.evaluation.alignment import HorizonAligner
from rollcast.evaluation.evaluator import EvaluationContext, make_resampler
from rollcast.models.base_model import ForecastBackend, Model, Prediction
from rollcast.utils.error_handling import (
    BackendTrainError,
    ConfigurationError,
    SplitError,
    SplitFailure,
)
from rollcast.utils.logging_config import split_context
from rollcast.utils.parallel import run_indexed

logger = logging.getLogger(__name__)

# Bookkeeping columns of the stacked matrix; base predictions follow them
KEY_COLUMNS = ["split", "timestamp", "train_end", "origin"]
TRUTH_COLUMN = "truth"


class AverageRegressor(RegressorMixin, BaseEstimator):
    """Meta-learner that averages the base forecasts with equal weights."""

    def fit(self, X, y=None):
        self.n_features_in_ = np.asarray(X).shape[1]
        return self

    def predict(self, X):
        return np.asarray(X, dtype=float).mean(axis=1)


class MetaLearner:
    """
    Regressor fitted on the stacked base-prediction matrix.

    Args:
        estimator: 'linear', 'ridge', 'xgboost', 'average' or a scikit-learn
            regressor instance
        param_grid: Optional grid for nested tuning with GridSearchCV over a
            TimeSeriesSplit of the stacked rows
        n_splits: Folds of the nested TimeSeriesSplit
        **params: Keyword arguments for a named estimator
    """

    def __init__(
        self,
        estimator: Union[str, BaseEstimator] = "linear",
        param_grid: Optional[Dict[str, Sequence[Any]]] = None,
        n_splits: int = 3,
        **params: Any,
    ):
        self.estimator = estimator
        self.param_grid = param_grid
        self.n_splits = n_splits
        self.params = params
        # Fail early on unknown names
        self._make_estimator()

    def _make_estimator(self) -> BaseEstimator:
        if not isinstance(self.estimator, str):
            return clone(self.estimator)
        if self.estimator == "linear":
            return LinearRegression(**self.params)
        if self.estimator == "ridge":
            return Ridge(**self.params)
        if self.estimator == "average":
            return AverageRegressor()
        if self.estimator == "xgboost":
            params = dict(self.params)
            params.setdefault("n_estimators", 100)
            params.setdefault("max_depth", 3)
            params.setdefault("n_jobs", 1)
            return xgb.XGBRegressor(objective="reg:squarederror", **params)
        raise ConfigurationError(f"Unknown meta-learner '{self.estimator}'")

    @property
    def name(self) -> str:
        if isinstance(self.estimator, str):
            return self.estimator
        return type(self.estimator).__name__

    def fit(self, X: pd.DataFrame, y: pd.Series) -> BaseEstimator:
        """
        Fit a fresh estimator.

        Nested tuning runs sequentially (``n_jobs=1``) so it never competes
        with the split-level worker pool.
        """
        estimator = self._make_estimator()
        if self.param_grid:
            n_splits = min(self.n_splits, len(X) - 1)
            if n_splits < 2:
                raise ConfigurationError(
                    f"{len(X)} stacked rows are too few for nested tuning"
                )
            search = GridSearchCV(
                estimator,
                self.param_grid,
                cv=TimeSeriesSplit(n_splits=n_splits),
                scoring="neg_mean_squared_error",
                n_jobs=1,
            )
            search.fit(X, y)
            logger.info(f"Meta-learner tuned: {search.best_params_}")
            return search.best_estimator_
        return estimator.fit(X, y)


@dataclass
class StackedEnsembleState:
    """
    Trained ensemble.

    ``base_output_order`` fixes the meta-learner's input column order for
    both the out-of-fold training pass and inference.
    """
    base_backends: List[ForecastBackend]
    base_models: List[Model]
    meta_model: BaseEstimator
    base_output_order: Tuple[str, ...]
    target: str
    task: TimeSeriesTask
    stacked_matrix: pd.DataFrame
    failures: List[SplitFailure] = field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return [failure.describe() for failure in self.failures]

    def feature_matrix(self) -> pd.DataFrame:
        return self.stacked_matrix[list(self.base_output_order)]


def _unique_labels(backends: Sequence[ForecastBackend]) -> Tuple[str, ...]:
    labels: List[str] = []
    for i, backend in enumerate(backends):
        label = backend.label
        if label in labels:
            label = f"{label}_{i}"
        labels.append(label)
    return tuple(labels)


class StackedForecastEnsemble:
    """
    Stacks several forecasting backends under a meta-learner.

    Training resamples the task with a rolling-origin window, trains fresh
    base models on every training range, and collects their aligned
    forecasts for the matching test rows. No base prediction is produced by
    a model that saw its row. The meta-learner is fitted on these
    out-of-fold predictions; production base models are then trained on the
    whole task.
    """

    def __init__(
        self,
        base_backends: Sequence[ForecastBackend],
        meta_learner: Optional[MetaLearner] = None,
        context: Optional[EvaluationContext] = None,
        aligner: Optional[HorizonAligner] = None,
    ):
        if not base_backends:
            raise ConfigurationError("At least one base backend is required")
        self.base_backends = list(base_backends)
        self.meta_learner = meta_learner or MetaLearner()
        self.context = context or EvaluationContext()
        self.aligner = aligner or HorizonAligner()
        self.base_output_order = _unique_labels(self.base_backends)

    def train(self, task: TimeSeriesTask, window: Window) -> StackedEnsembleState:
        """
        Train base backends out-of-fold, then the meta-learner.

        Args:
            task: Single-target task
            window: Window policy (or resampler) for the out-of-fold pass

        Returns:
            StackedEnsembleState

        Raises:
            ConfigurationError: For multi-target tasks or when no split fits
            BackendError, HorizonTooShortError: Under the fail-fast policy
        """
        if len(task.targets) != 1:
            raise ConfigurationError(
                f"Stacking needs exactly one target, task has {list(task.targets)}"
            )
        target = task.targets[0]
        splits = make_resampler(window).generate_splits(task.n_rows)
        logger.info(
            f"Training stacked ensemble of {list(self.base_output_order)} "
            f"over {len(splits)} splits"
        )

        def run(split: Split) -> Union[pd.DataFrame, SplitFailure]:
            return self._out_of_fold(task, split, target)

        outcomes = run_indexed(
            run,
            ((s.index, s) for s in splits),
            n_jobs=self.context.n_jobs,
            prefer=self.context.prefer,
        )

        failures = [o for o in outcomes.values() if isinstance(o, SplitFailure)]
        for failure in failures:
            logger.warning(
                failure.describe(),
                extra=split_context(
                    failure.split_index, failure.backend, exception_type=failure.exception_type
                ),
            )
        frames = [o for o in outcomes.values() if isinstance(o, pd.DataFrame)]
        if not frames:
            raise BackendTrainError(
                f"All {len(splits)} splits failed; no out-of-fold predictions to stack"
            )
        stacked = pd.concat(frames, ignore_index=True)

        # Chronological row order for the meta-learner's nested time-series CV
        stacked = stacked.sort_values(["timestamp", "split"], kind="mergesort").reset_index(drop=True)
        X = stacked[list(self.base_output_order)]
        y = stacked[TRUTH_COLUMN]
        meta_model = self.meta_learner.fit(X, y)
        logger.info(f"Meta-learner '{self.meta_learner.name}' fitted on {len(stacked)} stacked rows")

        base_models = [backend.clone().train(task) for backend in self.base_backends]

        return StackedEnsembleState(
            base_backends=[backend.clone() for backend in self.base_backends],
            base_models=base_models,
            meta_model=meta_model,
            base_output_order=self.base_output_order,
            target=target,
            task=task,
            stacked_matrix=stacked,
            failures=failures,
        )

    def _out_of_fold(
        self, task: TimeSeriesTask, split: Split, target: str
    ) -> Union[pd.DataFrame, SplitFailure]:
        train_task = task.slice(split.train)
        truth = task.target_frame(split.test)
        columns: Dict[str, np.ndarray] = {}

        for label, backend in zip(self.base_output_order, self.base_backends):
            fresh = backend.clone()
            try:
                model = fresh.train(train_task)
                prediction = fresh.predict(model, split.test_length)
                aligned = self.aligner.align(prediction, split.test, truth=truth)
            except SplitError as exc:
                exc.with_context(backend=label, split_index=split.index)
                if self.context.fail_fast:
                    logger.error(
                        f"Ensemble training aborted: {exc}",
                        extra=split_context(split.index, label),
                    )
                    raise
                # A row needs every base column, so the whole split is skipped
                return SplitFailure.from_exception(exc)
            columns[label] = aligned.response[target].to_numpy()

        rows = pd.DataFrame({
            "split": split.index,
            "timestamp": truth.index,
            "train_end": task.index[split.train.stop - 1],
            "origin": split.train.stop,
        })
        for label in self.base_output_order:
            rows[label] = columns[label]
        rows[TRUTH_COLUMN] = truth[target].to_numpy()
        return rows

    def update(
        self,
        state: StackedEnsembleState,
        new_raw_data: Union[pd.DataFrame, TimeSeriesTask],
    ) -> StackedEnsembleState:
        """
        Bring the production base models up to date with new observations.

        Backends with the update capability extend their models; the others
        are retrained on the updated task. The meta-learner is unchanged.
        """
        task = state.task.update(new_raw_data)
        if isinstance(new_raw_data, TimeSeriesTask):
            new_raw_data = new_raw_data.data

        models = []
        for backend, model in zip(state.base_backends, state.base_models):
            if backend.supports_update:
                models.append(backend.update(model, new_raw_data))
            else:
                logger.debug(f"'{backend.label}' cannot update, retraining on {task.n_rows} rows")
                models.append(backend.clone().train(task))

        return StackedEnsembleState(
            base_backends=state.base_backends,
            base_models=models,
            meta_model=state.meta_model,
            base_output_order=state.base_output_order,
            target=state.target,
            task=task,
            stacked_matrix=state.stacked_matrix,
            failures=state.failures,
        )

    def predict(
        self,
        state: StackedEnsembleState,
        horizon: int,
        new_raw_data: Optional[Union[pd.DataFrame, TimeSeriesTask]] = None,
    ) -> Prediction:
        """
        Forecast ``horizon`` steps with the meta-learner over base forecasts.

        Args:
            state: Trained ensemble
            horizon: Steps to forecast
            new_raw_data: Observations after the training data, applied with
                ``update`` before forecasting

        Returns:
            Prediction of the ensemble, indexed by step
        """
        if new_raw_data is not None and len(new_raw_data) > 0:
            state = self.update(state, new_raw_data)

        steps = range(horizon)
        columns: Dict[str, np.ndarray] = {}
        for label, backend, model in zip(
            state.base_output_order, state.base_backends, state.base_models
        ):
            prediction = self.aligner.align(backend.predict(model, horizon), steps)
            columns[label] = prediction.response[state.target].to_numpy()

        X = pd.DataFrame(columns)[list(state.base_output_order)]
        values = state.meta_model.predict(X)
        return Prediction.from_array(values, [state.target], backend="stacked_ensemble")
