"""Rolling-origin evaluation of forecasting backends."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from rollcast.data.splitters import ForecastHoldoutResampler, RollingOriginResampler, Split, Window
from rollcast.data.structs import TimeSeriesTask
from rollcast.evaluation.alignment import HorizonAligner
from rollcast.evaluation.metrics import Measure, get_measure
from rollcast.models.base_model import ForecastBackend, Prediction
from rollcast.utils.error_handling import (
    ConfigurationError,
    ErrorPolicy,
    SplitError,
    SplitFailure,
)
from rollcast.utils.logging_config import split_context
from rollcast.utils.parallel import run_indexed

logger = logging.getLogger(__name__)

AGGREGATES = {
    "mean": lambda scores: float(scores.mean()),
    "median": lambda scores: float(scores.median()),
}


@dataclass(frozen=True)
class EvaluationContext:
    """
    Settings threaded through an evaluation or ensemble training run.

    Attributes:
        error_policy: Abort on the first backend failure, or skip the split and warn
        n_jobs: Workers for split-level parallelism
        prefer: joblib backend preference, 'threads' or 'processes'
        aggregate: 'mean', 'median' or a callable over the per-split score Series
        keep_predictions: Keep the aligned per-split predictions on the result
    """
    error_policy: ErrorPolicy = ErrorPolicy.FAIL_FAST
    n_jobs: int = 1
    prefer: str = "threads"
    aggregate: Union[str, Callable[[pd.Series], float]] = "mean"
    keep_predictions: bool = False

    def __post_init__(self):
        object.__setattr__(self, "error_policy", ErrorPolicy.parse(self.error_policy))
        if self.n_jobs == 0:
            raise ConfigurationError("n_jobs must be non-zero")
        if self.prefer not in ("threads", "processes"):
            raise ConfigurationError(f"prefer must be 'threads' or 'processes', got '{self.prefer}'")
        if isinstance(self.aggregate, str) and self.aggregate not in AGGREGATES:
            raise ConfigurationError(
                f"Unknown aggregate '{self.aggregate}', expected one of {sorted(AGGREGATES)}"
            )

    @property
    def fail_fast(self) -> bool:
        return self.error_policy is ErrorPolicy.FAIL_FAST

    def aggregate_scores(self, scores: pd.Series) -> float:
        if scores.empty:
            return np.nan
        n_nan = int(scores.isna().sum())
        if n_nan:
            name = getattr(self.aggregate, "__name__", self.aggregate)
            logger.warning(
                f"{n_nan} of {len(scores)} split scores are NaN and excluded "
                f"from the {name} aggregate"
            )
        if callable(self.aggregate):
            return float(self.aggregate(scores))
        return AGGREGATES[self.aggregate](scores)


@dataclass
class SplitOutcome:
    """Result of one split: a score or a recorded failure."""
    split_index: int
    score: Optional[float] = None
    prediction: Optional[Prediction] = None
    failure: Optional[SplitFailure] = None


@dataclass
class EvaluationResult:
    """Aggregated and per-split scores of one backend."""
    backend: str
    measure: str
    score: float
    split_scores: pd.Series
    n_splits: int
    failures: List[SplitFailure] = field(default_factory=list)
    predictions: Dict[int, Prediction] = field(default_factory=dict)

    @property
    def warnings(self) -> List[str]:
        return [failure.describe() for failure in self.failures]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "measure": self.measure,
            "score": self.score,
            "split_scores": {int(k): float(v) for k, v in self.split_scores.items()},
            "n_splits": self.n_splits,
            "failures": [f.to_dict() for f in self.failures],
        }


def score_prediction(
    prediction: Prediction,
    measure: Measure,
    train_task: Optional[TimeSeriesTask] = None,
) -> float:
    """
    Score an aligned prediction, averaging over targets.

    Args:
        prediction: Prediction carrying truth
        measure: Measure to apply
        train_task: Training data, needed by scaled measures
    """
    if prediction.truth is None:
        raise ValueError("Prediction has no truth to score against")

    scores = []
    for target in prediction.targets:
        train = None
        frequency = 1
        if train_task is not None:
            train = train_task.target_frame()[target].to_numpy(dtype=float)
            frequency = train_task.frequency
        scores.append(
            measure(
                prediction.truth[target].to_numpy(dtype=float),
                prediction.response[target].to_numpy(dtype=float),
                train=train,
                frequency=frequency,
            )
        )
    return float(np.mean(scores))


def make_resampler(window: Union[Window, RollingOriginResampler, ForecastHoldoutResampler]):
    """Accept a Window or an already built resampler."""
    if isinstance(window, Window):
        return RollingOriginResampler(window)
    if hasattr(window, "generate_splits"):
        return window
    raise ConfigurationError(f"Cannot resample with {window!r}")


class Evaluator:
    """
    Drives resampling, training, alignment and scoring for one backend.

    This is what a tuner calls repeatedly with candidate hyperparameters.
    """

    def __init__(self, aligner: Optional[HorizonAligner] = None):
        self.aligner = aligner or HorizonAligner()

    def evaluate(
        self,
        backend: ForecastBackend,
        task: TimeSeriesTask,
        window: Union[Window, RollingOriginResampler, ForecastHoldoutResampler],
        measure: Union[str, Measure, Callable[..., float]] = "rmse",
        context: Optional[EvaluationContext] = None,
    ) -> EvaluationResult:
        """
        Evaluate a backend over rolling-origin splits of a task.

        Args:
            backend: Backend to evaluate; a fresh clone is trained per split
            task: Task to resample
            window: Window policy or resampler
            measure: Measure name, Measure or ``(truth, response)`` callable
            context: Error policy, parallelism and aggregation settings

        Returns:
            EvaluationResult with the aggregate and per-split scores

        Raises:
            ConfigurationError: If no split can be produced
            BackendError, HorizonTooShortError: Under the fail-fast policy
        """
        context = context or EvaluationContext()
        measure = get_measure(measure)
        splits = make_resampler(window).generate_splits(task.n_rows)

        def run(split: Split) -> SplitOutcome:
            return self._run_split(backend, task, split, measure, context)

        outcomes = run_indexed(
            run, ((s.index, s) for s in splits), n_jobs=context.n_jobs, prefer=context.prefer
        )

        scores = pd.Series(
            {idx: o.score for idx, o in outcomes.items() if o.failure is None},
            dtype=float,
        )
        scores.index.name = "split"
        failures = [o.failure for o in outcomes.values() if o.failure is not None]
        for failure in failures:
            logger.warning(
                failure.describe(),
                extra=split_context(
                    failure.split_index, failure.backend, exception_type=failure.exception_type
                ),
            )

        result = EvaluationResult(
            backend=backend.label,
            measure=measure.name,
            score=context.aggregate_scores(scores),
            split_scores=scores,
            n_splits=len(splits),
            failures=failures,
            predictions={
                idx: o.prediction for idx, o in outcomes.items()
                if o.prediction is not None
            },
        )
        logger.info(
            f"Evaluated '{backend.label}' on {len(scores)}/{len(splits)} splits: "
            f"{measure.name}={result.score:.6g}"
        )
        return result

    def _run_split(
        self,
        backend: ForecastBackend,
        task: TimeSeriesTask,
        split: Split,
        measure: Measure,
        context: EvaluationContext,
    ) -> SplitOutcome:
        fresh = backend.clone()
        train_task = task.slice(split.train)
        try:
            model = fresh.train(train_task)
            prediction = fresh.predict(model, split.test_length)
            aligned = self.aligner.align(
                prediction, split.test, truth=task.target_frame(split.test)
            )
        except SplitError as exc:
            exc.with_context(backend=fresh.label, split_index=split.index)
            if context.fail_fast:
                logger.error(
                    f"Evaluation aborted: {exc}", extra=split_context(split.index, fresh.label)
                )
                raise
            return SplitOutcome(split.index, failure=SplitFailure.from_exception(exc))

        score = score_prediction(aligned, measure, train_task)
        logger.debug(f"Split {split.index}: {measure.name}={score:.6g}")
        return SplitOutcome(
            split.index,
            score=score,
            prediction=aligned if context.keep_predictions else None,
        )
