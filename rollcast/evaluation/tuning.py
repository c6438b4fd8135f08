"""
Hyperparameter tuning adapter around the Evaluator, backed by Optuna.

Each trial draws an assignment from a declared parameter space, builds the
backend by name and scores it with a full rolling-origin evaluation.
Degenerate domains (lower == upper) and non-tunable parameters are held
fixed rather than handed to the sampler.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
import logging

import numpy as np
import optuna
import pandas as pd

from rollcast.data.splitters import Window
from rollcast.data.structs import TimeSeriesTask
from rollcast.evaluation.evaluator import EvaluationContext, EvaluationResult, Evaluator
from rollcast.evaluation.metrics import Measure, get_measure
from rollcast.models.base_model import create_backend
from rollcast.utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)

PARAM_TYPES = ("int", "float", "categorical")


@dataclass(frozen=True)
class ParamSpec:
    """One parameter of a search space."""
    name: str
    type: str
    lower: Optional[float] = None
    upper: Optional[float] = None
    choices: Optional[Sequence[Any]] = None
    tunable: bool = True
    log: bool = False
    default: Any = None

    def __post_init__(self):
        if self.type not in PARAM_TYPES:
            raise ConfigurationError(f"Parameter '{self.name}': unknown type '{self.type}'")
        if self.type == "categorical":
            if not self.choices:
                raise ConfigurationError(f"Parameter '{self.name}' needs choices")
            object.__setattr__(self, "choices", tuple(self.choices))
        else:
            if self.lower is None or self.upper is None:
                raise ConfigurationError(f"Parameter '{self.name}' needs lower and upper bounds")
            if self.lower > self.upper:
                raise ConfigurationError(
                    f"Parameter '{self.name}': lower ({self.lower}) > upper ({self.upper})"
                )

    @property
    def is_fixed(self) -> bool:
        """True for non-tunable parameters and degenerate domains."""
        if not self.tunable:
            return True
        if self.type == "categorical":
            return len(self.choices) == 1
        return self.lower == self.upper

    @property
    def fixed_value(self) -> Any:
        if self.default is not None:
            return self.default
        if self.type == "categorical":
            return self.choices[0]
        return int(self.lower) if self.type == "int" else float(self.lower)

    def suggest(self, trial: optuna.trial.Trial) -> Any:
        if self.type == "int":
            return trial.suggest_int(self.name, int(self.lower), int(self.upper), log=self.log)
        if self.type == "float":
            return trial.suggest_float(self.name, float(self.lower), float(self.upper), log=self.log)
        return trial.suggest_categorical(self.name, list(self.choices))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParamSpec":
        return cls(**data)


@dataclass
class ParameterSpace:
    """Collection of ParamSpecs."""
    params: List[ParamSpec] = field(default_factory=list)

    def __post_init__(self):
        names = [p.name for p in self.params]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate parameter names in {names}")

    @property
    def tunable(self) -> List[ParamSpec]:
        return [p for p in self.params if not p.is_fixed]

    def fixed_params(self) -> Dict[str, Any]:
        return {p.name: p.fixed_value for p in self.params if p.is_fixed}

    def sample(self, trial: optuna.trial.Trial) -> Dict[str, Any]:
        """Full assignment: sampled tunable values plus fixed ones."""
        values = self.fixed_params()
        for spec in self.tunable:
            values[spec.name] = spec.suggest(trial)
        return values

    @classmethod
    def from_list(cls, specs: List[Dict[str, Any]]) -> "ParameterSpace":
        return cls([ParamSpec.from_dict(spec) for spec in specs])


@dataclass
class TuningResult:
    """Best assignment found and the trial history."""
    best_params: Dict[str, Any]
    best_score: float
    trials: pd.DataFrame
    best_evaluation: Optional[EvaluationResult] = None


class OptunaTuner:
    """
    Searches a backend's parameter space by repeated rolling-origin evaluation.

    Args:
        n_trials: Number of Optuna trials
        evaluator: Evaluator to call, a default one if None
        context: Evaluation context used for every trial
        seed: Seed of the TPE sampler
    """

    def __init__(
        self,
        n_trials: int = 20,
        evaluator: Optional[Evaluator] = None,
        context: Optional[EvaluationContext] = None,
        seed: Optional[int] = None,
    ):
        if n_trials < 1:
            raise ConfigurationError("n_trials must be >= 1")
        self.n_trials = n_trials
        self.evaluator = evaluator or Evaluator()
        self.context = context or EvaluationContext()
        self.seed = seed

    def tune(
        self,
        backend_name: str,
        space: ParameterSpace,
        task: TimeSeriesTask,
        window: Window,
        measure: Union[str, Measure, Callable[..., float]] = "rmse",
        fixed_params: Optional[Dict[str, Any]] = None,
    ) -> TuningResult:
        """
        Run the search.

        Args:
            backend_name: Registered backend name
            space: Parameter space
            task: Task to evaluate on
            window: Window policy of every evaluation
            measure: Measure to optimize
            fixed_params: Extra hyperparameters passed to every candidate

        Returns:
            TuningResult with the best assignment
        """
        measure = get_measure(measure)
        fixed_params = dict(fixed_params or {})

        def evaluate(params: Dict[str, Any]) -> EvaluationResult:
            backend = create_backend(backend_name, **{**fixed_params, **params})
            return self.evaluator.evaluate(backend, task, window, measure, self.context)

        if not space.tunable:
            params = space.fixed_params()
            logger.info(f"No tunable parameters for '{backend_name}', evaluating {params} once")
            result = evaluate(params)
            trials = pd.DataFrame([{**params, "score": result.score}])
            return TuningResult(params, result.score, trials, result)

        worst = np.inf if measure.minimize else -np.inf

        def objective(trial: optuna.trial.Trial) -> float:
            params = space.sample(trial)
            result = evaluate(params)
            trial.set_user_attr("params", params)
            trial.set_user_attr("split_score_std", float(result.split_scores.std()))
            trial.set_user_attr("n_failed_splits", len(result.failures))
            if np.isnan(result.score):
                return worst
            return result.score

        sampler = optuna.samplers.TPESampler(seed=self.seed)
        study = optuna.create_study(
            direction="minimize" if measure.minimize else "maximize", sampler=sampler
        )
        study.optimize(objective, n_trials=self.n_trials)

        best_params = study.best_trial.user_attrs["params"]
        logger.info(f"Tuning complete. Best params: {best_params}, {measure.name}={study.best_value:.6g}")

        trials = pd.DataFrame(
            [{**t.user_attrs.get("params", {}), "score": t.value,
              "split_score_std": t.user_attrs.get("split_score_std")}
             for t in study.trials]
        )
        return TuningResult(best_params, float(study.best_value), trials)
