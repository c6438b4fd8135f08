"""Forecast backend interface shared by all forecasting algorithms."""

import copy
import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar, Dict, List, Optional, Sequence, Tuple, Type, Union

import numpy as np
import pandas as pd

from rollcast.data.structs import TimeSeriesTask
from rollcast.utils.error_handling import (
    BackendError,
    BackendPredictError,
    BackendTrainError,
    ConfigurationError,
    IncrementalUpdateMismatchError,
)

logger = logging.getLogger(__name__)


@dataclass
class Prediction:
    """
    Point forecasts for one or more targets.

    ``response`` is indexed by forecast step (1..h) as produced by a backend,
    or by the test timestamps once aligned against truth.
    """
    response: pd.DataFrame
    truth: Optional[pd.DataFrame] = None
    backend: Optional[str] = None

    def __post_init__(self):
        if self.truth is not None and self.truth.shape != self.response.shape:
            raise ValueError(
                f"Truth shape {self.truth.shape} does not match response shape "
                f"{self.response.shape}"
            )

    @classmethod
    def from_array(
        cls,
        values: np.ndarray,
        targets: Sequence[str],
        backend: Optional[str] = None,
    ) -> "Prediction":
        """Wrap an (h, n_targets) or (h,) array of forecasts."""
        values = np.asarray(values, dtype=float)
        if values.ndim == 1:
            values = values.reshape(-1, 1)
        index = pd.RangeIndex(1, len(values) + 1, name="step")
        return cls(pd.DataFrame(values, index=index, columns=list(targets)), backend=backend)

    def __len__(self) -> int:
        return len(self.response)

    @property
    def targets(self) -> List[str]:
        return list(self.response.columns)

    @property
    def index(self) -> pd.Index:
        return self.response.index

    def head(self, n: int) -> "Prediction":
        """First ``n`` steps, order and values unchanged."""
        truth = self.truth.iloc[:n] if self.truth is not None else None
        return Prediction(self.response.iloc[:n].copy(), truth, self.backend)

    def to_frame(self) -> pd.DataFrame:
        """Long frame with ``response_<target>`` and ``truth_<target>`` columns."""
        frame = self.response.add_prefix("response_")
        if self.truth is not None:
            frame = pd.concat([frame, self.truth.add_prefix("truth_")], axis=1)
        return frame


@dataclass(frozen=True)
class Model:
    """
    Opaque trained state produced by a ForecastBackend.

    Also carries the tail of the training targets, which is what the
    backend's ``update`` extends with new observations.
    """
    backend: str
    state: Any
    targets: Tuple[str, ...]
    frequency: int
    n_obs: int
    last_timestamp: Any
    history: pd.DataFrame
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Metadata (excludes the fitted state)."""
        return {
            "backend": self.backend,
            "targets": list(self.targets),
            "frequency": self.frequency,
            "n_obs": self.n_obs,
            "last_timestamp": str(self.last_timestamp),
            "hyperparameters": self.hyperparameters,
            "created_at": self.created_at.isoformat(),
        }


class ForecastBackend(ABC):
    """
    Abstract base class for forecasting backends.

    Subclasses implement ``_fit`` and ``_forecast``; backends that can extend
    a fit with new trailing observations set ``supports_update`` and
    implement ``_update_state``. A backend object only holds configuration,
    so every ``train`` call yields a fresh, independent Model.
    """

    name: ClassVar[str] = "base"
    supports_update: ClassVar[bool] = False

    def __init__(self, **hyperparameters: Any):
        """
        Args:
            **hyperparameters: Backend hyperparameters. ``h``, when set, fixes
                the number of steps every forecast produces.
        """
        self.hyperparameters = hyperparameters
        h = hyperparameters.get("h")
        if h is not None and (int(h) != h or h < 1):
            raise ConfigurationError(f"h must be a positive integer, got {h!r}")

    @property
    def label(self) -> str:
        """Display name, overridable with an ``id`` hyperparameter."""
        return str(self.hyperparameters.get("id", self.name))

    def clone(self) -> "ForecastBackend":
        """Fresh backend with a copy of the same hyperparameters."""
        return type(self)(**copy.deepcopy(self.hyperparameters))

    def forecast_horizon(self, requested: int) -> int:
        """Number of steps ``predict`` produces when ``requested`` are asked for."""
        h = self.hyperparameters.get("h")
        return int(h) if h is not None else int(requested)

    def history_rows(self, frequency: int) -> Optional[int]:
        """Trailing rows of the training targets kept on the Model; None keeps all."""
        return None

    # -- public contract -------------------------------------------------

    def train(self, task: TimeSeriesTask) -> Model:
        """
        Train on a task.

        Raises:
            BackendTrainError: On convergence or numerical failure
        """
        try:
            state = self._fit(task)
        except BackendError as exc:
            raise exc.with_context(backend=self.label)
        except Exception as exc:
            raise BackendTrainError(
                f"{type(exc).__name__}: {exc}", backend=self.label
            ) from exc

        return Model(
            backend=self.name,
            state=state,
            targets=task.targets,
            frequency=task.frequency,
            n_obs=task.n_rows,
            last_timestamp=task.last_timestamp,
            history=self._tail(task.target_frame(), task.frequency),
            hyperparameters=dict(self.hyperparameters),
        )

    def predict(self, model: Model, horizon: int) -> Prediction:
        """
        Forecast ``horizon`` steps past the end of the model's data.

        A fixed ``h`` hyperparameter overrides ``horizon``; callers truncate
        with the HorizonAligner.

        Raises:
            BackendPredictError: If the forecast cannot be produced
        """
        steps = self.forecast_horizon(horizon)
        try:
            values = np.asarray(self._forecast(model, steps), dtype=float)
        except BackendError as exc:
            raise exc.with_context(backend=self.label)
        except Exception as exc:
            raise BackendPredictError(
                f"{type(exc).__name__}: {exc}", backend=self.label
            ) from exc

        if values.ndim == 1:
            values = values.reshape(-1, 1)
        if values.shape != (steps, len(model.targets)):
            raise BackendPredictError(
                f"Forecast has shape {values.shape}, expected {(steps, len(model.targets))}",
                backend=self.label,
            )
        return Prediction.from_array(values, model.targets, backend=self.label)

    def update(self, model: Model, new_rows: Union[pd.DataFrame, TimeSeriesTask]) -> Model:
        """
        Extend a fit with new trailing observations without retraining.

        Returns:
            New Model; the input model stays valid

        Raises:
            NotImplementedError: If the backend lacks the update capability
            IncrementalUpdateMismatchError: If the rows do not follow the model's data
        """
        if not self.supports_update:
            raise NotImplementedError(f"{self.name} does not support incremental update")
        if isinstance(new_rows, TimeSeriesTask):
            new_rows = new_rows.data

        missing = [t for t in model.targets if t not in new_rows.columns]
        if missing:
            raise IncrementalUpdateMismatchError(f"New rows lack target columns {missing}")
        if new_rows.empty:
            return model
        if not (new_rows.index.is_unique and new_rows.index.is_monotonic_increasing):
            raise IncrementalUpdateMismatchError("New rows must have unique, increasing timestamps")
        if not new_rows.index[0] > model.last_timestamp:
            raise IncrementalUpdateMismatchError(
                f"New rows start at {new_rows.index[0]}, model data ends at {model.last_timestamp}"
            )

        new_targets = new_rows[list(model.targets)]
        try:
            state = self._update_state(model, new_targets)
        except BackendError as exc:
            raise exc.with_context(backend=self.label)
        except Exception as exc:
            raise BackendTrainError(
                f"update failed: {type(exc).__name__}: {exc}", backend=self.label
            ) from exc

        return dataclasses.replace(
            model,
            state=state,
            n_obs=model.n_obs + len(new_targets),
            last_timestamp=new_targets.index[-1],
            history=self._tail(pd.concat([model.history, new_targets]), model.frequency),
            created_at=datetime.now(),
        )

    # -- backend hooks ---------------------------------------------------

    @abstractmethod
    def _fit(self, task: TimeSeriesTask) -> Any:
        """Return the fitted state for ``task``."""

    @abstractmethod
    def _forecast(self, model: Model, steps: int) -> np.ndarray:
        """Return an array of shape (steps, n_targets)."""

    def _update_state(self, model: Model, new_targets: pd.DataFrame) -> Any:
        """Return the state after observing ``new_targets``."""
        raise NotImplementedError

    def _tail(self, frame: pd.DataFrame, frequency: int) -> pd.DataFrame:
        rows = self.history_rows(frequency)
        if rows is None:
            return frame.copy()
        return frame.iloc[max(0, len(frame) - rows):].copy()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.hyperparameters})"


_BACKENDS: Dict[str, Type[ForecastBackend]] = {}


def register_backend(name: str) -> Callable[[Type[ForecastBackend]], Type[ForecastBackend]]:
    """Class decorator registering a backend under ``name``."""
    def decorator(cls: Type[ForecastBackend]) -> Type[ForecastBackend]:
        if name in _BACKENDS and _BACKENDS[name] is not cls:
            raise ValueError(f"Backend '{name}' is already registered")
        cls.name = name
        _BACKENDS[name] = cls
        return cls
    return decorator


def create_backend(name: str, **hyperparameters: Any) -> ForecastBackend:
    """Instantiate a registered backend by name."""
    try:
        cls = _BACKENDS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown backend '{name}', available: {available_backends()}"
        )
    return cls(**hyperparameters)


def available_backends() -> List[str]:
    return sorted(_BACKENDS)
