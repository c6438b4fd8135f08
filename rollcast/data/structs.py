"""Core data structures for the evaluation engine."""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from rollcast.utils.error_handling import ConfigurationError, IncrementalUpdateMismatchError

if TYPE_CHECKING:
    from rollcast.features.engineering import LagSpec

logger = logging.getLogger(__name__)


class TaskType(str, Enum):
    """Declared type of a task."""
    FORECAST = "forecast"
    # Lagged targets used as features: a plain supervised-learning task
    REGRESSION = "regression"


class TimeSeriesTask:
    """
    Ordered, uniquely-timestamped series with a declared seasonal frequency.

    The underlying frame is copied on construction and never exposed
    mutably. Appending rows goes through ``update`` which returns a new
    task, so splits computed against an earlier version stay valid.

    Attributes:
        frequency: Number of observations per seasonal cycle
        targets: Names of the output columns
        features: Names of the remaining columns
    """

    task_type: TaskType = TaskType.FORECAST

    def __init__(
        self,
        data: pd.DataFrame,
        targets: Union[str, Sequence[str]],
        frequency: int = 1,
        task_id: Optional[str] = None,
    ):
        if not isinstance(data, pd.DataFrame):
            raise ConfigurationError("data must be a pandas DataFrame")
        if isinstance(targets, str):
            targets = [targets]
        targets = tuple(targets)

        self._validate(data, targets, frequency)

        self._data = data.copy()
        self.targets: Tuple[str, ...] = targets
        self.features: Tuple[str, ...] = tuple(
            c for c in data.columns if c not in targets
        )
        self.frequency = int(frequency)
        self.task_id = task_id or "task"

    @staticmethod
    def _validate(data: pd.DataFrame, targets: Tuple[str, ...], frequency: Any) -> None:
        if len(data) < 1:
            raise ConfigurationError("A time series task needs at least one row")
        if isinstance(frequency, bool) or not isinstance(frequency, (int, np.integer)):
            raise ConfigurationError(f"frequency must be an integer, got {frequency!r}")
        if frequency < 1:
            raise ConfigurationError(f"frequency must be >= 1, got {frequency}")
        if not targets:
            raise ConfigurationError("At least one target column is required")
        missing = [t for t in targets if t not in data.columns]
        if missing:
            raise ConfigurationError(f"Target columns not found in data: {missing}")
        if not data.index.is_unique:
            raise ConfigurationError("Timestamps must be unique")
        if not data.index.is_monotonic_increasing:
            raise ConfigurationError("Timestamps must be strictly increasing")

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        targets: Union[str, Sequence[str]],
        frequency: int = 1,
        time_column: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> "TimeSeriesTask":
        """
        Build a task from raw indexed data.

        Args:
            df: Raw data
            targets: Target column name(s)
            frequency: Observations per seasonal cycle
            time_column: Column holding the timestamps; the existing index
                is used when None
            task_id: Optional identifier used in log messages
        """
        if time_column is not None:
            if time_column not in df.columns:
                raise ConfigurationError(f"Time column '{time_column}' not found")
            df = df.set_index(time_column)
        return cls(df, targets=targets, frequency=frequency, task_id=task_id)

    # -- read-only views -------------------------------------------------

    @property
    def data(self) -> pd.DataFrame:
        """Copy of the underlying frame."""
        return self._data.copy()

    @property
    def index(self) -> pd.Index:
        return self._data.index

    @property
    def columns(self) -> List[str]:
        return list(self._data.columns)

    @property
    def n_rows(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def target_frame(self, rows: Optional[Union[range, slice]] = None) -> pd.DataFrame:
        """Target columns, optionally restricted to a positional range."""
        frame = self._data.loc[:, list(self.targets)]
        if rows is not None:
            frame = frame.iloc[_as_slice(rows)]
        return frame.copy()

    @property
    def last_timestamp(self) -> Any:
        return self._data.index[-1]

    # -- derivation ------------------------------------------------------

    def _derive(self, data: pd.DataFrame) -> "TimeSeriesTask":
        return TimeSeriesTask(
            data, targets=self.targets, frequency=self.frequency, task_id=self.task_id
        )

    def slice(self, rows: Union[range, slice]) -> "TimeSeriesTask":
        """Positional sub-task, e.g. the train or test part of a split."""
        sub = self._data.iloc[_as_slice(rows)]
        if sub.empty:
            raise ConfigurationError(f"Slice {rows} of task '{self.task_id}' is empty")
        return self._derive(sub)

    def check_continuation(self, new_rows: pd.DataFrame) -> None:
        """Raise unless ``new_rows`` continues this series strictly after its end."""
        if new_rows.empty:
            raise IncrementalUpdateMismatchError("No rows to append")
        if set(new_rows.columns) != set(self._data.columns):
            raise IncrementalUpdateMismatchError(
                f"Appended columns {sorted(map(str, new_rows.columns))} do not match "
                f"task columns {sorted(map(str, self._data.columns))}"
            )
        if not (new_rows.index.is_unique and new_rows.index.is_monotonic_increasing):
            raise IncrementalUpdateMismatchError(
                "Appended rows must have unique, increasing timestamps"
            )
        if not new_rows.index[0] > self.last_timestamp:
            raise IncrementalUpdateMismatchError(
                f"Appended rows start at {new_rows.index[0]} which does not follow "
                f"the last timestamp {self.last_timestamp}"
            )

    def update(self, new_rows: Union[pd.DataFrame, "TimeSeriesTask"]) -> "TimeSeriesTask":
        """
        Return a new task with ``new_rows`` appended.

        Args:
            new_rows: Frame (or task) continuing the series after its last timestamp

        Returns:
            New TimeSeriesTask; this task is left untouched
        """
        if isinstance(new_rows, TimeSeriesTask):
            new_rows = new_rows.data
        self.check_continuation(new_rows)
        combined = pd.concat([self._data, new_rows[self._data.columns]])
        logger.debug(f"Task '{self.task_id}' updated with {len(new_rows)} rows")
        return self._derive(combined)

    def to_dict(self) -> Dict[str, Any]:
        """Metadata summary."""
        return {
            "task_id": self.task_id,
            "task_type": self.task_type.value,
            "n_rows": self.n_rows,
            "frequency": self.frequency,
            "targets": list(self.targets),
            "features": list(self.features),
            "start": str(self.index[0]),
            "end": str(self.index[-1]),
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(task_id='{self.task_id}', n_rows={self.n_rows}, "
            f"frequency={self.frequency}, targets={list(self.targets)})"
        )


class FeatureTask(TimeSeriesTask):
    """
    TimeSeriesTask extended with lag/difference derived columns.

    Carries the LagSpec, the source frequency and the raw tail of the source
    series so that ``LagDiffFeaturizer.extend`` can append new observations
    without recomputing from scratch.
    """

    def __init__(
        self,
        data: pd.DataFrame,
        targets: Union[str, Sequence[str]],
        frequency: int,
        lag_spec: "LagSpec",
        raw_columns: Iterable[str],
        derived_columns: Iterable[str],
        raw_tail: pd.DataFrame,
        source_last_timestamp: Any,
        task_type: TaskType = TaskType.FORECAST,
        task_id: Optional[str] = None,
    ):
        super().__init__(data, targets=targets, frequency=frequency, task_id=task_id)
        self.lag_spec = lag_spec
        self.source_frequency = int(frequency)
        self.raw_columns: Tuple[str, ...] = tuple(raw_columns)
        self.derived_columns: Tuple[str, ...] = tuple(derived_columns)
        self.task_type = task_type
        self._raw_tail = raw_tail.copy()
        self.source_last_timestamp = source_last_timestamp

    @property
    def raw_tail(self) -> pd.DataFrame:
        """Trailing raw rows needed to extend the derived columns."""
        return self._raw_tail.copy()

    def _derive(self, data: pd.DataFrame) -> "TimeSeriesTask":
        # Positional slices lose the extension state, so they become plain tasks
        return TimeSeriesTask(
            data, targets=self.targets, frequency=self.frequency, task_id=self.task_id
        )

    def update(self, new_rows):
        raise TypeError(
            "FeatureTask rows are derived; use LagDiffFeaturizer.extend to append raw rows"
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["derived_columns"] = list(self.derived_columns)
        result["lag_spec"] = self.lag_spec.to_dict()
        return result


def _as_slice(rows: Union[range, slice]) -> slice:
    if isinstance(rows, range):
        if rows.step != 1:
            raise ValueError("Only contiguous ranges are supported")
        return slice(rows.start, rows.stop)
    return rows
