"""Lag and difference feature engineering for time series tasks.

Derives supervised-learning features from a TimeSeriesTask: for every source
column, its d-th discrete difference shifted back by each requested lag.
Seasonal lags are given in cycles and converted to row offsets with the
task's declared frequency. The resulting FeatureTask can be extended with
new trailing observations without recomputing the whole frame.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from rollcast.data.structs import FeatureTask, TaskType, TimeSeriesTask
from rollcast.utils.error_handling import ConfigurationError, IncrementalUpdateMismatchError

logger = logging.getLogger(__name__)

ALL_COLUMNS = "all"


def _positive_ints(values: Iterable[Any], name: str) -> Tuple[int, ...]:
    result = []
    for value in values:
        if isinstance(value, bool) or int(value) != value or value < 1:
            raise ConfigurationError(f"{name} must be positive integers, got {value!r}")
        result.append(int(value))
    return tuple(sorted(set(result)))


@dataclass(frozen=True)
class LagSpec:
    """
    Which lagged/differenced columns to derive.

    Attributes:
        lags: Row offsets to shift by
        differences: Highest difference order; orders 1..differences are
            derived, or the undifferenced column when 0
        seasonal_lags: Offsets in seasonal cycles (multiplied by frequency)
        columns: Source columns; None lags the targets, 'all' every column
        pad_missing: Keep leading rows with NaN instead of dropping them
    """
    lags: Tuple[int, ...] = (1,)
    differences: int = 0
    seasonal_lags: Tuple[int, ...] = ()
    columns: Optional[Union[str, Tuple[str, ...]]] = None
    pad_missing: bool = False

    def __post_init__(self):
        object.__setattr__(self, "lags", _positive_ints(self.lags, "lags"))
        object.__setattr__(
            self, "seasonal_lags", _positive_ints(self.seasonal_lags, "seasonal_lags")
        )
        if isinstance(self.differences, bool) or int(self.differences) != self.differences \
                or self.differences < 0:
            raise ConfigurationError(
                f"differences must be a non-negative integer, got {self.differences!r}"
            )
        object.__setattr__(self, "differences", int(self.differences))
        if not self.lags and not self.seasonal_lags:
            raise ConfigurationError("At least one lag or seasonal lag is required")
        if self.columns is not None and self.columns != ALL_COLUMNS:
            columns = (self.columns,) if isinstance(self.columns, str) else tuple(self.columns)
            if not columns:
                raise ConfigurationError("columns must be None, 'all' or a non-empty list")
            object.__setattr__(self, "columns", columns)

    def offsets(self, frequency: int) -> List[int]:
        """Effective row offsets, seasonal lags included."""
        return sorted(set(self.lags) | {s * frequency for s in self.seasonal_lags})

    @property
    def difference_orders(self) -> List[int]:
        if self.differences == 0:
            return [0]
        return list(range(1, self.differences + 1))

    def history_length(self, frequency: int) -> int:
        """Leading rows lacking history for at least one derived column."""
        return max(self.offsets(frequency)) + self.differences

    @staticmethod
    def column_name(source: str, lag: int, difference: int) -> str:
        return f"{source}_lag{lag}_diff{difference}"

    def derived_names(self, sources: Sequence[str], frequency: int) -> List[str]:
        return [
            self.column_name(src, k, d)
            for src in sources
            for d in self.difference_orders
            for k in self.offsets(frequency)
        ]

    def resolve_columns(self, available: Sequence[str], targets: Sequence[str]) -> List[str]:
        """Source columns for this spec given a task's columns and targets."""
        if self.columns is None:
            return list(targets)
        if self.columns == ALL_COLUMNS:
            return list(available)
        missing = [c for c in self.columns if c not in available]
        if missing:
            raise ConfigurationError(f"Columns to lag not found in task: {missing}")
        return list(self.columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lags": list(self.lags),
            "differences": self.differences,
            "seasonal_lags": list(self.seasonal_lags),
            "columns": self.columns if self.columns in (None, ALL_COLUMNS) else list(self.columns),
            "pad_missing": self.pad_missing,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LagSpec":
        columns = data.get("columns")
        if isinstance(columns, list):
            columns = tuple(columns)
        return cls(
            lags=tuple(data.get("lags", (1,))),
            differences=data.get("differences", 0),
            seasonal_lags=tuple(data.get("seasonal_lags", ())),
            columns=columns,
            pad_missing=data.get("pad_missing", False),
        )


def difference(series: Union[pd.Series, np.ndarray], order: int) -> pd.Series:
    """
    ``order``-th discrete difference; the first ``order`` values are NaN.

    Args:
        series: Values to difference
        order: Number of times to apply x[t] - x[t-1]
    """
    result = pd.Series(series, dtype=float) if not isinstance(series, pd.Series) \
        else series.astype(float)
    for _ in range(order):
        result = result.diff()
    return result


def integrate(differenced: Union[pd.Series, np.ndarray], leading: Sequence[float]) -> np.ndarray:
    """
    Invert ``difference``: rebuild a series from its d-th difference.

    Args:
        differenced: d-th difference, positions 0..d-1 are ignored
        leading: The first d values of the original series

    Returns:
        The reconstructed series as a float array
    """
    leading = np.asarray(leading, dtype=float)
    order = len(leading)
    values = np.asarray(differenced, dtype=float)
    if order == 0:
        return values.copy()

    current = values[order:]
    for level in range(order - 1, -1, -1):
        # level-th difference at position order-1 anchors the cumulative sum
        anchor = np.diff(leading, n=level)[-1]
        current = anchor + np.cumsum(current)
    return np.concatenate([leading, current])


class LagDiffFeaturizer:
    """Derives lag/difference columns and extends them incrementally."""

    def __init__(self, lag_spec: Optional[LagSpec] = None):
        self.lag_spec = lag_spec or LagSpec()

    def _derive(
        self,
        raw: pd.DataFrame,
        sources: Sequence[str],
        spec: LagSpec,
        frequency: int,
    ) -> pd.DataFrame:
        offsets = spec.offsets(frequency)
        columns: Dict[str, pd.Series] = {}
        for src in sources:
            for order in spec.difference_orders:
                diffed = difference(raw[src], order)
                for lag in offsets:
                    columns[spec.column_name(src, lag, order)] = diffed.shift(lag)
        return pd.DataFrame(columns, index=raw.index)

    def featurize(
        self,
        task: TimeSeriesTask,
        lag_spec: Optional[LagSpec] = None,
    ) -> FeatureTask:
        """
        Derive lagged and differenced columns from a task.

        Args:
            task: Source task
            lag_spec: Spec to apply, defaults to the featurizer's own

        Returns:
            FeatureTask holding the raw and derived columns
        """
        spec = lag_spec or self.lag_spec
        raw = task.data
        sources = spec.resolve_columns(task.columns, task.targets)

        derived = self._derive(raw, sources, spec, task.frequency)
        clashes = set(derived.columns) & set(raw.columns)
        if clashes:
            raise ConfigurationError(f"Derived column names clash with task columns: {sorted(clashes)}")

        history = spec.history_length(task.frequency)
        result = pd.concat([raw, derived], axis=1)
        if not spec.pad_missing:
            result = result.iloc[history:]
            if result.empty:
                raise ConfigurationError(
                    f"Task '{task.task_id}' has {task.n_rows} rows but the lag spec "
                    f"needs {history} rows of history; no rows remain"
                )

        task_type = TaskType.REGRESSION if set(sources) & set(task.targets) else TaskType.FORECAST
        logger.info(
            f"Created {len(derived.columns)} lag/diff features for {sources} "
            f"({task_type.value} mode, {task.n_rows - len(result)} leading rows dropped)"
        )

        return FeatureTask(
            result,
            targets=task.targets,
            frequency=task.frequency,
            lag_spec=spec,
            raw_columns=raw.columns,
            derived_columns=derived.columns,
            raw_tail=raw.iloc[max(0, len(raw) - history):],
            source_last_timestamp=task.last_timestamp,
            task_type=task_type,
            task_id=task.task_id,
        )

    def extend(
        self,
        feature_task: FeatureTask,
        new_raw_rows: Union[pd.DataFrame, TimeSeriesTask],
    ) -> FeatureTask:
        """
        Append new raw observations to a FeatureTask.

        Only the stored raw tail plus the new rows are featurized, giving the
        same derived values as featurizing the concatenated series.

        Args:
            feature_task: Task produced by ``featurize`` or ``extend``
            new_raw_rows: Raw rows continuing the source series

        Returns:
            New FeatureTask; the input is left untouched

        Raises:
            IncrementalUpdateMismatchError: If the rows do not continue the series
        """
        if isinstance(new_raw_rows, TimeSeriesTask):
            new_raw_rows = new_raw_rows.data
        raw_columns = list(feature_task.raw_columns)
        self._check_continuation(feature_task, new_raw_rows)

        spec = feature_task.lag_spec
        frequency = feature_task.source_frequency
        history = spec.history_length(frequency)
        sources = spec.resolve_columns(raw_columns, feature_task.targets)

        tail = feature_task.raw_tail
        combined = pd.concat([tail, new_raw_rows[raw_columns]])
        derived = self._derive(combined, sources, spec, frequency)
        appended = pd.concat([combined, derived], axis=1).iloc[len(tail):]

        data = pd.concat([feature_task.data, appended[feature_task.columns]])
        logger.debug(
            f"Extended feature task '{feature_task.task_id}' by {len(new_raw_rows)} rows "
            f"using {len(tail)} rows of overlap"
        )

        return FeatureTask(
            data,
            targets=feature_task.targets,
            frequency=frequency,
            lag_spec=spec,
            raw_columns=raw_columns,
            derived_columns=feature_task.derived_columns,
            raw_tail=combined.iloc[max(0, len(combined) - history):],
            source_last_timestamp=combined.index[-1],
            task_type=feature_task.task_type,
            task_id=feature_task.task_id,
        )

    @staticmethod
    def _check_continuation(feature_task: FeatureTask, new_rows: pd.DataFrame) -> None:
        if new_rows.empty:
            raise IncrementalUpdateMismatchError("No rows to append")
        if set(new_rows.columns) != set(feature_task.raw_columns):
            raise IncrementalUpdateMismatchError(
                f"New rows carry columns {sorted(map(str, new_rows.columns))}, expected "
                f"{sorted(map(str, feature_task.raw_columns))}"
            )
        if not (new_rows.index.is_unique and new_rows.index.is_monotonic_increasing):
            raise IncrementalUpdateMismatchError("New rows must have unique, increasing timestamps")
        if not new_rows.index[0] > feature_task.source_last_timestamp:
            raise IncrementalUpdateMismatchError(
                f"New rows start at {new_rows.index[0]}, which does not continue the "
                f"series ending at {feature_task.source_last_timestamp}"
            )


def to_supervised(
    feature_task: FeatureTask,
    target: Optional[str] = None,
) -> Tuple[pd.DataFrame, pd.Series]:
    """
    Split a FeatureTask into a feature matrix and target vector.

    Rows with a missing derived value or target are dropped.

    Args:
        feature_task: Featurized task
        target: Target column, defaults to the first target

    Returns:
        Tuple of (X, y)
    """
    target = target or feature_task.targets[0]
    frame = feature_task.data
    X = frame[list(feature_task.derived_columns)]
    y = frame[target]
    mask = X.notna().all(axis=1) & y.notna()
    return X[mask], y[mask]
