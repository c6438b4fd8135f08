"""Rolling-origin resampling for time series evaluation."""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from rollcast.data.structs import TimeSeriesTask
from rollcast.utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)

GROWING = "growing"
FIXED = "fixed"
WINDOW_MODES = (GROWING, FIXED)


@dataclass(frozen=True)
class Window:
    """
    Rolling-origin window policy.

    Attributes:
        initial_size: Rows in the first training range
        horizon: Rows in each (non-terminal) test range
        skip: Fraction of the horizon to advance between origins
        mode: 'growing' (expanding from the origin) or 'fixed' (sliding)
    """
    initial_size: int
    horizon: int
    skip: float = 1.0
    mode: str = GROWING

    def __post_init__(self):
        if int(self.initial_size) != self.initial_size or self.initial_size < 1:
            raise ConfigurationError(f"initial_size must be a positive integer, got {self.initial_size}")
        if int(self.horizon) != self.horizon or self.horizon < 1:
            raise ConfigurationError(f"horizon must be a positive integer, got {self.horizon}")
        if not self.skip > 0:
            raise ConfigurationError(f"skip must be > 0, got {self.skip}")
        if self.mode not in WINDOW_MODES:
            raise ConfigurationError(f"mode must be one of {WINDOW_MODES}, got '{self.mode}'")
        # Whole-number floats (e.g. 100.0 from YAML) must become ints for range()
        object.__setattr__(self, "initial_size", int(self.initial_size))
        object.__setattr__(self, "horizon", int(self.horizon))
        object.__setattr__(self, "skip", float(self.skip))

    @classmethod
    def from_fraction(
        cls,
        total_length: int,
        fraction: float,
        horizon: int,
        skip: float = 1.0,
        mode: str = GROWING,
    ) -> "Window":
        """Derive ``initial_size`` as a fraction of the series length."""
        if not 0 < fraction < 1:
            raise ConfigurationError(f"initial fraction must be in (0, 1), got {fraction}")
        return cls(
            initial_size=max(1, int(math.floor(total_length * fraction))),
            horizon=horizon,
            skip=skip,
            mode=mode,
        )

    @property
    def step_size(self) -> int:
        """Rows advanced between consecutive origins (at least 1)."""
        return max(1, int(round(self.skip * self.horizon)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial_size": self.initial_size,
            "horizon": self.horizon,
            "skip": self.skip,
            "mode": self.mode,
            "step_size": self.step_size,
        }


@dataclass(frozen=True)
class Split:
    """One train/test split as half-open positional ranges."""
    index: int
    train: range
    test: range
    horizon: int
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def test_length(self) -> int:
        return len(self.test)

    @property
    def is_terminal(self) -> bool:
        """True when the series ended before a full horizon was available."""
        return len(self.test) < self.horizon

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "index": self.index,
            "train": [self.train.start, self.train.stop],
            "test": [self.test.start, self.test.stop],
            "horizon": self.horizon,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Split":
        """Create from dictionary."""
        return cls(
            index=data["index"],
            train=range(*data["train"]),
            test=range(*data["test"]),
            horizon=data["horizon"],
            metadata=data.get("metadata", {}),
        )


def generate_splits(total_length: int, window: Window) -> List[Split]:
    """
    Generate rolling-origin splits for a series of ``total_length`` rows.

    Full-horizon splits are emitted while a whole test window fits. If the
    next origin still lies inside the series, one terminal split with a
    shorter test range closes the sequence.

    Args:
        total_length: Number of rows in the series
        window: Window policy

    Returns:
        Splits in chronological order

    Raises:
        ConfigurationError: If not even one full split fits
    """
    if window.initial_size + window.horizon > total_length:
        raise ConfigurationError(
            f"initial_size ({window.initial_size}) + horizon ({window.horizon}) "
            f"exceeds series length ({total_length}); no split can be produced"
        )

    step = window.step_size
    splits: List[Split] = []
    train_end = window.initial_size

    while train_end < total_length:
        test_end = min(train_end + window.horizon, total_length)
        train_start = 0 if window.mode == GROWING else train_end - window.initial_size

        splits.append(
            Split(
                index=len(splits),
                train=range(train_start, train_end),
                test=range(train_end, test_end),
                horizon=window.horizon,
                metadata={"mode": window.mode, "step_size": step},
            )
        )

        # Once a test range reaches the end of the series nothing is left to test
        if test_end == total_length:
            break
        train_end += step

    return splits


class RollingOriginResampler:
    """Produces train/test splits of a task under a window policy."""

    def __init__(self, window: Window):
        self.window = window

    def generate_splits(self, total_length: int) -> List[Split]:
        """Splits for a series of ``total_length`` rows."""
        splits = generate_splits(total_length, self.window)
        logger.info(
            f"Generated {len(splits)} {self.window.mode} splits "
            f"(initial_size={self.window.initial_size}, horizon={self.window.horizon}, "
            f"step={self.window.step_size}) over {total_length} rows"
        )
        return splits

    def iter_tasks(
        self, task: TimeSeriesTask
    ) -> Iterator[Tuple[Split, TimeSeriesTask, TimeSeriesTask]]:
        """
        Yield ``(split, train_task, test_task)`` triples in chronological order.

        Args:
            task: Task to resample
        """
        for split in self.generate_splits(task.n_rows):
            yield split, task.slice(split.train), task.slice(split.test)

    @staticmethod
    def validate_no_leakage(task: TimeSeriesTask, split: Split) -> Tuple[bool, List[str]]:
        """
        Validate that a split has no temporal data leakage.

        Args:
            task: Task the split indexes into
            split: Split to validate

        Returns:
            Tuple of (is_valid, list of issues)
        """
        issues: List[str] = []

        if split.train.stop != split.test.start:
            issues.append(
                f"Training range ends at {split.train.stop} but test range "
                f"starts at {split.test.start}"
            )

        if len(split.train) > 0 and len(split.test) > 0:
            train_max = task.index[split.train.stop - 1]
            test_min = task.index[split.test.start]
            if train_max >= test_min:
                issues.append(
                    f"Training data ({train_max}) overlaps with test data ({test_min})"
                )

        return len(issues) == 0, issues


class ForecastHoldoutResampler:
    """Single chronological holdout: the last rows of the series are the test set."""

    def __init__(self, ratio: Optional[float] = None, n_test: Optional[int] = None):
        if (ratio is None) == (n_test is None):
            raise ConfigurationError("Exactly one of ratio or n_test must be given")
        if ratio is not None and not 0 < ratio < 1:
            raise ConfigurationError(f"ratio must be in (0, 1), got {ratio}")
        if n_test is not None and n_test < 1:
            raise ConfigurationError(f"n_test must be >= 1, got {n_test}")
        self.ratio = ratio
        self.n_test = n_test

    def generate_splits(self, total_length: int) -> List[Split]:
        """One split: training on the leading rows, testing on the rest."""
        if self.n_test is not None:
            n_test = self.n_test
        else:
            n_test = total_length - int(math.floor(total_length * self.ratio))
        n_train = total_length - n_test
        if n_train < 1 or n_test < 1:
            raise ConfigurationError(
                f"Holdout leaves {n_train} training and {n_test} test rows "
                f"out of {total_length}"
            )
        return [
            Split(
                index=0,
                train=range(0, n_train),
                test=range(n_train, total_length),
                horizon=n_test,
                metadata={"mode": "holdout"},
            )
        ]

    def iter_tasks(
        self, task: TimeSeriesTask
    ) -> Iterator[Tuple[Split, TimeSeriesTask, TimeSeriesTask]]:
        for split in self.generate_splits(task.n_rows):
            yield split, task.slice(split.train), task.slice(split.test)
