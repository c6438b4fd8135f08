"""
Property-based tests for lag/difference featurization.

Tests that derived column sets and dropped row counts follow the lag spec,
that differencing is invertible, and that extending a FeatureTask with new
rows gives exactly what featurizing the concatenated series gives.
"""

import numpy as np
import pandas as pd
import pytest
from hypothesis import given, settings, strategies as st
from pandas.testing import assert_frame_equal

from rollcast.data.structs import FeatureTask, TaskType, TimeSeriesTask
from rollcast.features.engineering import (
    LagDiffFeaturizer,
    LagSpec,
    difference,
    integrate,
    to_supervised,
)
from rollcast.utils.error_handling import ConfigurationError, IncrementalUpdateMismatchError


def make_task(n, seed=0, frequency=7, start="2021-01-01"):
    rng = np.random.default_rng(seed)
    dates = pd.date_range(start=start, periods=n, freq="D")
    frame = pd.DataFrame({
        "y": np.cumsum(rng.normal(0, 1, n)),
        "x": rng.normal(0, 1, n),
    }, index=dates)
    return TimeSeriesTask(frame, targets="y", frequency=frequency)


@st.composite
def lag_specs(draw):
    lags = draw(st.lists(st.integers(min_value=1, max_value=6), min_size=1, max_size=3))
    seasonal = draw(st.lists(st.integers(min_value=1, max_value=2), max_size=2))
    differences = draw(st.integers(min_value=0, max_value=2))
    pad_missing = draw(st.booleans())
    columns = draw(st.sampled_from([None, "all", ("x",)]))
    return LagSpec(
        lags=tuple(lags),
        seasonal_lags=tuple(seasonal),
        differences=differences,
        columns=columns,
        pad_missing=pad_missing,
    )


class TestFeaturizerProperties:

    @given(spec=lag_specs(), n=st.integers(min_value=40, max_value=90))
    @settings(max_examples=50, deadline=None)
    def test_columns_and_dropped_rows_follow_spec(self, spec, n):
        task = make_task(n, frequency=5)
        result = LagDiffFeaturizer(spec).featurize(task)

        sources = spec.resolve_columns(task.columns, task.targets)
        expected_count = len(sources) * len(spec.offsets(5)) * len(spec.difference_orders)
        assert len(result.derived_columns) == expected_count
        assert list(result.columns[:2]) == ["y", "x"]

        history = spec.history_length(5)
        if spec.pad_missing:
            assert result.n_rows == n
            assert result.data[list(result.derived_columns)].iloc[history:].notna().all().all()
        else:
            assert result.n_rows == n - history
            assert result.index[0] == task.index[history]
            assert result.data.notna().all().all()

    @given(
        spec=lag_specs(),
        n=st.integers(min_value=40, max_value=80),
        cut=st.floats(min_value=0.5, max_value=0.95),
        seed=st.integers(min_value=0, max_value=1000),
    )
    @settings(max_examples=50, deadline=None)
    def test_extend_matches_full_recompute(self, spec, n, cut, seed):
        """Property: extend(featurize(head), tail) == featurize(head + tail)."""
        full = make_task(n, seed=seed, frequency=5)
        split_at = max(int(n * cut), spec.history_length(5) + 1)
        if split_at >= n:
            split_at = n - 1
        featurizer = LagDiffFeaturizer(spec)

        head = full.slice(range(0, split_at))
        extended = featurizer.extend(featurizer.featurize(head), full.data.iloc[split_at:])
        expected = featurizer.featurize(full)

        assert_frame_equal(extended.data, expected.data, check_exact=True, check_freq=False)
        assert extended.source_last_timestamp == full.last_timestamp

    @given(
        data=st.lists(
            st.floats(min_value=-1e3, max_value=1e3, allow_nan=False),
            min_size=4,
            max_size=40,
        ),
        order=st.integers(min_value=0, max_value=3),
    )
    @settings(max_examples=100, deadline=None)
    def test_integrate_inverts_difference(self, data, order):
        values = np.asarray(data)
        rebuilt = integrate(difference(values, order).to_numpy(), values[:order])
        np.testing.assert_allclose(rebuilt, values, rtol=1e-9, atol=1e-6)


def test_seasonal_and_plain_lags_combined():
    task = make_task(60, frequency=7)
    spec = LagSpec(lags=(2, 3, 4), differences=1, seasonal_lags=(1, 2))
    result = LagDiffFeaturizer(spec).featurize(task)

    assert list(result.derived_columns) == [
        "y_lag2_diff1", "y_lag3_diff1", "y_lag4_diff1", "y_lag7_diff1", "y_lag14_diff1",
    ]
    # Deepest offset 14 plus one row lost to differencing
    assert result.n_rows == 60 - 15


def test_plain_lags_drop_max_lag_plus_order():
    task = make_task(60)
    result = LagDiffFeaturizer(LagSpec(lags=(2, 3, 4), differences=1)).featurize(task)
    assert len(result.derived_columns) == 3
    assert result.n_rows == 55


def test_derived_values():
    frame = pd.DataFrame({"y": [1.0, 4.0, 9.0, 16.0, 25.0]})
    task = TimeSeriesTask(frame, targets="y")
    result = LagDiffFeaturizer(LagSpec(lags=(1,), differences=2)).featurize(task)

    data = result.data
    assert list(data.index) == [3, 4]
    assert list(data["y_lag1_diff1"]) == [5.0, 7.0]
    assert list(data["y_lag1_diff2"]) == [2.0, 2.0]


def test_chained_extend_matches_full_recompute():
    full = make_task(70, seed=3)
    spec = LagSpec(lags=(1, 3), differences=1, seasonal_lags=(1,), columns="all")
    featurizer = LagDiffFeaturizer(spec)

    current = featurizer.featurize(full.slice(range(0, 30)))
    for start, stop in [(30, 31), (31, 45), (45, 70)]:
        current = featurizer.extend(current, full.data.iloc[start:stop])

    assert_frame_equal(
        current.data, featurizer.featurize(full).data, check_exact=True, check_freq=False
    )


def test_extend_leaves_input_untouched():
    full = make_task(40)
    featurizer = LagDiffFeaturizer(LagSpec(lags=(1, 2)))
    base = featurizer.featurize(full.slice(range(0, 30)))
    before = base.data

    featurizer.extend(base, full.data.iloc[30:])

    assert_frame_equal(base.data, before)


def test_extend_rejects_overlapping_rows():
    full = make_task(40)
    featurizer = LagDiffFeaturizer(LagSpec(lags=(1,)))
    base = featurizer.featurize(full.slice(range(0, 30)))

    with pytest.raises(IncrementalUpdateMismatchError):
        featurizer.extend(base, full.data.iloc[29:35])


def test_extend_rejects_column_mismatch():
    full = make_task(40)
    featurizer = LagDiffFeaturizer(LagSpec(lags=(1,)))
    base = featurizer.featurize(full.slice(range(0, 30)))

    with pytest.raises(IncrementalUpdateMismatchError):
        featurizer.extend(base, full.data.iloc[30:][["y"]])
    with pytest.raises(IncrementalUpdateMismatchError):
        featurizer.extend(base, full.data.iloc[30:].assign(z=1.0))
    with pytest.raises(IncrementalUpdateMismatchError):
        featurizer.extend(base, full.data.iloc[0:0])


def test_task_type_depends_on_lagged_columns():
    task = make_task(30)
    assert LagDiffFeaturizer(LagSpec()).featurize(task).task_type is TaskType.REGRESSION
    assert LagDiffFeaturizer(LagSpec(columns=("x",))).featurize(task).task_type is TaskType.FORECAST


def test_pad_missing_keeps_rows():
    task = make_task(20)
    result = LagDiffFeaturizer(LagSpec(lags=(3,), pad_missing=True)).featurize(task)
    assert result.n_rows == 20
    assert result.data["y_lag3_diff0"].isna().sum() == 3


def test_all_columns():
    task = make_task(20)
    result = LagDiffFeaturizer(LagSpec(lags=(1,), columns="all")).featurize(task)
    assert list(result.derived_columns) == ["y_lag1_diff0", "x_lag1_diff0"]


def test_too_short_series_raises():
    task = make_task(10)
    with pytest.raises(ConfigurationError):
        LagDiffFeaturizer(LagSpec(lags=(5,), seasonal_lags=(2,))).featurize(task)


def test_unknown_lag_column_raises():
    with pytest.raises(ConfigurationError):
        LagDiffFeaturizer(LagSpec(columns=("missing",))).featurize(make_task(20))


@pytest.mark.parametrize("kwargs", [
    {"lags": (0,)},
    {"lags": (1.5,)},
    {"differences": -1},
    {"lags": (), "seasonal_lags": ()},
])
def test_invalid_lag_spec(kwargs):
    with pytest.raises(ConfigurationError):
        LagSpec(**kwargs)


def test_lag_spec_dict_roundtrip():
    spec = LagSpec(lags=(3, 1), differences=1, seasonal_lags=(2,), columns=["y", "x"])
    assert spec.lags == (1, 3)
    assert LagSpec.from_dict(spec.to_dict()) == spec


def test_feature_task_is_not_updatable():
    result = LagDiffFeaturizer(LagSpec()).featurize(make_task(20))
    assert isinstance(result, FeatureTask)
    with pytest.raises(TypeError):
        result.update(make_task(5, start="2022-01-01").data)
    # Slices drop the extension state
    assert type(result.slice(range(0, 5))) is TimeSeriesTask


def test_to_supervised_drops_incomplete_rows():
    task = make_task(20)
    result = LagDiffFeaturizer(LagSpec(lags=(2,), pad_missing=True)).featurize(task)
    X, y = to_supervised(result)
    assert list(X.columns) == ["y_lag2_diff0"]
    assert len(X) == len(y) == 18
    assert (X.index == y.index).all()
