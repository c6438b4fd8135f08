"""
Tests for logging setup, the worker pool and the error types.
"""

import json
import logging
import sys

import pytest

from rollcast.utils.error_handling import (
    BackendPredictError,
    BackendTrainError,
    ConfigurationError,
    ErrorPolicy,
    HorizonTooShortError,
    SplitError,
    SplitFailure,
)
from rollcast.utils.logging_config import JSONFormatter, setup_logging, split_context
from rollcast.utils.parallel import run_indexed


def test_setup_logging_writes_json_lines(tmp_path, restore_root_logger):
    setup_logging(log_level="INFO", log_dir=str(tmp_path))

    logger = logging.getLogger("rollcast.test")
    logger.info("evaluated", extra={"props": {"split": 3, "backend": "naive"}})
    logger.error("failed")
    for handler in logging.getLogger().handlers:
        handler.flush()

    records = [json.loads(line) for line in (tmp_path / "app.jsonl").read_text().splitlines()]
    evaluated = [r for r in records if r["message"] == "evaluated"][0]
    assert evaluated["level"] == "INFO"
    assert evaluated["split"] == 3
    assert evaluated["backend"] == "naive"

    errors = [json.loads(line) for line in (tmp_path / "errors.jsonl").read_text().splitlines()]
    assert [r["message"] for r in errors] == ["failed"]


def test_setup_logging_console_only(tmp_path, restore_root_logger):
    setup_logging(log_level="WARNING", log_dir=None)
    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert root.level == logging.WARNING


def test_setup_logging_returns_paths_and_quiets_libraries(tmp_path, restore_root_logger):
    paths = setup_logging(log_level="info", log_dir=str(tmp_path / "logs"))

    assert paths == {"app": tmp_path / "logs" / "app.jsonl", "errors": tmp_path / "logs" / "errors.jsonl"}
    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger("optuna").level == logging.WARNING

    setup_logging(log_level="DEBUG", log_dir=None)
    assert logging.getLogger("optuna").level == logging.DEBUG


def test_split_context_drops_unset_fields():
    assert split_context(3, "naive") == {"props": {"split_index": 3, "backend": "naive"}}
    assert split_context(backend="drift", attempt=2) == {"props": {"backend": "drift", "attempt": 2}}
    assert split_context() == {"props": {}}


def test_split_context_reaches_the_json_file(tmp_path, restore_root_logger):
    setup_logging(log_level="WARNING", log_dir=str(tmp_path))

    logging.getLogger("rollcast.test").warning(
        "split skipped", extra=split_context(4, "drift", exception_type="BackendTrainError")
    )
    for handler in logging.getLogger().handlers:
        handler.flush()

    record = json.loads((tmp_path / "app.jsonl").read_text().splitlines()[-1])
    assert record["message"] == "split skipped"
    assert record["split_index"] == 4
    assert record["backend"] == "drift"
    assert record["exception_type"] == "BackendTrainError"


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "msg", None, None)
        record.exc_info = sys.exc_info()
    payload = json.loads(JSONFormatter().format(record))
    assert "RuntimeError: boom" in payload["exception"]


class TestErrors:

    def test_hierarchy(self):
        assert issubclass(BackendTrainError, SplitError)
        assert issubclass(BackendPredictError, SplitError)
        assert issubclass(HorizonTooShortError, SplitError)
        assert not issubclass(ConfigurationError, SplitError)
        assert issubclass(ConfigurationError, ValueError)

    def test_context_is_kept_once_set(self):
        exc = BackendTrainError("nan loss", backend="lr")
        exc.with_context(backend="other", split_index=4)
        assert exc.backend == "lr"
        assert exc.split_index == 4
        assert str(exc) == "[split 4, backend 'lr'] nan loss"
        assert str(SplitError("plain")) == "plain"

    def test_failure_record(self):
        try:
            raise HorizonTooShortError("too short", backend="naive", split_index=2)
        except HorizonTooShortError as exc:
            failure = SplitFailure.from_exception(exc)
        assert failure.split_index == 2
        assert failure.exception_type == "HorizonTooShortError"
        assert failure.exception_message == "too short"
        assert "split 2 skipped" in failure.describe()
        assert failure.to_dict()["backend"] == "naive"

    def test_error_policy_parse(self):
        assert ErrorPolicy.parse("WARN") is ErrorPolicy.WARN
        assert ErrorPolicy.parse(ErrorPolicy.FAIL_FAST) is ErrorPolicy.FAIL_FAST
        with pytest.raises(ConfigurationError):
            ErrorPolicy.parse("retry")


class TestRunIndexed:

    @pytest.mark.parametrize("n_jobs", [1, 2])
    def test_results_are_keyed_and_ordered(self, n_jobs):
        items = [(3, 30), (1, 10), (2, 20)]
        result = run_indexed(lambda x: x + 1, items, n_jobs=n_jobs)
        assert list(result.items()) == [(1, 11), (2, 21), (3, 31)]

    def test_duplicate_keys(self):
        with pytest.raises(ValueError):
            run_indexed(lambda x: x, [(1, 1), (1, 2)])
