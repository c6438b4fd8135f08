"""
Tests for configuration loading, validation and object building.
"""

import json
import logging

import pytest
import yaml

from rollcast.data.splitters import Window, generate_splits
from rollcast.evaluation.evaluator import EvaluationContext
from rollcast.features.engineering import LagSpec
from rollcast.models.ensemble import StackedForecastEnsemble
from rollcast.utils.config_manager import DEFAULT_CONFIG, ConfigManager
from rollcast.utils.error_handling import ConfigurationError, ErrorPolicy


@pytest.fixture
def config():
    return {
        "task": {"frequency": 7, "targets": "y"},
        "window": {"initial_size": 150, "horizon": 10, "skip": 0.5},
        "features": {"lags": [1, 2], "differences": 1, "seasonal_lags": [1]},
        "evaluation": {"measure": "mae", "on_error": "warn", "n_jobs": 2},
        "backends": [
            {"name": "naive"},
            {"name": "lagged_regression", "params": {"lags": [1, 7], "id": "lr"}},
        ],
        "ensemble": {
            "base_backends": [{"name": "naive"}, {"name": "drift"}],
            "meta_learner": {"estimator": "ridge", "params": {"alpha": 0.5}},
        },
    }


@pytest.fixture
def manager(tmp_path):
    return ConfigManager(config_dir=str(tmp_path))


def test_load_yaml_and_merge_defaults(manager, tmp_path, config):
    (tmp_path / "evaluation.yaml").write_text(yaml.safe_dump(config))

    loaded = manager.load_evaluation_config("evaluation.yaml")

    assert loaded["evaluation"]["measure"] == "mae"
    assert loaded["evaluation"]["aggregate"] == "mean"
    assert loaded["logging"] == DEFAULT_CONFIG["logging"]
    # Defaults are not mutated by the merge
    assert DEFAULT_CONFIG["evaluation"]["measure"] == "rmse"


def test_load_json(manager, tmp_path, config):
    (tmp_path / "evaluation.json").write_text(json.dumps(config))
    assert manager.load_config("evaluation.json")["task"]["frequency"] == 7


def test_missing_and_unsupported_files(manager, tmp_path):
    with pytest.raises(FileNotFoundError):
        manager.load_config("missing.yaml")
    (tmp_path / "evaluation.toml").write_text("a = 1")
    with pytest.raises(ConfigurationError):
        manager.load_config("evaluation.toml")


@pytest.mark.parametrize("path, value", [
    ("window.horizon", 0),
    ("window.mode", "sliding"),
    ("evaluation.on_error", "ignore"),
    ("evaluation.n_jobs", 0),
    ("features.unknown", True),
])
def test_schema_rejects_bad_values(manager, config, path, value):
    manager.set_value(config, path, value)
    with pytest.raises(ConfigurationError) as exc_info:
        manager.validate_config(config)
    assert path.split(".")[0] in str(exc_info.value)


def test_get_and_set_value(manager, config):
    assert manager.get_value(config, "window.horizon") == 10
    assert manager.get_value(config, "window.missing", "x") == "x"
    manager.set_value(config, "logging.level", "DEBUG")
    assert config["logging"]["level"] == "DEBUG"


def test_build_window(manager, config):
    assert manager.build_window(config) == Window(150, 10, 0.5, "growing")

    config["window"] = {"initial_fraction": 0.5, "horizon": 5}
    assert manager.build_window(config, total_length=200).initial_size == 100
    with pytest.raises(ConfigurationError):
        manager.build_window(config)

    config["window"] = {"horizon": 5}
    with pytest.raises(ConfigurationError):
        manager.build_window(config)


def test_build_lag_spec(manager, config):
    assert manager.build_lag_spec(config) == LagSpec(lags=(1, 2), differences=1, seasonal_lags=(1,))
    config["features"] = None
    assert manager.build_lag_spec(config) is None


def test_build_context_and_measure(manager, config):
    context = manager.build_context(config)
    assert isinstance(context, EvaluationContext)
    assert context.error_policy is ErrorPolicy.WARN
    assert context.n_jobs == 2
    assert context.aggregate == "mean"
    assert manager.build_measure(config).name == "mae"


def test_build_backends(manager, config):
    backends = manager.build_backends(config["backends"])
    assert [b.label for b in backends] == ["naive", "lr"]
    with pytest.raises(ConfigurationError):
        manager.build_backends([{"name": "arima"}])


def test_build_ensemble(manager, config):
    ensemble = manager.build_ensemble(config)
    assert isinstance(ensemble, StackedForecastEnsemble)
    assert ensemble.base_output_order == ("naive", "drift")
    assert ensemble.meta_learner.name == "ridge"
    assert ensemble.meta_learner.params == {"alpha": 0.5}
    assert ensemble.context.error_policy is ErrorPolicy.WARN

    del config["ensemble"]
    with pytest.raises(ConfigurationError):
        manager.build_ensemble(config)


def test_whole_number_float_window_from_yaml(manager, tmp_path, config):
    config["window"] = {"initial_size": 100.0, "horizon": 10.0}
    (tmp_path / "evaluation.yaml").write_text(yaml.safe_dump(config))

    window = manager.build_window(manager.load_evaluation_config("evaluation.yaml"))

    assert window.initial_size == 100 and type(window.initial_size) is int
    assert type(window.horizon) is int
    assert len(generate_splits(200, window)) == 10


def test_configure_logging_writes_to_log_dir(manager, tmp_path, config, restore_root_logger):
    config["logging"] = {"level": "DEBUG", "log_dir": str(tmp_path / "logs")}

    section = manager.configure_logging(config)
    logging.getLogger("rollcast.test").debug("configured from file")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert section == {"level": "DEBUG", "log_dir": str(tmp_path / "logs")}
    assert logging.getLogger().level == logging.DEBUG
    assert "configured from file" in (tmp_path / "logs" / "app.jsonl").read_text()


def test_configure_logging_defaults_to_console(manager, config, restore_root_logger):
    section = manager.configure_logging(config)

    assert section == DEFAULT_CONFIG["logging"]
    assert len(logging.getLogger().handlers) == 1
    assert logging.getLogger().level == logging.INFO
