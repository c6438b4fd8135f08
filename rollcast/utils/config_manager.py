"""
Configuration management utilities.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema
import yaml

from rollcast.utils.error_handling import ConfigurationError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).parent / "schemas"
EVALUATION_SCHEMA = "evaluation_config_schema.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "task": {"frequency": 1},
    "window": {"horizon": 1, "skip": 1.0, "mode": "growing"},
    "features": None,
    "evaluation": {
        "measure": "rmse",
        "aggregate": "mean",
        "on_error": "fail",
        "n_jobs": 1,
        "prefer": "threads",
        "keep_predictions": False,
    },
    "backends": [],
    "ensemble": None,
    "logging": {"level": "INFO", "log_dir": None},
}


class ConfigManager:
    """
    Manages loading, validation, and merging of configurations, and builds
    the engine's objects from a validated configuration.
    """

    def __init__(self, config_dir: Optional[str] = None, schema_dir: Optional[str] = None):
        self.config_dir = Path(config_dir) if config_dir else Path("config")
        self.schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR

    def load_config(self, config_name: str, schema_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Load a configuration file (YAML or JSON).
        Optionally validate against a schema.

        Args:
            config_name: Name of config file (e.g. 'evaluation.yaml')
            schema_name: Name of schema file (e.g. 'evaluation_config_schema.json')

        Returns:
            Loaded configuration dictionary
        """
        config_path = self.config_dir / config_name

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "r") as f:
            if config_path.suffix in (".yaml", ".yml"):
                config = yaml.safe_load(f) or {}
            elif config_path.suffix == ".json":
                config = json.load(f)
            else:
                raise ConfigurationError(f"Unsupported configuration format: {config_path.suffix}")

        if schema_name:
            self.validate_config(config, schema_name)

        return config

    def load_evaluation_config(self, config_name: str) -> Dict[str, Any]:
        """Load, validate against the bundled schema, and merge over the defaults."""
        config = self.load_config(config_name, schema_name=EVALUATION_SCHEMA)
        return self.merge_configs(DEFAULT_CONFIG, config)

    def validate_config(self, config: Dict[str, Any], schema_name: str = EVALUATION_SCHEMA) -> None:
        """
        Validate configuration against a schema.

        Args:
            config: Configuration dictionary
            schema_name: Name of schema file

        Raises:
            ConfigurationError: Naming the offending path
        """
        schema_path = self.schema_dir / schema_name
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        with open(schema_path, "r") as f:
            schema = json.load(f)

        try:
            jsonschema.validate(instance=config, schema=schema)
        except jsonschema.exceptions.ValidationError as e:
            path_str = " -> ".join(str(p) for p in e.path) if e.path else "root"
            error_msg = f"Configuration validation failed at '{path_str}': {e.message}"
            logger.error(error_msg)
            raise ConfigurationError(error_msg) from e
        logger.info(f"Configuration successfully validated against {schema_name}")

    def merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two configurations.

        Args:
            base: Base configuration
            override: Override configuration

        Returns:
            Merged configuration
        """
        merged = copy.deepcopy(base)
        for key, value in override.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = self.merge_configs(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    def get_value(self, config: Dict[str, Any], path: str, default: Any = None) -> Any:
        """
        Get a value from configuration using dot notation.

        Args:
            config: Configuration dictionary
            path: Dot-separated path (e.g., 'window.horizon')
            default: Default value if path not found
        """
        current = config
        for key in path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def set_value(self, config: Dict[str, Any], path: str, value: Any) -> None:
        """
        Set a value in configuration using dot notation.
        Creates intermediate dictionaries if they don't exist.
        """
        keys = path.split('.')
        current = config
        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def configure_logging(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply the 'logging' section to the root logger and return it."""
        from rollcast.utils.logging_config import setup_logging

        section = self.merge_configs(DEFAULT_CONFIG["logging"], config.get("logging") or {})
        setup_logging(section["level"], section["log_dir"])
        return section

    # -- object builders -------------------------------------------------

    def build_window(self, config: Dict[str, Any], total_length: Optional[int] = None):
        """Window from the 'window' section; a fraction needs ``total_length``."""
        from rollcast.data.splitters import Window

        section = config.get("window", {})
        horizon = section.get("horizon", 1)
        skip = section.get("skip", 1.0)
        mode = section.get("mode", "growing")
        if "initial_size" in section:
            return Window(section["initial_size"], horizon, skip, mode)
        if "initial_fraction" in section:
            if total_length is None:
                raise ConfigurationError("initial_fraction needs the series length")
            return Window.from_fraction(total_length, section["initial_fraction"], horizon, skip, mode)
        raise ConfigurationError("window needs initial_size or initial_fraction")

    def build_lag_spec(self, config: Dict[str, Any]):
        """LagSpec from the 'features' section, or None when absent."""
        from rollcast.features.engineering import LagSpec

        section = config.get("features")
        if not section:
            return None
        return LagSpec.from_dict(section)

    def build_context(self, config: Dict[str, Any]):
        """EvaluationContext from the 'evaluation' section."""
        from rollcast.evaluation.evaluator import EvaluationContext

        section = self.merge_configs(DEFAULT_CONFIG["evaluation"], config.get("evaluation", {}))
        return EvaluationContext(
            error_policy=section["on_error"],
            n_jobs=section["n_jobs"],
            prefer=section["prefer"],
            aggregate=section["aggregate"],
            keep_predictions=section["keep_predictions"],
        )

    def build_measure(self, config: Dict[str, Any]):
        from rollcast.evaluation.metrics import get_measure

        return get_measure(self.get_value(config, "evaluation.measure", "rmse"))

    def build_backends(self, entries: List[Dict[str, Any]]):
        """Backends from a list of {name, params} entries."""
        from rollcast.models.base_model import create_backend

        return [create_backend(e["name"], **e.get("params", {})) for e in entries]

    def build_ensemble(self, config: Dict[str, Any]):
        """StackedForecastEnsemble from the 'ensemble' section."""
        from rollcast.models.ensemble import MetaLearner, StackedForecastEnsemble

        section = config.get("ensemble")
        if not section:
            raise ConfigurationError("Configuration has no 'ensemble' section")
        meta = section.get("meta_learner", {})
        meta_learner = MetaLearner(
            meta.get("estimator", "linear"),
            param_grid=meta.get("param_grid"),
            n_splits=meta.get("n_splits", 3),
            **meta.get("params", {}),
        )
        return StackedForecastEnsemble(
            self.build_backends(section["base_backends"]),
            meta_learner=meta_learner,
            context=self.build_context(config),
        )
