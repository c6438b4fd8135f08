"""Forecast backends."""

from rollcast.models.base_model import (
    ForecastBackend,
    Model,
    Prediction,
    available_backends,
    create_backend,
    register_backend,
)
# Imported for their registration side effect
from rollcast.models import baselines, regression  # noqa: F401

__all__ = [
    "ForecastBackend",
    "Model",
    "Prediction",
    "available_backends",
    "create_backend",
    "register_backend",
]
