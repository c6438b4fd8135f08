"""Lag and difference feature engineering.

This module provides:
- LagSpec, the declaration of which lagged/differenced columns to derive
- LagDiffFeaturizer, with full featurization and incremental extension
- difference/integrate helpers
"""

from rollcast.features.engineering import (
    LagDiffFeaturizer,
    LagSpec,
    difference,
    integrate,
    to_supervised,
)

__all__ = [
    "LagDiffFeaturizer",
    "LagSpec",
    "difference",
    "integrate",
    "to_supervised",
]
