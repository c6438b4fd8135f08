"""Horizon alignment, measures, evaluation and tuning."""

from rollcast.evaluation.alignment import HorizonAligner
from rollcast.evaluation.metrics import Measure, available_measures, get_measure
from rollcast.evaluation.evaluator import (
    EvaluationContext,
    EvaluationResult,
    Evaluator,
)

__all__ = [
    "HorizonAligner",
    "Measure",
    "available_measures",
    "get_measure",
    "EvaluationContext",
    "EvaluationResult",
    "Evaluator",
]
