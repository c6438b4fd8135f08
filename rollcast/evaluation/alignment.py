"""Horizon alignment between forecasts and evaluation windows."""

import logging
from typing import Optional

import pandas as pd

from rollcast.models.base_model import Prediction
from rollcast.utils.error_handling import HorizonTooShortError

logger = logging.getLogger(__name__)


class HorizonAligner:
    """
    Reconciles a backend's forecast length with the test range it is scored on.

    A forecast may be longer than its test range, e.g. when a tuned horizon
    parameter is pinned to an upper bound, or when the terminal split of a
    series is shorter than the horizon. The forecast is truncated to its
    first ``len(test_range)`` steps; it is never padded.
    """

    def align(
        self,
        prediction: Prediction,
        test_range: range,
        truth: Optional[pd.DataFrame] = None,
    ) -> Prediction:
        """
        Truncate ``prediction`` to the length of ``test_range``.

        Args:
            prediction: Backend forecast
            test_range: Positional test range of the split
            truth: Optional true values of the test rows; when given the
                result is indexed by their timestamps and carries them

        Returns:
            Truncated Prediction

        Raises:
            HorizonTooShortError: If the forecast has fewer steps than the test range
        """
        needed = len(test_range)
        if len(prediction) < needed:
            raise HorizonTooShortError(
                f"Forecast has {len(prediction)} steps but the test range "
                f"[{test_range.start}, {test_range.stop}) needs {needed}",
                backend=prediction.backend,
            )
        if len(prediction) > needed:
            logger.debug(f"Truncating {len(prediction)}-step forecast to {needed} steps")

        aligned = prediction.head(needed)
        if truth is None:
            return aligned

        if len(truth) != needed:
            raise ValueError(
                f"Truth has {len(truth)} rows but the test range has {needed}"
            )
        truth = truth[aligned.targets]
        response = aligned.response.set_axis(truth.index, axis=0)
        return Prediction(response, truth.copy(), prediction.backend)


_DEFAULT_ALIGNER = HorizonAligner()


def align(
    prediction: Prediction,
    test_range: range,
    truth: Optional[pd.DataFrame] = None,
) -> Prediction:
    """Module-level shortcut for ``HorizonAligner().align``."""
    return _DEFAULT_ALIGNER.align(prediction, test_range, truth)
