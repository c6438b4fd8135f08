"""Synthetic series shared by fixtures and property tests."""

import numpy as np
import pandas as pd


def make_seasonal_frame(n: int = 200, period: int = 7, seed: int = 42) -> pd.DataFrame:
    """Trend + weekly cycle + noise, with one exogenous column."""
    rng = np.random.default_rng(seed)
    t = np.arange(n)
    dates = pd.date_range(start="2023-01-01", periods=n, freq="D")
    y = 50 + 0.3 * t + 5 * np.sin(2 * np.pi * t / period) + rng.normal(0, 1, n)
    x = rng.normal(0, 1, n)
    return pd.DataFrame({"y": y, "x": x}, index=dates)
