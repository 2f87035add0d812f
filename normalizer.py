#!/usr/bin/env python3
"""
Cross-Sectional Normalizer
==========================
Turns a raw metric value into a z-score relative to its peer universe:

    z = (value - mean) / std          (population mean and std)

Rules, applied per metric:
  * absent, NaN and infinite values are dropped from the universe;
  * fewer than 2 valid peer values -> the metric contributes nothing;
  * all valid peers identical (std == 0) -> the metric contributes nothing;
  * a stock whose own value is invalid gets nothing for that metric;
  * direction "lower" negates z so that higher is always better.

No clipping or winsorization is applied: an outlier produces a large
z-score.

Two entry points compute the same numbers:
  ``normalize``      one stock, looked up by ticker (the reference form)
  ``zscore_column``  every stock in one pass (used by the factor engine)
"""

import math

import numpy as np
import pandas as pd
from scipy import stats


def valid_values(values) -> np.ndarray:
    """Finite float values of ``values``; None/NaN/inf/non-numeric dropped."""
    arr = pd.to_numeric(pd.Series(values, dtype=object), errors="coerce").to_numpy(dtype=float)
    return arr[np.isfinite(arr)]


def universe_stats(values):
    """(mean, population std) of the valid values, or None if unusable."""
    valid = valid_values(values)
    if valid.size < 2:
        return None
    if valid.max() == valid.min():
        return None
    std = float(np.std(valid, ddof=0))
    if std == 0:
        return None
    return float(np.mean(valid)), std


def _as_frame(universe) -> pd.DataFrame:
    if isinstance(universe, pd.DataFrame):
        return universe
    return pd.DataFrame(list(universe))


def normalize(field: str, universe, ticker: str, direction: str = "higher"):
    """Z-score of ``ticker``'s ``field`` within ``universe``, or None.

    ``universe`` is a DataFrame (or list of dicts) with a ``Ticker`` column
    and one column per metric. The stock is found by ticker, not by
    position or object identity.
    """
    df = _as_frame(universe)
    if field not in df.columns or "Ticker" not in df.columns:
        return None
    own = df.loc[df["Ticker"] == ticker, field]
    if own.empty:
        return None
    value = pd.to_numeric(pd.Series([own.iloc[0]], dtype=object), errors="coerce").iloc[0]
    if pd.isna(value) or not math.isfinite(value):
        return None

    st = universe_stats(df[field])
    if st is None:
        return None
    mean, std = st
    z = (float(value) - mean) / std
    return -z if direction == "lower" else z


def zscore_column(series: pd.Series, direction: str = "higher") -> pd.Series:
    """Z-score every row of ``series`` against the column itself.

    Rows with invalid values, and every row when the column has fewer than
    two distinct valid values, come back as NaN.
    """
    values = pd.to_numeric(series.astype(object), errors="coerce").astype(float)
    finite = np.isfinite(values.to_numpy())
    out = pd.Series(np.nan, index=series.index, dtype=float)
    if universe_stats(values[finite]) is None:
        return out

    z = stats.zscore(values[finite].to_numpy(), ddof=0)
    if direction == "lower":
        z = -z
    out[finite] = z
    return out
