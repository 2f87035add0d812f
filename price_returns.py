#!/usr/bin/env python3
"""
Return / Volatility Calculator
==============================
Derives simple (arithmetic) returns, trailing N-day returns and annualized
volatility from a stock's price history. These feed the momentum and risk
metrics of the factor engine and the return series of the risk matrix.

Conventions
-----------
* Price series are sorted oldest-to-newest before any computation, so
  ``simple_returns([100, 110, 99]) == [0.10, -0.10]``.
* Returns are simple percent changes, not log returns. No smoothing and no
  outlier trimming is applied.
* Volatility uses the population standard deviation (denominator = count).
  The risk matrix in portfolio_constructor uses the sample denominator
  (count - 1) for covariance; the two are deliberately left as they are.
"""

import logging
import math
from datetime import timedelta

import numpy as np

log = logging.getLogger(__name__)


def _finite(x) -> bool:
    return x is not None and math.isfinite(x)


def sort_price_series(points) -> list:
    """Return PricePoints oldest-to-newest with one point per date.

    When a date appears more than once the last occurrence wins.
    """
    by_date = {}
    for p in points:
        by_date[p.date] = p
    if len(by_date) < len(points):
        log.debug("Dropped %d duplicate price dates", len(points) - len(by_date))
    return [by_date[d] for d in sorted(by_date)]


def simple_returns(prices) -> list:
    """Period-over-period simple returns of an oldest-to-newest price list.

    A pair whose base price is zero (or either price non-finite) yields no
    return; it is skipped rather than divided.
    """
    out = []
    for prev, cur in zip(prices[:-1], prices[1:]):
        if not (_finite(prev) and _finite(cur)) or prev == 0:
            continue
        out.append((cur - prev) / prev)
    return out


def trailing_return(points, n_days: int, as_of=None):
    """Return over the last ``n_days`` calendar days, or None.

    The most recent price is compared with the most recent price dated on
    or before ``as_of - n_days``. ``as_of`` defaults to the date of the
    most recent observation; observations after ``as_of`` are ignored.
    """
    series = sort_price_series(points)
    if as_of is not None:
        series = [p for p in series if p.date <= as_of]
    if not series:
        return None
    recent = series[-1]
    anchor = as_of if as_of is not None else recent.date
    cutoff = anchor - timedelta(days=n_days)

    past = None
    for p in reversed(series):
        if p.date <= cutoff:
            past = p
            break
    if past is None or not _finite(past.price) or past.price == 0:
        return None
    if not _finite(recent.price):
        return None
    return (recent.price - past.price) / past.price


def volatility(returns, annualize_factor: float = 252):
    """Population std of ``returns`` scaled by sqrt(annualize_factor).

    None with fewer than two observations; identical returns give 0.0.
    """
    arr = np.asarray(list(returns), dtype=float)
    if arr.size < 2:
        return None
    return float(np.std(arr, ddof=0) * math.sqrt(annualize_factor))


def compute_price_metrics(points, cfg: dict, as_of=None) -> dict:
    """Trailing returns and recent volatility for one stock.

    Returns a dict keyed by the configured lookback labels (e.g.
    ``return_30d``) plus the volatility field. Values are None where the
    history is too short.
    """
    rcfg = cfg.get("returns", {})
    lookbacks = rcfg.get("lookbacks", {"return_30d": 30, "return_60d": 60})
    vol_field = rcfg.get("volatility_field", "volatility_30d")
    window = rcfg.get("volatility_window", 30)
    min_prices = rcfg.get("min_volatility_prices", 5)
    annualize = rcfg.get("annualize_factor", 252)

    series = sort_price_series(points)
    if as_of is not None:
        series = [p for p in series if p.date <= as_of]

    out = {label: None for label in lookbacks}
    out[vol_field] = None
    if len(series) < 2:
        return out

    for label, days in lookbacks.items():
        out[label] = trailing_return(series, days, as_of)

    recent = series[-window:]
    if len(recent) >= min_prices:
        out[vol_field] = volatility(simple_returns([p.price for p in recent]), annualize)
    return out
