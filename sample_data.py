#!/usr/bin/env python3
"""
Synthetic universe for demos and tests.

Sector-aware fundamentals drawn from truncated normals plus a geometric
random-walk price history per stock. Fully determined by ``seed``; no
network access and no wall clock (dates count back from ``end``).
"""

from datetime import date, timedelta

import numpy as np

from schemas import PricePoint, StockRecord

# (mean, std) per metric; vol is annualised, drift is daily
_SECTOR_PROFILES = {
    "Information Technology": {"pe": (30, 10), "pb": (8, 3), "ps": (7, 3), "roe": (0.25, 0.10), "margin": (0.22, 0.08), "de": (0.5, 0.4), "rev_g": (0.04, 0.04), "beta": (1.15, 0.20), "vol": (0.30, 0.08), "drift": (0.0006, 0.0004)},
    "Health Care":            {"pe": (24, 8), "pb": (5, 2), "ps": (4, 2), "roe": (0.18, 0.09), "margin": (0.15, 0.08), "de": (0.7, 0.5), "rev_g": (0.02, 0.03), "beta": (0.90, 0.20), "vol": (0.26, 0.07), "drift": (0.0003, 0.0004)},
    "Financials":             {"pe": (13, 4), "pb": (1.5, 0.6), "ps": (3, 1), "roe": (0.12, 0.05), "margin": (0.25, 0.08), "de": (2.5, 1.5), "rev_g": (0.015, 0.02), "beta": (1.10, 0.20), "vol": (0.24, 0.06), "drift": (0.0004, 0.0003)},
    "Consumer Staples":       {"pe": (21, 5), "pb": (4, 2), "ps": (1.5, 0.6), "roe": (0.20, 0.07), "margin": (0.08, 0.04), "de": (1.2, 0.7), "rev_g": (0.01, 0.01), "beta": (0.70, 0.15), "vol": (0.17, 0.04), "drift": (0.0002, 0.0002)},
    "Energy":                 {"pe": (11, 4), "pb": (1.8, 0.7), "ps": (1.2, 0.5), "roe": (0.14, 0.08), "margin": (0.10, 0.06), "de": (0.6, 0.4), "rev_g": (0.01, 0.05), "beta": (1.10, 0.25), "vol": (0.32, 0.08), "drift": (0.0002, 0.0006)},
    "Utilities":              {"pe": (18, 4), "pb": (2, 0.5), "ps": (2.5, 0.8), "roe": (0.09, 0.03), "margin": (0.12, 0.04), "de": (1.5, 0.5), "rev_g": (0.01, 0.01), "beta": (0.60, 0.15), "vol": (0.17, 0.04), "drift": (0.0001, 0.0002)},
}
_DEFAULT_PROF = {"pe": (18, 6), "pb": (3, 1.5), "ps": (2.5, 1.2), "roe": (0.14, 0.06), "margin": (0.12, 0.06), "de": (1.0, 0.6), "rev_g": (0.02, 0.03), "beta": (1.0, 0.20), "vol": (0.25, 0.07), "drift": (0.0003, 0.0004)}

_SECTORS = list(_SECTOR_PROFILES)
_PORTFOLIOS = [("core", "Core Holdings"), ("watch", "Watchlist")]

# Share of stocks with a gap in a fundamentals field
_MISSING_RATE = 0.08


def _price_history(rng, start_price: float, drift: float, vol: float,
                   n_days: int, end: date) -> list:
    daily_sigma = vol / np.sqrt(252)
    shocks = rng.normal(drift, daily_sigma, n_days - 1)
    prices = start_price * np.cumprod(np.concatenate([[1.0], 1.0 + shocks]))
    dates = [end - timedelta(days=n_days - 1 - i) for i in range(n_days)]
    return [PricePoint(date=d, price=round(float(p), 2)) for d, p in zip(dates, prices)]


def generate_sample_universe(n: int = 30, seed: int = 42, n_days: int = 120,
                             end: date = date(2025, 6, 30)) -> list:
    """``n`` StockRecords split across two portfolios."""
    rng = np.random.default_rng(seed)

    def tn(mu, sigma, low=None, high=None):
        v = float(rng.normal(mu, sigma))
        if low is not None:
            v = max(v, low)
        if high is not None:
            v = min(v, high)
        return v

    stocks = []
    for i in range(n):
        sector = _SECTORS[i % len(_SECTORS)]
        p = _SECTOR_PROFILES.get(sector, _DEFAULT_PROF)
        pid, pname = _PORTFOLIOS[i % len(_PORTFOLIOS)]

        pe = tn(*p["pe"], low=3)
        ps = tn(*p["ps"], low=0.2)
        rev_g = tn(*p["rev_g"], low=-0.2)
        metrics = {
            "pe_ratio": round(pe, 2),
            "forward_pe": round(pe * tn(0.9, 0.1, low=0.5), 2),
            "pb_ratio": round(tn(*p["pb"], low=0.3), 2),
            "ps_ratio": round(ps, 2),
            "ev_to_revenue": round(ps * tn(1.1, 0.15, low=0.6), 2),
            "roe": round(tn(*p["roe"]), 4),
            "roa": round(tn(*p["roe"]) * 0.4, 4),
            "profit_margin": round(tn(*p["margin"]), 4),
            "debt_to_equity": round(tn(*p["de"], low=0), 2),
            "revenue_growth_qoq": round(rev_g, 4),
            "earnings_growth_qoq": round(rev_g * tn(1.5, 0.8), 4),
            "beta": round(tn(*p["beta"], low=0.1), 2),
        }
        for field in ("forward_pe", "ev_to_revenue", "earnings_growth_qoq"):
            if rng.random() < _MISSING_RATE:
                metrics[field] = None

        start = tn(120, 60, low=8)
        prices = _price_history(rng, start, tn(*p["drift"]), tn(*p["vol"], low=0.08),
                                n_days, end)
        last, prev = prices[-1].price, prices[-2].price
        metrics["change_percent"] = round((last - prev) / prev * 100, 4)

        shares = tn(1.5e9, 1.0e9, low=5e7)
        stocks.append(StockRecord(
            ticker=f"SMP{i + 1:03d}",
            company=f"Sample {sector.split()[0]} Co {i + 1}",
            sector=sector,
            industry=f"{sector} Sub-Industry",
            country="US",
            portfolio=pname,
            portfolio_id=pid,
            rating=round(tn(3.5, 1.0, low=1, high=5), 1),
            current_price=last,
            market_cap=round(last * shares, 0),
            metrics=metrics,
            prices=prices,
        ))
    return stocks
