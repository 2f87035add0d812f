"""Shared fixtures for Multi-Factor Scoring tests."""

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from factor_engine import load_config
from schemas import PricePoint, StockRecord


@pytest.fixture
def cfg():
    """Load and validate the production config.yaml."""
    return load_config(ROOT / "config.yaml")


def make_prices(values, end=date(2025, 6, 30)):
    """Daily PricePoints ending on ``end``, oldest first."""
    n = len(values)
    return [PricePoint(date=end - timedelta(days=n - 1 - i), price=v)
            for i, v in enumerate(values)]


def make_stock(ticker, portfolio_id="core", prices=None, **metrics):
    return StockRecord(
        ticker=ticker,
        company=f"{ticker} Inc.",
        sector="Industrials",
        portfolio=portfolio_id.title(),
        portfolio_id=portfolio_id,
        metrics=metrics,
        prices=prices or [],
    )


@pytest.fixture
def small_universe():
    """Five stocks with full value/quality data and no price history."""
    return [
        make_stock("AAA", pe_ratio=10, pb_ratio=1.0, roe=0.20, roa=0.08, beta=0.9),
        make_stock("BBB", pe_ratio=20, pb_ratio=2.0, roe=0.15, roa=0.06, beta=1.1),
        make_stock("CCC", pe_ratio=30, pb_ratio=3.0, roe=0.10, roa=0.04, beta=1.3),
        make_stock("DDD", "watch", pe_ratio=15, pb_ratio=1.5, roe=0.25, roa=0.10, beta=0.8),
        make_stock("EEE", "watch", pe_ratio=25, pb_ratio=2.5, roe=0.05, roa=0.02, beta=1.5),
    ]
