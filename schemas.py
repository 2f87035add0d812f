#!/usr/bin/env python3
"""
Typed schemas for the Multi-Factor Scoring core.

Provides Pydantic models for data validation at the boundaries of the
scoring engine and the risk matrix builder. These schemas are
documentation-as-code: they define what the engine expects and produces,
making assumptions explicit and testable.

Malformed configuration (negative or non-finite weights, unknown directions, unknown
factor keys) raises ``pydantic.ValidationError`` at load time. Messy
*data* (missing, NaN or infinite metric values) is always accepted; the
engine excludes it from the statistics instead.
"""

import datetime
import math
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FACTOR_KEYS = ("value", "quality", "growth", "momentum", "risk")

Direction = Literal["higher", "lower"]
MatrixMode = Literal["correlation", "covariance"]

# Portfolio label reported for a stock that belongs to none
UNASSIGNED_PORTFOLIO = "N/A"


# =========================================================================
# Factor catalog
# =========================================================================

class MetricDefinition(BaseModel):
    """One metric inside a factor: source field, direction, relative weight."""
    model_config = ConfigDict(frozen=True)

    field: str
    direction: Direction = "higher"
    weight: float = Field(..., ge=0, le=1)


class FactorDefinition(BaseModel):
    """A named group of metrics scored together (Value, Quality, ...)."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    metrics: tuple[MetricDefinition, ...] = Field(..., min_length=1)


class FactorWeights(BaseModel):
    """Top-level weights used to combine the five factor scores.

    Weights are not required to sum to 1: the engine divides by the total
    weight of the factors that actually contributed. ``total`` is exposed
    so callers can warn about unbalanced inputs.
    """
    model_config = ConfigDict(frozen=True)

    value: float = 0.2
    quality: float = 0.2
    growth: float = 0.2
    momentum: float = 0.2
    risk: float = 0.2

    @field_validator(*FACTOR_KEYS)
    @classmethod
    def weight_non_negative(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError(f"Weight must be a finite number, got {v}")
        if v < 0:
            raise ValueError(f"Weight must be >= 0, got {v}")
        return v

    @property
    def total(self) -> float:
        return sum(getattr(self, k) for k in FACTOR_KEYS)

    def as_dict(self) -> dict:
        return {k: getattr(self, k) for k in FACTOR_KEYS}


class ThemePreset(BaseModel):
    """A named default for the factor weights (e.g. Value, Growth)."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    weights: FactorWeights


def _metric(field: str, direction: str, weight: float) -> MetricDefinition:
    return MetricDefinition(field=field, direction=direction, weight=weight)


def _default_factors() -> dict:
    return {
        "value": FactorDefinition(
            name="Value", description="Valuation multiples (lower is better)",
            metrics=(_metric("pe_ratio", "lower", 0.25),
                     _metric("forward_pe", "lower", 0.25),
                     _metric("pb_ratio", "lower", 0.20),
                     _metric("ps_ratio", "lower", 0.20),
                     _metric("ev_to_revenue", "lower", 0.10))),
        "quality": FactorDefinition(
            name="Quality", description="Financial health and profitability (higher is better)",
            metrics=(_metric("roe", "higher", 0.35),
                     _metric("roa", "higher", 0.25),
                     _metric("profit_margin", "higher", 0.30),
                     _metric("debt_to_equity", "lower", 0.10))),
        "growth": FactorDefinition(
            name="Growth", description="Revenue and earnings expansion (higher is better)",
            metrics=(_metric("revenue_growth_qoq", "higher", 0.60),
                     _metric("earnings_growth_qoq", "higher", 0.40))),
        "momentum": FactorDefinition(
            name="Momentum", description="Price performance trends (higher is better)",
            metrics=(_metric("return_30d", "higher", 0.40),
                     _metric("return_60d", "higher", 0.30),
                     _metric("change_percent", "higher", 0.30))),
        "risk": FactorDefinition(
            name="Risk", description="Volatility and market sensitivity (lower is better)",
            metrics=(_metric("beta", "lower", 0.60),
                     _metric("volatility_30d", "lower", 0.40))),
    }


def _theme(name: str, description: str, *weights: float) -> ThemePreset:
    return ThemePreset(name=name, description=description,
                       weights=FactorWeights(**dict(zip(FACTOR_KEYS, weights))))


def _default_themes() -> dict:
    # value, quality, growth, momentum, risk
    return {
        "balanced": _theme("Balanced", "Equal weight across all factors",
                           0.20, 0.20, 0.20, 0.20, 0.20),
        "stability": _theme("Stability", "Focus on quality and low risk",
                            0.15, 0.40, 0.10, 0.10, 0.25),
        "growth": _theme("Growth", "Emphasize growth and momentum",
                         0.10, 0.15, 0.40, 0.30, 0.05),
        "value": _theme("Value", "Hunt for undervalued opportunities",
                        0.45, 0.30, 0.10, 0.05, 0.10),
        "momentum": _theme("Momentum", "Ride the trend winners",
                           0.05, 0.15, 0.25, 0.45, 0.10),
        "allweather": _theme("All-Weather", "Risk-adjusted quality with balanced exposure",
                             0.20, 0.35, 0.15, 0.10, 0.20),
    }


# =========================================================================
# RunConfig: top-level config schema
# =========================================================================

class RunConfig(BaseModel):
    """Schema for validated config.yaml contents."""

    class ReturnsConfig(BaseModel):
        annualize_factor: float = Field(252, gt=0)
        lookbacks: dict[str, int] = {"return_30d": 30, "return_60d": 60}
        volatility_window: int = Field(30, ge=2)
        min_volatility_prices: int = Field(5, ge=2)
        volatility_field: str = "volatility_30d"

    class MatrixConfig(BaseModel):
        history_days: int = Field(90, ge=2)
        min_history: int = Field(30, ge=2)
        mode: MatrixMode = "correlation"
        trading_days: int = Field(252, gt=0)
        risk_free_rate: float = 0.0

    class OutputConfig(BaseModel):
        scores_excel_file: str = "factor_scores.xlsx"
        scores_sheet: str = "Scoring Results"
        matrix_excel_file: str = "risk_matrix.xlsx"
        matrix_sheet: str = "Matrix"
        weights_sheet: str = "Weights"

    factors: dict[str, FactorDefinition] = Field(default_factory=_default_factors)
    themes: dict[str, ThemePreset] = Field(default_factory=_default_themes)
    default_theme: str = "balanced"
    returns: ReturnsConfig = ReturnsConfig()
    matrix: MatrixConfig = MatrixConfig()
    output: OutputConfig = OutputConfig()

    @field_validator("factors")
    @classmethod
    def known_factor_keys(cls, v: dict) -> dict:
        unknown = sorted(set(v) - set(FACTOR_KEYS))
        if unknown:
            raise ValueError(f"Unknown factor keys: {unknown}")
        return v

    @model_validator(mode="after")
    def default_theme_exists(self) -> "RunConfig":
        if self.default_theme not in self.themes:
            raise ValueError(
                f"default_theme '{self.default_theme}' is not a defined theme"
            )
        return self


# =========================================================================
# Inputs
# =========================================================================

class PricePoint(BaseModel):
    """One (date, price) observation of a stock's price history."""
    model_config = ConfigDict(frozen=True)

    date: datetime.date
    price: float


class StockRecord(BaseModel):
    """Per-stock input assembled by the persistence layer.

    ``metrics`` holds the most recent fundamentals snapshot; any value may
    be None, NaN or infinite. ``prices`` may be in either date order.
    """
    ticker: str
    company: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    country: Optional[str] = None
    portfolio: Optional[str] = None
    portfolio_id: Optional[str] = None
    rating: Optional[float] = None
    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    metrics: dict[str, Optional[float]] = {}
    prices: list[PricePoint] = []

    model_config = ConfigDict(extra="allow")


class ScoringRequest(BaseModel):
    """A scoring run: which stocks, and which factor weights."""
    portfolio_id: Optional[str] = None
    theme: Optional[str] = None
    factor_weights: Optional[FactorWeights] = None
    as_of: Optional[datetime.date] = None
    stocks: list[StockRecord] = []


class MatrixRequest(BaseModel):
    """A covariance/correlation run over one portfolio (or all stocks)."""
    portfolio_id: Optional[str] = None
    mode: MatrixMode = "correlation"
    include_weights: bool = False
    capital: Optional[float] = Field(None, ge=0)
    stocks: list[StockRecord] = []


# =========================================================================
# Outputs
# =========================================================================

class FactorScoreSet(BaseModel):
    """The five factor scores of one stock; None when no metric contributed."""
    model_config = ConfigDict(frozen=True)

    value: Optional[float] = None
    quality: Optional[float] = None
    growth: Optional[float] = None
    momentum: Optional[float] = None
    risk: Optional[float] = None


class ScoredStock(BaseModel):
    """Output record of a scoring run. Immutable."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    rank: int = Field(..., ge=1)
    ticker: str
    company: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    country: Optional[str] = None
    portfolio: str = UNASSIGNED_PORTFOLIO
    portfolio_id: Optional[str] = Field(None, alias="portfolioId")
    rating: float = 0.0
    current_price: Optional[float] = Field(None, alias="currentPrice")
    market_cap: Optional[float] = Field(None, alias="marketCap")
    factor_scores: FactorScoreSet = Field(..., alias="factorScores")
    final_score: float = Field(..., alias="finalScore")


class PortfolioStats(BaseModel):
    """Summary of a weighted portfolio (daily return/std, annualized Sharpe)."""
    expected_return: float
    std_dev: float
    sharpe_ratio: float


class MatrixResult(BaseModel):
    """N x N matrix with its ticker label order and optional weights."""
    tickers: list[str]
    mode: MatrixMode
    matrix: list[list[float]]
    weights: Optional[dict[str, float]] = None
    stats: Optional[PortfolioStats] = None
    allocation: Optional[dict[str, float]] = None
    excluded: list[str] = []
