#!/usr/bin/env python3
"""
Multi-Factor Scoring - Factor Engine
====================================
Ranks a universe of stocks by a weighted blend of five factor scores
(Value, Quality, Growth, Momentum, Risk).

Pipeline
--------
  A. load + validate config.yaml (factor catalog, theme presets)
  B. build the universe frame from per-stock records (fundamentals
     snapshot + metrics derived from price history)
  C. per-factor score = weighted average of the z-scores available for
     the stock (missing metrics do not dilute the score)
  D. final score = weighted average of the available factor scores,
     0.0 when no factor is available
  E. rank descending by final score, ties keep input order
  F. export the ranked list (DataFrame / Excel)

Data-quality problems never raise: absent metrics are skipped, and a
stock with no usable data still receives a neutral final score of 0.
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import yaml
from openpyxl import Workbook

from normalizer import normalize, zscore_column
from price_returns import compute_price_metrics
from schemas import (
    FACTOR_KEYS,
    FactorScoreSet,
    FactorWeights,
    RunConfig,
    ScoredStock,
    ScoringRequest,
    StockRecord,
    UNASSIGNED_PORTFOLIO,
)

log = logging.getLogger(__name__)

# =========================================================================
# A. Load configuration
# =========================================================================
ROOT = Path(__file__).resolve().parent
CONFIG_PATH = ROOT / "config.yaml"


def find_config_path() -> Path | None:
    """config.yaml beside this module, else in the working directory."""
    for candidate in (CONFIG_PATH, Path.cwd() / "config.yaml"):
        if candidate.is_file():
            return candidate
    return None


def load_run_config(path: Path | None = None) -> RunConfig:
    """Load and validate config.yaml. Raises ValidationError if malformed.

    Without an explicit ``path`` the file is looked up with
    ``find_config_path``; when none exists (e.g. an installed package run
    from another directory) the built-in defaults are used.
    """
    if path is None:
        path = find_config_path()
        if path is None:
            log.info("No config.yaml found; using built-in defaults")
            return RunConfig()
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    return RunConfig(**raw)


def load_config(path: Path | None = None) -> dict:
    """Load config.yaml as a plain dict with every default filled in."""
    return load_run_config(path).model_dump(mode="json")


def resolve_factor_weights(cfg: dict, theme: str | None = None,
                           custom=None) -> FactorWeights:
    """Pick the factor weights for a run.

    Custom weights win over a theme; with neither, the configured
    default theme is used. ``theme="custom"`` without weights falls back
    to equal weights. An unknown theme name raises KeyError.
    """
    if custom is not None:
        return custom if isinstance(custom, FactorWeights) else FactorWeights(**custom)
    name = theme or cfg.get("default_theme", "balanced")
    if name == "custom":
        return FactorWeights()
    themes = cfg.get("themes", {})
    if name not in themes:
        raise KeyError(f"Unknown theme '{name}'. Available: {sorted(themes)}")
    return FactorWeights(**themes[name]["weights"])


def check_factor_weights(weights: FactorWeights, tol: float = 0.01) -> bool:
    """Log a warning when weights do not sum to 1. Never rejects them."""
    total = weights.total
    if abs(total - 1.0) > tol:
        log.warning("Factor weights sum to %.3f (not 1.0); scores are normalised "
                    "by the contributing weight", total)
        return False
    return True


# =========================================================================
# B. Universe
# =========================================================================
DESCRIPTIVE_COLS = [
    "Ticker", "Company", "Sector", "Industry", "Country",
    "Portfolio", "Portfolio_Id", "Rating", "Current_Price", "Market_Cap",
]


def _as_record(stock) -> StockRecord:
    return stock if isinstance(stock, StockRecord) else StockRecord(**stock)


def filter_universe(stocks, portfolio_id: str | None = None) -> list:
    """All stocks for None/"all", otherwise those in ``portfolio_id``."""
    records = [_as_record(s) for s in stocks]
    if portfolio_id is None or portfolio_id == "all":
        return records
    return [s for s in records if s.portfolio_id == portfolio_id]


def build_universe_frame(stocks, cfg: dict, as_of=None) -> pd.DataFrame:
    """One row per stock (input order), one column per metric.

    Fundamentals come from each record's ``metrics`` snapshot; momentum
    and risk metrics are derived from ``prices`` when a history is given.
    A derived value that cannot be computed does not overwrite a value
    the snapshot already supplied.
    """
    rows = []
    for stock in stocks:
        s = _as_record(stock)
        rec = {
            "Ticker": s.ticker,
            "Company": s.company,
            "Sector": s.sector,
            "Industry": s.industry,
            "Country": s.country,
            "Portfolio": s.portfolio,
            "Portfolio_Id": s.portfolio_id,
            "Rating": s.rating,
            "Current_Price": s.current_price,
            "Market_Cap": s.market_cap if s.market_cap is not None else s.metrics.get("market_cap"),
        }
        for field, value in s.metrics.items():
            if field not in rec:
                rec[field] = value
        if s.prices:
            for field, value in compute_price_metrics(s.prices, cfg, as_of).items():
                if value is not None or field not in rec:
                    rec[field] = value
        rows.append(rec)

    if not rows:
        return pd.DataFrame(columns=DESCRIPTIVE_COLS)

    df = pd.DataFrame(rows)
    dupes = df["Ticker"].duplicated(keep="first")
    if dupes.any():
        log.warning("Dropping %d duplicate ticker rows: %s",
                    int(dupes.sum()), sorted(df.loc[dupes, "Ticker"].unique()))
        df = df[~dupes].copy()

    for col in df.columns:
        if col not in DESCRIPTIVE_COLS:
            df[col] = pd.to_numeric(df[col].astype(object), errors="coerce").astype(float)
    return df.reset_index(drop=True)


# =========================================================================
# C. Factor scores
# =========================================================================
def factor_score(df: pd.DataFrame, factor_key: str, ticker: str, cfg: dict):
    """Score one stock on one factor; None if no metric contributed.

    Unknown factor keys and metric fields missing from the universe are
    skipped silently.
    """
    factor = cfg.get("factors", {}).get(factor_key)
    if factor is None:
        return None
    total_score = 0.0
    total_weight = 0.0
    for m in factor["metrics"]:
        z = normalize(m["field"], df, ticker, m["direction"])
        if z is None:
            continue
        total_score += z * m["weight"]
        total_weight += m["weight"]
    return total_score / total_weight if total_weight > 0 else None


def compute_factor_scores(df: pd.DataFrame, cfg: dict) -> pd.DataFrame:
    """Add ``{factor}_score`` columns for every factor, vectorised.

    Each metric's universe statistics are computed once per column; the
    per-row weighted average only counts metrics that have a z-score, so
    the numbers match ``factor_score`` for every stock.
    """
    factors = cfg.get("factors", {})
    for key in FACTOR_KEYS:
        col = f"{key}_score"
        factor = factors.get(key)
        if factor is None:
            df[col] = np.nan
            continue

        weighted_sum = pd.Series(0.0, index=df.index)
        weight_sum = pd.Series(0.0, index=df.index)
        skipped = []
        for m in factor["metrics"]:
            field = m["field"]
            if field not in df.columns:
                skipped.append(field)
                continue
            z = zscore_column(df[field], m["direction"])
            has_data = z.notna().astype(float)
            weighted_sum += z.fillna(0) * m["weight"] * has_data
            weight_sum += m["weight"] * has_data
        if skipped:
            log.debug("[%s] metrics not present in universe: %s", key, skipped)
        df[col] = np.where(weight_sum > 0, weighted_sum / weight_sum.where(weight_sum > 0, 1.0), np.nan)
    return df


# =========================================================================
# D. Final score
# =========================================================================
def compute_final_scores(df: pd.DataFrame, weights) -> pd.DataFrame:
    """Weighted average of the available factor scores; 0.0 if none."""
    if df.empty:
        df["final_score"] = pd.Series(dtype=float)
        return df
    fw = weights.as_dict() if isinstance(weights, FactorWeights) else dict(weights)

    weighted_sum = pd.Series(0.0, index=df.index)
    weight_sum = pd.Series(0.0, index=df.index)
    for key in FACTOR_KEYS:
        col = f"{key}_score"
        if col not in df.columns:
            continue
        w = fw.get(key, 0.0)
        has_data = df[col].notna().astype(float)
        weighted_sum += df[col].fillna(0) * w * has_data
        weight_sum += w * has_data
    df["final_score"] = np.where(weight_sum > 0, weighted_sum / weight_sum.where(weight_sum > 0, 1.0), 0.0)
    return df


# =========================================================================
# E. Rank
# =========================================================================
def rank_stocks(df: pd.DataFrame) -> pd.DataFrame:
    """Sort by final score descending; equal scores keep input order."""
    order = np.argsort(-df["final_score"].to_numpy(dtype=float), kind="stable")
    df = df.iloc[order].reset_index(drop=True)
    df["Rank"] = range(1, len(df) + 1)
    return df


def _opt(v):
    if v is None or pd.isna(v):
        return None
    return float(v)


def _opt_str(v):
    if v is None or (isinstance(v, float) and np.isnan(v)):
        return None
    return str(v)


def frame_to_scored(df: pd.DataFrame) -> list:
    """Convert a ranked frame into immutable ScoredStock records.

    A stock outside any portfolio is labelled "N/A"; a missing or zero
    rating is reported as 0.0. Price and market cap stay None when absent.
    """
    out = []
    for _, row in df.iterrows():
        out.append(ScoredStock(
            rank=int(row["Rank"]),
            ticker=row["Ticker"],
            company=_opt_str(row.get("Company")),
            sector=_opt_str(row.get("Sector")),
            industry=_opt_str(row.get("Industry")),
            country=_opt_str(row.get("Country")),
            portfolio=_opt_str(row.get("Portfolio")) or UNASSIGNED_PORTFOLIO,
            portfolio_id=_opt_str(row.get("Portfolio_Id")),
            rating=_opt(row.get("Rating")) or 0.0,
            current_price=_opt(row.get("Current_Price")),
            market_cap=_opt(row.get("Market_Cap")),
            factor_scores=FactorScoreSet(**{k: _opt(row.get(f"{k}_score")) for k in FACTOR_KEYS}),
            final_score=float(row["final_score"]),
        ))
    return out


def score_universe(stocks, weights, cfg: dict, as_of=None) -> list:
    """Score and rank ``stocks``; an empty universe gives an empty list."""
    df = build_universe_frame(stocks, cfg, as_of)
    if df.empty:
        return []
    df = compute_factor_scores(df, cfg)
    df = compute_final_scores(df, weights)
    df = rank_stocks(df)
    return frame_to_scored(df)


def run_scoring(request, cfg: dict) -> list:
    """Boundary entry point: request -> ranked list of ScoredStock."""
    if not isinstance(request, ScoringRequest):
        request = ScoringRequest(**request)
    weights = resolve_factor_weights(cfg, request.theme, request.factor_weights)
    check_factor_weights(weights)
    stocks = filter_universe(request.stocks, request.portfolio_id)
    log.info("Scoring %d stocks (portfolio=%s)", len(stocks), request.portfolio_id or "all")
    return score_universe(stocks, weights, cfg, request.as_of)


# =========================================================================
# F. Export
# =========================================================================
SCORE_EXPORT_COLUMNS = [
    "Rank", "Ticker", "Company", "Portfolio", "Sector", "Industry", "Country",
    "Rating", "Current Price", "Market Cap", "Final Score",
    "Value Score", "Quality Score", "Growth Score", "Momentum Score", "Risk Score",
]


def scores_to_frame(scored) -> pd.DataFrame:
    """Tabular view of a ranked list, one column per export field."""
    rows = []
    for s in scored:
        fs = s.factor_scores
        rows.append({
            "Rank": s.rank,
            "Ticker": s.ticker,
            "Company": s.company,
            "Portfolio": s.portfolio,
            "Sector": s.sector,
            "Industry": s.industry,
            "Country": s.country,
            "Rating": s.rating,
            "Current Price": s.current_price,
            "Market Cap": s.market_cap,
            "Final Score": s.final_score,
            "Value Score": fs.value,
            "Quality Score": fs.quality,
            "Growth Score": fs.growth,
            "Momentum Score": fs.momentum,
            "Risk Score": fs.risk,
        })
    return pd.DataFrame(rows, columns=SCORE_EXPORT_COLUMNS)


def write_scores_excel(scored, path, cfg: dict) -> str:
    """Write the ranked list to a single data-only sheet."""
    sheet = cfg.get("output", {}).get("scores_sheet", "Scoring Results")
    score_cols = {"Final Score", "Value Score", "Quality Score",
                  "Growth Score", "Momentum Score", "Risk Score"}

    wb = Workbook()
    ws = wb.active
    ws.title = sheet
    ws.append(SCORE_EXPORT_COLUMNS)

    for _, row in scores_to_frame(scored).iterrows():
        vals = []
        for col in SCORE_EXPORT_COLUMNS:
            v = row[col]
            if v is None or (isinstance(v, float) and np.isnan(v)):
                vals.append(None)
            elif col in score_cols:
                vals.append(round(float(v), 3))
            elif col == "Rank":
                vals.append(int(v))
            else:
                vals.append(v)
        ws.append(vals)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(str(path))
    return str(path)
