#!/usr/bin/env python3
"""
Multi-Factor Scoring - Risk Matrix & Naive Weights
==================================================
Builds the pairwise covariance / Pearson correlation matrix of a set of
stocks' daily return series, plus a naive inverse-variance ("risk parity")
allocation and the summary stats of that allocation.

Conventions
-----------
* Covariance uses the sample denominator (n - 1) over the two series
  truncated to their common length; fewer than 2 common points gives 0.
* Correlation divides by each series' own full-length self-covariance.
* The weights only look at the diagonal of the covariance matrix. They
  are NOT minimum-variance weights: off-diagonal covariance is ignored.
  The weights are always computed from the covariance matrix, whichever
  mode is displayed.
"""

import logging
import math
from pathlib import Path

import numpy as np
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from price_returns import simple_returns, sort_price_series
from schemas import MatrixRequest, MatrixResult, PortfolioStats, StockRecord

log = logging.getLogger(__name__)


# =========================================================================
# A. Pairwise statistics
# =========================================================================
def covariance(returns_a, returns_b) -> float:
    """Sample covariance over the common (truncated) length; 0 if < 2 points."""
    n = min(len(returns_a), len(returns_b))
    if n < 2:
        return 0.0
    a = np.asarray(returns_a[:n], dtype=float)
    b = np.asarray(returns_b[:n], dtype=float)
    return float(np.sum((a - a.mean()) * (b - b.mean())) / (n - 1))


def correlation(returns_a, returns_b) -> float:
    """Pearson correlation; 0 if either series has no variance."""
    var_a = covariance(returns_a, returns_a)
    var_b = covariance(returns_b, returns_b)
    if var_a <= 0 or var_b <= 0:
        return 0.0
    return covariance(returns_a, returns_b) / (math.sqrt(var_a) * math.sqrt(var_b))


def build_matrix(returns: dict, mode: str = "correlation") -> pd.DataFrame:
    """N x N matrix labelled by ticker, in the key order of ``returns``.

    Every cell is computed independently from the same formula, so the
    matrix is symmetric without any post-processing.
    """
    if mode not in ("correlation", "covariance"):
        raise ValueError(f"Unknown matrix mode '{mode}'")
    fn = correlation if mode == "correlation" else covariance
    tickers = list(returns)
    data = [[fn(returns[a], returns[b]) for b in tickers] for a in tickers]
    return pd.DataFrame(data, index=tickers, columns=tickers, dtype=float)


def build_covariance_matrix(returns: dict) -> pd.DataFrame:
    return build_matrix(returns, "covariance")


# =========================================================================
# B. Naive weights and portfolio stats
# =========================================================================
def inverse_variance_weights(cov: pd.DataFrame) -> pd.Series:
    """weight_i = (1 / var_i) / sum_j (1 / var_j), var_i = cov[i][i].

    A non-positive variance contributes no inverse weight. If no stock has
    a positive variance the allocation falls back to equal weights.
    """
    if cov.empty:
        return pd.Series(dtype=float)
    variances = np.diag(cov.to_numpy(dtype=float))
    inv = np.zeros_like(variances)
    positive = variances > 0
    inv[positive] = 1.0 / variances[positive]
    total = inv.sum()
    if total > 0 and np.isfinite(total):
        w = inv / total
    else:
        log.warning("No stock has positive return variance; using equal weights")
        w = np.full(len(variances), 1.0 / len(variances))
    return pd.Series(w, index=cov.index, dtype=float)


def compute_portfolio_stats(weights: pd.Series, returns: dict,
                            cov: pd.DataFrame, cfg: dict) -> PortfolioStats:
    """Expected daily return, daily std dev and annualised Sharpe ratio."""
    mcfg = cfg.get("matrix", {})
    days = mcfg.get("trading_days", 252)
    rf = mcfg.get("risk_free_rate", 0.0)
    if weights.empty:
        return PortfolioStats(expected_return=0.0, std_dev=0.0, sharpe_ratio=0.0)

    w = weights.reindex(cov.index).fillna(0.0).to_numpy(dtype=float)
    means = np.array([np.mean(returns[t]) if len(returns[t]) else 0.0
                      for t in cov.index], dtype=float)
    expected = float(w @ means)
    variance = float(w @ cov.to_numpy(dtype=float) @ w)
    std = math.sqrt(max(variance, 0.0))

    ann_std = std * math.sqrt(days)
    sharpe = (expected * days - rf) / ann_std if ann_std > 0 else 0.0
    return PortfolioStats(expected_return=expected, std_dev=std, sharpe_ratio=sharpe)


def allocate_capital(weights: pd.Series, capital: float) -> dict:
    """Dollar amount per ticker for a given total capital."""
    return {t: float(w) * capital for t, w in weights.items()}


# =========================================================================
# C. Universe -> matrix
# =========================================================================
def select_matrix_stocks(stocks, cfg: dict):
    """Every stock ordered by (portfolio, ticker), with its return series.

    Returns (ordered records, {ticker: returns}, short-history tickers).
    Each stock keeps only its most recent ``history_days`` prices; series
    of different lengths are truncated pairwise by ``covariance``. Stocks
    with fewer than ``min_history`` prices stay in the matrix but are
    reported as short so the weight solver can leave them out.
    """
    mcfg = cfg.get("matrix", {})
    history = mcfg.get("history_days", 90)
    min_history = mcfg.get("min_history", 30)

    kept, short, seen = [], [], set()
    for stock in stocks:
        s = stock if isinstance(stock, StockRecord) else StockRecord(**stock)
        if s.ticker in seen:
            log.warning("Duplicate ticker %s ignored in matrix", s.ticker,
                        extra={"ticker": s.ticker, "phase": "matrix"})
            continue
        seen.add(s.ticker)
        kept.append(s)

    kept.sort(key=lambda s: (s.portfolio or "", s.ticker))
    returns = {}
    for s in kept:
        series = sort_price_series(s.prices)[-history:]
        if len(series) < min_history:
            log.debug("%s has %d prices < %d", s.ticker, len(series), min_history)
            short.append(s.ticker)
        returns[s.ticker] = simple_returns([p.price for p in series])
    return kept, returns, short


def construct_matrix(stocks, cfg: dict, mode: str | None = None,
                     include_weights: bool = False,
                     capital: float | None = None) -> MatrixResult:
    """Full matrix run: selection, matrix, and optionally weights/stats.

    The matrix covers every stock. Weights, stats and allocation only
    cover stocks with at least ``min_history`` prices; the others are
    listed in ``excluded``.
    """
    mode = mode or cfg.get("matrix", {}).get("mode", "correlation")
    _, returns, short = select_matrix_stocks(stocks, cfg)

    display = build_matrix(returns, mode)
    result = {
        "tickers": list(display.index),
        "mode": mode,
        "matrix": display.to_numpy(dtype=float).tolist(),
    }
    if include_weights or capital is not None:
        if short:
            log.info("%d stocks left out of the weights for short history", len(short),
                     extra={"count": len(short), "phase": "weights"})
        eligible = {t: r for t, r in returns.items() if t not in short}
        if not short and mode == "covariance":
            cov = display
        else:
            cov = build_covariance_matrix(eligible)
        weights = inverse_variance_weights(cov)
        result["weights"] = {t: float(w) for t, w in weights.items()}
        result["stats"] = compute_portfolio_stats(weights, eligible, cov, cfg)
        result["excluded"] = short
        if capital is not None:
            result["allocation"] = allocate_capital(weights, capital)
    return MatrixResult(**result)


def run_matrix(request, cfg: dict) -> MatrixResult:
    """Boundary entry point: MatrixRequest -> MatrixResult."""
    if not isinstance(request, MatrixRequest):
        request = MatrixRequest(**request)
    stocks = request.stocks
    if request.portfolio_id not in (None, "all"):
        stocks = [s for s in stocks if s.portfolio_id == request.portfolio_id]
    return construct_matrix(stocks, cfg, request.mode,
                            request.include_weights, request.capital)


# =========================================================================
# Excel writing
# =========================================================================

# Styling constants
HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
DATA_FONT = Font(name="Calibri", size=10)
THIN_BORDER = Border(
    left=Side(style="thin", color="D0D0D0"),
    right=Side(style="thin", color="D0D0D0"),
    top=Side(style="thin", color="D0D0D0"),
    bottom=Side(style="thin", color="D0D0D0"),
)
DIAGONAL_FILL = PatternFill("solid", fgColor="D9D9D9")
HIGH_CORR_FILL = PatternFill("solid", fgColor="FFC7CE")
HEDGE_FILL = PatternFill("solid", fgColor="C6EFCE")


def _style_header_row(ws, row, n_cols):
    """Apply header styling to a row."""
    for c in range(1, n_cols + 1):
        cell = ws.cell(row=row, column=c)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")
        cell.border = THIN_BORDER


def _auto_width(ws, min_width=8, max_width=25):
    """Auto-adjust column widths."""
    for col_cells in ws.columns:
        col_letter = get_column_letter(col_cells[0].column)
        max_len = 0
        for cell in col_cells:
            if cell.value is not None:
                max_len = max(max_len, len(str(cell.value)))
        ws.column_dimensions[col_letter].width = min(max(max_len + 2, min_width), max_width)


def write_matrix_sheet(wb: Workbook, result: MatrixResult, title: str):
    ws = wb.active
    ws.title = title
    ws.cell(row=1, column=1, value="")
    for c, t in enumerate(result.tickers, 2):
        ws.cell(row=1, column=c, value=t)
    _style_header_row(ws, 1, len(result.tickers) + 1)

    for r, (ticker, row_vals) in enumerate(zip(result.tickers, result.matrix), 2):
        label = ws.cell(row=r, column=1, value=ticker)
        label.font = Font(bold=True, size=10)
        label.border = THIN_BORDER
        for c, val in enumerate(row_vals, 2):
            cell = ws.cell(row=r, column=c, value=round(float(val), 6))
            if r == c:
                cell.fill = DIAGONAL_FILL
            elif result.mode == "correlation" and val > 0.6:
                cell.fill = HIGH_CORR_FILL
            elif result.mode == "correlation" and val < -0.2:
                cell.fill = HEDGE_FILL
            cell.font = DATA_FONT
            cell.border = THIN_BORDER
            cell.alignment = Alignment(horizontal="center")
    ws.freeze_panes = "B2"
    _auto_width(ws, min_width=8, max_width=14)


def write_weights_sheet(wb: Workbook, result: MatrixResult, title: str):
    ws = wb.create_sheet(title)
    headers = ["Ticker", "Weight"]
    if result.allocation is not None:
        headers.append("Allocation")
    ws.append(headers)
    _style_header_row(ws, 1, len(headers))

    for ticker, weight in result.weights.items():
        row = [ticker, round(weight, 6)]
        if result.allocation is not None:
            row.append(round(result.allocation.get(ticker, 0.0), 2))
        ws.append(row)

    if result.stats is not None:
        ws.append([])
        ws.append(["Expected Return (daily)", round(result.stats.expected_return, 6)])
        ws.append(["Std Dev (daily)", round(result.stats.std_dev, 6)])
        ws.append(["Sharpe Ratio (annualized)", round(result.stats.sharpe_ratio, 4)])
    _auto_width(ws, min_width=10, max_width=28)


def write_matrix_excel(result: MatrixResult, path, cfg: dict) -> str:
    """Write the matrix (and weights, when present) to an xlsx workbook.

    Raises PermissionError if the file is open in Excel.
    """
    ocfg = cfg.get("output", {})
    wb = Workbook()
    write_matrix_sheet(wb, result, ocfg.get("matrix_sheet", "Matrix"))
    if result.weights is not None:
        write_weights_sheet(wb, result, ocfg.get("weights_sheet", "Weights"))

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        wb.save(str(path))
    except PermissionError:
        raise PermissionError(
            f"Cannot write '{path.name}'. Close the file in Excel and re-run.")
    return str(path)
