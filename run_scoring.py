#!/usr/bin/env python3
"""
Multi-Factor Scoring - Command-Line Entry Point
===============================================
    python run_scoring.py score                          # sample universe, default theme
    python run_scoring.py score --theme value --excel out/scores.xlsx
    python run_scoring.py score --input stocks.json --weights 0.3,0.3,0.2,0.1,0.1
    python run_scoring.py matrix --weights --capital 20000
    python run_scoring.py matrix --mode covariance --portfolio core

``--input`` is a JSON file holding a list of stock records (or an object
with a ``stocks`` list). Without it a seeded synthetic universe is used.
"""

import argparse
import json
import sys
import time
from datetime import date
from pathlib import Path

from pydantic import ValidationError

from factor_engine import (
    check_factor_weights,
    filter_universe,
    load_config,
    resolve_factor_weights,
    score_universe,
    write_scores_excel,
)
from portfolio_constructor import construct_matrix, write_matrix_excel
from run_context import RunContext
from sample_data import generate_sample_universe
from schemas import FACTOR_KEYS, FactorWeights, StockRecord


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------
def _parse_weights(text: str) -> FactorWeights:
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != len(FACTOR_KEYS):
        raise argparse.ArgumentTypeError(
            f"expected {len(FACTOR_KEYS)} comma-separated weights "
            f"({','.join(FACTOR_KEYS)}), got {len(parts)}")
    try:
        return FactorWeights(**{k: float(v) for k, v in zip(FACTOR_KEYS, parts)})
    except (ValueError, ValidationError) as e:
        raise argparse.ArgumentTypeError(str(e))


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Multi-Factor Scoring")
    p.add_argument("--config", type=Path, default=None,
                   help="Path to config.yaml (default: bundled, then ./config.yaml, "
                        "then built-in defaults)")
    p.add_argument("--runs-dir", type=Path, default=None,
                   help="Directory for run artifacts (default: ./runs)")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("score", help="Score and rank a universe of stocks")
    s.add_argument("--input", type=Path, help="JSON file of stock records")
    g = s.add_mutually_exclusive_group()
    g.add_argument("--theme", type=str, help="Theme preset name")
    g.add_argument("--weights", type=_parse_weights,
                   help="Custom factor weights: value,quality,growth,momentum,risk")
    s.add_argument("--portfolio", type=str, default=None,
                   help="Portfolio id to score (default: all)")
    s.add_argument("--as-of", type=date.fromisoformat, default=None,
                   help="Evaluation date YYYY-MM-DD (default: latest price date)")
    s.add_argument("--excel", type=Path, help="Write ranked list to this xlsx file")
    s.add_argument("--json", type=Path, help="Write ranked list to this JSON file")
    s.add_argument("--top", type=int, default=10, help="Rows to print")

    m = sub.add_parser("matrix", help="Correlation / covariance matrix")
    m.add_argument("--input", type=Path, help="JSON file of stock records")
    m.add_argument("--portfolio", type=str, default=None,
                   help="Portfolio id (default: all)")
    m.add_argument("--mode", choices=["correlation", "covariance"], default=None)
    m.add_argument("--weights", action="store_true",
                   help="Also compute naive inverse-variance weights")
    m.add_argument("--capital", type=float, default=None,
                   help="Allocate this much capital across the weights")
    m.add_argument("--excel", type=Path, help="Write matrix to this xlsx file")
    m.add_argument("--json", type=Path, help="Write matrix to this JSON file")
    return p.parse_args(argv)


def load_stocks(path: Path | None) -> list:
    """Read stock records from JSON, or build the sample universe."""
    if path is None:
        return generate_sample_universe()
    with open(path) as f:
        raw = json.load(f)
    if isinstance(raw, dict):
        raw = raw.get("stocks", [])
    return [StockRecord(**r) for r in raw]


def _write_json(path: Path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2, default=str)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def cmd_score(args, cfg, ctx) -> int:
    try:
        weights = resolve_factor_weights(cfg, args.theme, args.weights)
    except KeyError as e:
        print(f"\n  ERROR: {e.args[0]}")
        return 2
    check_factor_weights(weights)

    print("Loading stocks...")
    stocks = filter_universe(load_stocks(args.input), args.portfolio)
    print(f"  {len(stocks)} stocks in universe (portfolio={args.portfolio or 'all'})")
    ctx.log.info("Universe loaded", extra={"phase": "load", "count": len(stocks)})

    print("Scoring...")
    scored = score_universe(stocks, weights, cfg, args.as_of)
    if not scored:
        print("  No stocks to score.")
    records = [s.model_dump(by_alias=True) for s in scored]
    ctx.save_artifact("scores", records)

    for s in scored[:args.top]:
        fs = s.factor_scores
        parts = "  ".join(
            f"{k[0].upper()}={getattr(fs, k):+.2f}" if getattr(fs, k) is not None
            else f"{k[0].upper()}=  n/a" for k in FACTOR_KEYS)
        print(f"  {s.rank:3d}. {s.ticker:8s} {s.final_score:+.3f}  {parts}")

    if args.excel:
        print(f"  Excel written: {write_scores_excel(scored, args.excel, cfg)}")
    if args.json:
        _write_json(args.json, records)
        print(f"  JSON written: {args.json}")
    return 0


def cmd_matrix(args, cfg, ctx) -> int:
    print("Loading stocks...")
    stocks = filter_universe(load_stocks(args.input), args.portfolio)
    print(f"  {len(stocks)} stocks (portfolio={args.portfolio or 'all'})")

    print("Building matrix...")
    result = construct_matrix(stocks, cfg, args.mode,
                              include_weights=args.weights, capital=args.capital)
    ctx.log.info("Matrix built", extra={"phase": "matrix", "count": len(result.tickers)})
    if not result.tickers:
        print("  No stocks to compare.")
    else:
        print(f"  {len(result.tickers)}x{len(result.tickers)} {result.mode} matrix")
    if result.excluded:
        print(f"  Left out of weights (short history): {', '.join(result.excluded)}")

    if result.weights is not None:
        print("  Naive inverse-variance weights:")
        for t, w in result.weights.items():
            line = f"    {t:8s} {w * 100:6.2f}%"
            if result.allocation is not None:
                line += f"  ${result.allocation[t]:,.2f}"
            print(line)
        st = result.stats
        print(f"  Expected return (daily): {st.expected_return * 100:.4f}%")
        print(f"  Std dev (daily):         {st.std_dev * 100:.4f}%")
        print(f"  Sharpe (annualized):     {st.sharpe_ratio:.2f}")

    data = result.model_dump()
    ctx.save_artifact("matrix", data)
    if args.excel:
        print(f"  Excel written: {write_matrix_excel(result, args.excel, cfg)}")
    if args.json:
        _write_json(args.json, data)
        print(f"  JSON written: {args.json}")
    return 0


# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------
def main(argv=None) -> int:
    t0 = time.time()
    args = parse_args(argv)

    ctx = RunContext(runs_dir=args.runs_dir)
    print("============================================")
    print(f"  MULTI-FACTOR SCORING  [run_id={ctx.run_id}]")
    print("============================================")

    print("Loading configuration...")
    try:
        cfg = load_config(args.config)
    except (OSError, ValidationError) as e:
        print(f"\n  ERROR: Failed to load {args.config or 'config.yaml'}: {e}")
        ctx.close()
        return 1
    ctx.save_config(cfg)
    ctx.log.info("Config loaded", extra={"phase": "init"})

    try:
        if args.command == "score":
            code = cmd_score(args, cfg, ctx)
        else:
            code = cmd_matrix(args, cfg, ctx)

        total_time = round(time.time() - t0, 1)
        ctx.save_metadata({
            "command": args.command,
            "config_hash": ctx.config_hash(cfg),
            "exit_code": code,
            "total_time_seconds": total_time,
        })
        print(f"\n  Run artifacts saved to: {ctx.run_dir}")
    finally:
        ctx.close()
    return code


if __name__ == "__main__":
    sys.exit(main())
