"""Tests for messy-data handling: missing, NaN and infinite metrics,
degenerate universes, duplicate tickers and odd price histories.

None of these may raise."""

import logging
import math
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from factor_engine import build_universe_frame, score_universe
from portfolio_constructor import construct_matrix
from schemas import FactorWeights, StockRecord
from conftest import make_prices, make_stock


class TestMessyMetrics:
    def test_nan_and_inf_accepted_by_schema(self):
        s = make_stock("AAA", pe_ratio=float("nan"), pb_ratio=float("inf"), roe=None)
        assert math.isnan(s.metrics["pe_ratio"])
        assert s.metrics["roe"] is None

    def test_nan_inf_excluded_from_scoring(self, cfg):
        stocks = [
            make_stock("AAA", pe_ratio=10),
            make_stock("BBB", pe_ratio=20),
            make_stock("CCC", pe_ratio=float("inf")),
            make_stock("DDD", pe_ratio=float("nan")),
        ]
        scored = {s.ticker: s for s in score_universe(stocks, FactorWeights(), cfg)}
        assert scored["AAA"].factor_scores.value == pytest.approx(1.0)
        assert scored["BBB"].factor_scores.value == pytest.approx(-1.0)
        assert scored["CCC"].factor_scores.value is None
        assert scored["DDD"].final_score == 0.0

    def test_single_stock_universe(self, cfg):
        scored = score_universe([make_stock("ONLY", pe_ratio=12, roe=0.2)], FactorWeights(), cfg)
        assert len(scored) == 1
        assert scored[0].rank == 1
        assert scored[0].final_score == 0.0

    def test_metric_columns_are_float(self, cfg):
        stocks = [make_stock("AAA", pe_ratio=10), make_stock("BBB", pe_ratio=20)]
        df = build_universe_frame(stocks, cfg)
        assert df["pe_ratio"].dtype == float

    def test_market_cap_from_metrics(self, cfg):
        df = build_universe_frame([make_stock("AAA", market_cap=2.5e9)], cfg)
        assert df.loc[0, "Market_Cap"] == 2.5e9


class TestDuplicatesAndOrdering:
    def test_duplicate_ticker_keeps_first(self, cfg, caplog):
        stocks = [make_stock("AAA", pe_ratio=10), make_stock("BBB", pe_ratio=20),
                  make_stock("AAA", pe_ratio=99)]
        with caplog.at_level(logging.WARNING, logger="factor_engine"):
            scored = score_universe(stocks, FactorWeights(), cfg)
        assert [s.ticker for s in scored].count("AAA") == 1
        assert "duplicate" in caplog.text
        aaa = next(s for s in scored if s.ticker == "AAA")
        assert aaa.factor_scores.value == pytest.approx(1.0)

    def test_newest_first_prices(self, cfg):
        values = [100 + i * 0.5 for i in range(40)]
        fwd = make_stock("FWD", prices=make_prices(values))
        rev = make_stock("REV", prices=list(reversed(make_prices(values))))
        df = build_universe_frame([fwd, rev], cfg)
        assert df.loc[0, "return_30d"] == pytest.approx(df.loc[1, "return_30d"])
        assert df.loc[0, "return_30d"] > 0


class TestPriceEdgeCases:
    def test_no_prices(self, cfg):
        df = build_universe_frame([make_stock("AAA", pe_ratio=1.0)], cfg)
        assert "return_30d" not in df.columns

    def test_derived_none_keeps_snapshot_value(self, cfg):
        s = make_stock("AAA", prices=make_prices([100.0, 101.0]), return_30d=0.07)
        df = build_universe_frame([s], cfg)
        assert df.loc[0, "return_30d"] == pytest.approx(0.07)

    def test_zero_price_in_history(self, cfg):
        values = [100.0] * 20 + [0.0] + [100.0 + i for i in range(19)]
        df = build_universe_frame([make_stock("ZZZ", prices=make_prices(values))], cfg)
        assert np.isfinite(df.loc[0, "volatility_30d"])

    def test_as_of_filters_future_prices(self, cfg):
        points = make_prices([100.0 + i for i in range(40)])
        s = make_stock("AAA", prices=points)
        df_all = build_universe_frame([s], cfg)
        df_cut = build_universe_frame([s], cfg, as_of=points[35].date)
        assert df_all.loc[0, "return_30d"] == pytest.approx((139 - 109) / 109)
        assert df_cut.loc[0, "return_30d"] == pytest.approx((135 - 105) / 105)


class TestMatrixEdgeCases:
    def test_flat_prices_give_zero_correlation(self, cfg):
        flat = make_stock("FLAT", prices=make_prices([50.0] * 40))
        moving = make_stock("MOVE", prices=make_prices([50.0 + (i % 3) for i in range(40)]))
        result = construct_matrix([flat, moving], cfg, include_weights=True)
        assert result.matrix[0][0] == 0.0
        assert result.matrix[1][1] == pytest.approx(1.0)
        assert result.weights == pytest.approx({"FLAT": 0.0, "MOVE": 1.0})

    def test_single_stock_weight_one(self, cfg):
        s = make_stock("ONE", prices=make_prices([10.0 + (i % 4) for i in range(35)]))
        result = construct_matrix([s], cfg, include_weights=True)
        assert result.weights == {"ONE": pytest.approx(1.0)}

    def test_empty_input(self, cfg):
        result = construct_matrix([], cfg)
        assert result.tickers == [] and result.matrix == []

    def test_dict_records_accepted(self, cfg):
        rec = StockRecord(ticker="D", prices=make_prices([10.0 + (i % 4) for i in range(35)]))
        result = construct_matrix([rec.model_dump()], cfg)
        assert result.tickers == ["D"]
        assert result.matrix[0][0] == pytest.approx(1.0)
