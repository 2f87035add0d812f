"""Tests for the Excel exports (scores and risk matrix)."""

import sys
from pathlib import Path

import pytest
from openpyxl import load_workbook

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from factor_engine import SCORE_EXPORT_COLUMNS, score_universe, scores_to_frame, write_scores_excel
from portfolio_constructor import construct_matrix, write_matrix_excel
from sample_data import generate_sample_universe
from schemas import FactorWeights
from conftest import make_stock


class TestScoresExport:
    def test_frame_columns(self, small_universe, cfg):
        df = scores_to_frame(score_universe(small_universe, FactorWeights(), cfg))
        assert list(df.columns) == SCORE_EXPORT_COLUMNS
        assert list(df["Rank"]) == [1, 2, 3, 4, 5]

    def test_empty_frame(self):
        df = scores_to_frame([])
        assert df.empty
        assert list(df.columns) == SCORE_EXPORT_COLUMNS

    def test_excel_round_trip(self, small_universe, cfg, tmp_path):
        stocks = small_universe + [make_stock("ZZZ")]
        scored = score_universe(stocks, FactorWeights(), cfg)
        path = write_scores_excel(scored, tmp_path / "out" / "scores.xlsx", cfg)

        wb = load_workbook(path)
        ws = wb[cfg["output"]["scores_sheet"]]
        rows = list(ws.iter_rows(values_only=True))
        assert list(rows[0]) == SCORE_EXPORT_COLUMNS
        assert len(rows) == len(scored) + 1
        assert rows[1][1] == scored[0].ticker
        assert rows[1][10] == pytest.approx(round(scored[0].final_score, 3))

        zzz = next(r for r in rows[1:] if r[1] == "ZZZ")
        assert zzz[10] == 0
        assert all(v is None for v in zzz[11:])


class TestMatrixExport:
    def test_matrix_and_weights_sheets(self, cfg, tmp_path):
        result = construct_matrix(generate_sample_universe(n=6, seed=2), cfg,
                                  include_weights=True, capital=20000)
        path = write_matrix_excel(result, tmp_path / "matrix.xlsx", cfg)

        wb = load_workbook(path)
        assert wb.sheetnames == ["Matrix", "Weights"]
        ws = wb["Matrix"]
        header = [c.value for c in ws[1]][1:]
        assert header == result.tickers
        assert ws.cell(row=2, column=2).value == pytest.approx(1.0)

        wt = wb["Weights"]
        assert [c.value for c in wt[1]] == ["Ticker", "Weight", "Allocation"]
        allocations = [wt.cell(row=r, column=3).value for r in range(2, len(result.weights) + 2)]
        assert sum(allocations) == pytest.approx(20000, abs=0.1)

    def test_matrix_only(self, cfg, tmp_path):
        result = construct_matrix(generate_sample_universe(n=4, seed=2), cfg)
        path = write_matrix_excel(result, tmp_path / "m.xlsx", cfg)
        assert load_workbook(path).sheetnames == ["Matrix"]

    def test_weights_sheet_lists_weighted_tickers_only(self, cfg, tmp_path):
        stocks = generate_sample_universe(n=3, seed=2)
        stocks[1] = stocks[1].model_copy(update={"prices": stocks[1].prices[-10:]})
        result = construct_matrix(stocks, cfg, include_weights=True)
        path = write_matrix_excel(result, tmp_path / "short.xlsx", cfg)

        wb = load_workbook(path)
        assert [c.value for c in wb["Matrix"][1]][1:] == result.tickers
        assert len(result.tickers) == 3
        listed = [wb["Weights"].cell(row=r, column=1).value for r in range(2, 4)]
        assert sorted(listed) == sorted(t for t in result.tickers if t != stocks[1].ticker)
        assert wb["Weights"].cell(row=4, column=1).value is None
