"""Tests for derived metric formulas."""

import math

import pytest

from equity_metrics.metrics import (
    BOOK_VALUE_FORMULAS,
    MetricFormula,
    derive_book_value_per_share,
    derive_return_on_invested_capital,
    enrich,
    resolve,
    roic_formulas,
)
from equity_metrics.models import FinancialRecord


STOCK = {
    "symbol_code": "TEST",
    "close": 100,
    "change": 5,
    "market_cap": 1e12,
    "volume": 1e6,
    "price_book_fq": 2.5,
    "return_on_equity_fq": 16.67,
    "return_on_assets_fq": 8.33,
    "total_debt_fq": 500e9,
    "total_equity_fq": 400e9,
    "total_assets_fq": 900e9,
    "oper_income_ttm": 150e9,
    "net_income_ttm": 100e9,
    "total_shares_outstanding_current": 10e9,
}

MINIMAL = {"symbol_code": "MIN", "close": 50, "change": 1, "market_cap": 1e9, "volume": 1e5}


# --- ROIC ---


def test_roic_from_operating_income():
    assert derive_return_on_invested_capital(STOCK) == pytest.approx(16.67, abs=0.1)


def test_roic_exact_formula():
    rec = {"oper_income_ttm": 37.0, "total_equity_fq": 120.0, "total_debt_fq": 80.0}
    assert derive_return_on_invested_capital(rec) == pytest.approx(37.0 / 200.0 * 100)


def test_roic_falls_back_to_net_income():
    data = {**STOCK, "oper_income_ttm": None}
    assert derive_return_on_invested_capital(data) == pytest.approx(15.56, abs=0.1)


def test_roic_net_income_multiplier_is_configurable():
    data = {"net_income_ttm": 100.0, "total_equity_fq": 400.0, "total_debt_fq": 600.0}
    assert derive_return_on_invested_capital(data, net_income_multiplier=1.0) == pytest.approx(10.0)


def test_roic_zero_capital_is_absent():
    data = {"oper_income_ttm": 10.0, "net_income_ttm": 5.0, "total_equity_fq": 100.0, "total_debt_fq": -100.0}
    assert derive_return_on_invested_capital(data) is None


def test_roic_roa_leverage_fallback():
    data = {"return_on_assets_fq": 8.0, "total_assets_fq": 900.0, "total_equity_fq": 400.0, "total_debt_fq": 500.0}
    assert derive_return_on_invested_capital(data) == pytest.approx(8.0)


def test_roic_roe_equity_ratio_fallback():
    data = {"return_on_equity_fq": 20.0, "total_equity_fq": 300.0, "total_debt_fq": 100.0}
    assert derive_return_on_invested_capital(data) == pytest.approx(15.0)


def test_missing_inputs_are_absent_not_zero():
    assert derive_return_on_invested_capital(MINIMAL) is None
    assert derive_book_value_per_share(MINIMAL) is None


def test_non_finite_inputs_treated_as_absent():
    data = {**STOCK, "oper_income_ttm": float("nan"), "net_income_ttm": float("inf")}
    # Falls through to the ROA formula rather than producing NaN
    result = derive_return_on_invested_capital(data)
    assert result is not None and math.isfinite(result)
    assert result == pytest.approx(8.33)


def test_non_numeric_inputs_treated_as_absent():
    data = {"oper_income_ttm": "n/a", "total_equity_fq": 400.0, "total_debt_fq": 500.0}
    assert derive_return_on_invested_capital(data) is None


def test_numeric_strings_are_read():
    data = {"oper_income_ttm": "90", "total_equity_fq": "400", "total_debt_fq": "500"}
    assert derive_return_on_invested_capital(data) == pytest.approx(10.0)


# --- Book value ---


def test_book_value_from_equity():
    assert derive_book_value_per_share(STOCK) == pytest.approx(40.0)


def test_book_value_from_price_to_book():
    data = {**STOCK, "total_equity_fq": None}
    assert derive_book_value_per_share(data) == pytest.approx(40.0)


def test_book_value_zero_shares_falls_through():
    data = {"total_equity_fq": 400.0, "total_shares_outstanding_current": 0, "close": 90.0, "price_book_fq": 3.0}
    assert derive_book_value_per_share(data) == pytest.approx(30.0)


def test_book_value_from_market_cap():
    data = {"market_cap": 1000.0, "price_book_fq": 2.0, "total_shares_outstanding_current": 50.0}
    assert derive_book_value_per_share(data) == pytest.approx(10.0)


def test_book_value_negative_price_to_book_is_absent():
    assert derive_book_value_per_share({"close": 100.0, "price_book_fq": -2.0}) is None


# --- Formula resolution ---


def test_resolve_reports_formula_name():
    rec = FinancialRecord.from_raw({**STOCK, "oper_income_ttm": None})
    value, name = resolve(rec, roic_formulas())
    assert name == "net_income_scaled"
    assert value == pytest.approx(15.56, abs=0.1)


def test_resolve_with_extra_formula():
    formulas = BOOK_VALUE_FORMULAS + [
        MetricFormula("constant", lambda r: True, lambda r: 7.0),
    ]
    assert resolve(FinancialRecord(), formulas) == (7.0, "constant")


def test_resolve_nothing_applies():
    assert resolve(FinancialRecord(), roic_formulas()) == (None, None)


# --- enrich ---


def test_enrich_fills_missing_fields_and_markers():
    result = enrich(STOCK)
    assert result.return_on_invested_capital_fq == pytest.approx(16.67, abs=0.1)
    assert result.roce_calculated is True
    assert result.book_value == pytest.approx(40.0)
    assert result.book_value_calculated is True


def test_enrich_never_overwrites_provider_values():
    data = {**STOCK, "return_on_invested_capital_fq": 22.5, "book_value": 12.0}
    result = enrich(data)
    assert result.return_on_invested_capital_fq == 22.5
    assert result.roce_calculated is None
    assert result.book_value == 12.0
    assert result.book_value_calculated is None


def test_enrich_does_not_mutate_input():
    rec = FinancialRecord.from_raw(STOCK)
    result = enrich(rec)
    assert result is not rec
    assert rec.return_on_invested_capital_fq is None
    assert rec.book_value is None
    assert rec.roce_calculated is None


def test_enrich_derives_price_to_book_from_book_value():
    data = {"close": 120.0, "total_equity_fq": 300.0, "total_shares_outstanding_current": 10.0}
    result = enrich(data)
    assert result.book_value == pytest.approx(30.0)
    assert result.price_book_fq == pytest.approx(4.0)
    assert result.price_book_calculated is True


def test_enrich_leaves_unenrichable_record_alone():
    result = enrich(MINIMAL)
    assert result.return_on_invested_capital_fq is None
    assert result.book_value is None
    assert result.roce_calculated is None
    assert result.to_dict() == FinancialRecord.from_raw(MINIMAL).to_dict()


def test_enrich_keeps_unknown_provider_fields():
    result = enrich({**STOCK, "dividends_yield": 1.2})
    assert result.to_dict()["dividends_yield"] == 1.2
