"""Derived metrics for records the provider left incomplete.

Each derived metric is an ordered list of MetricFormula entries.  The
first entry whose precondition holds computes the value; if none holds
the metric stays None.  Adding another fallback means appending an entry,
not editing control flow.

ROIC (return on invested capital, shown as ROCE), in percent:
  1. operating income / (equity + debt) × 100
  2. net income × 1.4 / (equity + debt) × 100
  3. ROA × total assets / (equity + debt)
  4. ROE × equity / (equity + debt)

Book value per share:
  1. equity / shares outstanding
  2. price / price-to-book
  3. market cap / price-to-book / shares outstanding

Missing inputs, NaN and infinities are treated as absent, never as zero.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Callable, NamedTuple

from equity_metrics.models import FinancialRecord, _safe

log = logging.getLogger(__name__)

# Approximate operating income from net income (taxes + interest added back)
NET_INCOME_MULTIPLIER = 1.4


class MetricFormula(NamedTuple):
    name: str
    precondition: Callable[[FinancialRecord], bool]
    compute: Callable[[FinancialRecord], float]


def _present(rec: FinancialRecord, *keys: str) -> bool:
    return all(rec.number(k) is not None for k in keys)


def _capital(rec: FinancialRecord) -> float:
    return rec.total_equity_fq + rec.total_debt_fq


def _has_capital(rec: FinancialRecord) -> bool:
    return _present(rec, "total_equity_fq", "total_debt_fq") and _capital(rec) != 0


# ═══════════════════════════════════════════════════════════════════════════
#  Formula chains
# ═══════════════════════════════════════════════════════════════════════════

def roic_formulas(net_income_multiplier: float = NET_INCOME_MULTIPLIER) -> list[MetricFormula]:
    """ROIC chain; the net income multiplier is a configurable heuristic."""
    return [
        MetricFormula(
            "operating_income",
            lambda r: _present(r, "oper_income_ttm") and _has_capital(r),
            lambda r: r.oper_income_ttm / _capital(r) * 100,
        ),
        MetricFormula(
            "net_income_scaled",
            lambda r: _present(r, "net_income_ttm") and _has_capital(r),
            lambda r: r.net_income_ttm * net_income_multiplier / _capital(r) * 100,
        ),
        MetricFormula(
            "roa_leverage_adjusted",
            lambda r: (
                _present(r, "return_on_assets_fq", "total_assets_fq")
                and _has_capital(r)
                and _capital(r) > 0
                and r.total_assets_fq > 0
            ),
            lambda r: r.return_on_assets_fq * (r.total_assets_fq / _capital(r)),
        ),
        MetricFormula(
            "roe_equity_ratio",
            lambda r: (
                _present(r, "return_on_equity_fq")
                and _has_capital(r)
                and r.total_equity_fq / _capital(r) > 0
            ),
            lambda r: r.return_on_equity_fq * (r.total_equity_fq / _capital(r)),
        ),
    ]


BOOK_VALUE_FORMULAS: list[MetricFormula] = [
    MetricFormula(
        "equity_per_share",
        lambda r: (
            _present(r, "total_equity_fq", "total_shares_outstanding_current")
            and r.total_shares_outstanding_current > 0
        ),
        lambda r: r.total_equity_fq / r.total_shares_outstanding_current,
    ),
    MetricFormula(
        "price_over_price_to_book",
        lambda r: _present(r, "close", "price_book_fq") and r.price_book_fq > 0,
        lambda r: r.close / r.price_book_fq,
    ),
    MetricFormula(
        "market_cap_over_price_to_book",
        lambda r: (
            _present(r, "market_cap", "price_book_fq", "total_shares_outstanding_current")
            and r.price_book_fq > 0
            and r.total_shares_outstanding_current > 0
        ),
        lambda r: r.market_cap / r.price_book_fq / r.total_shares_outstanding_current,
    ),
]

PRICE_TO_BOOK_FORMULAS: list[MetricFormula] = [
    MetricFormula(
        "price_over_book_value",
        lambda r: _present(r, "close", "book_value") and r.book_value > 0,
        lambda r: r.close / r.book_value,
    ),
]


def resolve(rec: FinancialRecord, formulas: list[MetricFormula]) -> tuple[float | None, str | None]:
    """Evaluate formulas in order; return (value, formula name) of the first match."""
    for formula in formulas:
        if formula.precondition(rec):
            value = _safe(formula.compute(rec))
            if value is not None:
                return value, formula.name
    return None, None


# ═══════════════════════════════════════════════════════════════════════════
#  Public derivations
# ═══════════════════════════════════════════════════════════════════════════

def derive_return_on_invested_capital(
    record: FinancialRecord | Mapping[str, Any],
    net_income_multiplier: float = NET_INCOME_MULTIPLIER,
) -> float | None:
    value, _ = resolve(FinancialRecord.from_raw(record), roic_formulas(net_income_multiplier))
    return value


def derive_book_value_per_share(record: FinancialRecord | Mapping[str, Any]) -> float | None:
    value, _ = resolve(FinancialRecord.from_raw(record), BOOK_VALUE_FORMULAS)
    return value


def enrich(
    record: FinancialRecord | Mapping[str, Any],
    net_income_multiplier: float = NET_INCOME_MULTIPLIER,
) -> FinancialRecord:
    """Fill missing ROIC, book value and price-to-book on a copy of ``record``.

    Values the provider supplied are never overwritten.  Every filled field
    gets its ``*_calculated`` marker set to True.  The input is not mutated.
    """
    rec = FinancialRecord.from_raw(record)
    label = rec.symbol_code or "<unknown>"
    updates: dict[str, object] = {}

    if rec.return_on_invested_capital_fq is None:
        value, formula = resolve(rec, roic_formulas(net_income_multiplier))
        if value is not None:
            updates["return_on_invested_capital_fq"] = value
            updates["roce_calculated"] = True
            log.debug("ROCE for %s = %.2f%% via %s", label, value, formula)

    if rec.book_value is None:
        value, formula = resolve(rec, BOOK_VALUE_FORMULAS)
        if value is not None:
            updates["book_value"] = value
            updates["book_value_calculated"] = True
            log.debug("Book value for %s = %.2f via %s", label, value, formula)

    if rec.price_book_fq is None:
        staged = rec.model_copy(update=updates) if updates else rec
        value, formula = resolve(staged, PRICE_TO_BOOK_FORMULAS)
        if value is not None:
            updates["price_book_fq"] = value
            updates["price_book_calculated"] = True
            log.debug("P/B for %s = %.2f via %s", label, value, formula)

    if not updates:
        return rec
    return rec.model_copy(update=updates)
