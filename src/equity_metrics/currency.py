"""Currency normalization for aggregate, capitalization-style fields.

Only the fields passed in are converted.  Per-share fields such as
``close``/``high``/``low`` stay in the record's fundamental currency.
Each converted field gets a ``<field>_currency`` marker; a field whose
marker already equals the reporting currency is left alone, which makes
normalization idempotent.

One currency pair is supported: records whose fundamental currency is
not the configured source currency keep their values in that currency.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from equity_metrics.models import FinancialRecord, _safe
from equity_metrics.rates import RateProvider

log = logging.getLogger(__name__)

# Fields converted into the reporting currency
CURRENCY_FIELDS: tuple[str, ...] = ("market_cap",)


def marker_for(field: str) -> str:
    return f"{field}_currency"


class CurrencyNormalizer:
    """Converts listed record fields from the record's currency to the reporting one."""

    def __init__(
        self,
        provider: RateProvider,
        target_currency: str = "INR",
        source_currency: str = "USD",
    ):
        self.provider = provider
        self.target_currency = target_currency.strip().upper()
        self.source_currency = source_currency.strip().upper()

    def normalize(
        self,
        record: FinancialRecord | Mapping[str, Any],
        fields: Iterable[str] = CURRENCY_FIELDS,
    ) -> FinancialRecord:
        """Return a copy of ``record`` with ``fields`` in the reporting currency.

        Records without a declared ``fundamental_currency``, already in the
        reporting currency, or in any currency other than the configured
        source come back unchanged.  The input record is never mutated.
        """
        rec = FinancialRecord.from_raw(record)
        source = rec.fundamental_currency
        if not source or source == self.target_currency:
            return rec
        if source != self.source_currency:
            log.debug(
                "Not converting %s: %s is not the configured %s→%s pair",
                rec.symbol_code or "<unknown>", source, self.source_currency, self.target_currency,
            )
            return rec

        extras = rec.model_extra or {}
        updates: dict[str, Any] = {}
        rate: float | None = None

        for field in fields:
            marker = marker_for(field)
            current = getattr(rec, marker, None) if marker in type(rec).model_fields else extras.get(marker)
            if isinstance(current, str) and current.upper() == self.target_currency:
                continue
            value = rec.number(field)
            if value is None:
                continue
            if rate is None:
                rate = self.provider.resolve_rate(source, self.target_currency)
            updates[field] = value * rate
            updates[marker] = self.target_currency

        if not updates:
            return rec
        log.debug(
            "Converted %s for %s from %s to %s at %.4f",
            [k for k in updates if not k.endswith("_currency")],
            rec.symbol_code or "<unknown>", source, self.target_currency, rate,
        )
        return rec.model_copy(update=updates)

    def convert_values(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Convert every usable number in a flat source-currency mapping.

        Non-numeric entries pass through unchanged.
        """
        rate = self.provider.resolve_rate(self.source_currency, self.target_currency)
        converted: dict[str, Any] = {}
        for key, value in values.items():
            number = _safe(value) if isinstance(value, (int, float)) else None
            converted[key] = number * rate if number is not None else value
        return converted
