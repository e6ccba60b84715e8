"""Batch enrichment: currency normalization → derived metrics → defaults.

Each record is handled on its own.  A record that is not a mapping is
logged and passed through untouched in its original position; a record
whose derivations all fail keeps those fields as None.  Nothing raised
while handling one record stops the rest of the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any

from equity_metrics.config import Settings, get_config
from equity_metrics.currency import CURRENCY_FIELDS, CurrencyNormalizer
from equity_metrics.metrics import NET_INCOME_MULTIPLIER, enrich
from equity_metrics.models import FinancialRecord, InvalidRecord
from equity_metrics.rates import RateProvider, get_rate_cache, get_rate_provider

log = logging.getLogger(__name__)

# Applied to fields still missing after enrichment
DEFAULT_FIELD_VALUES: dict[str, Any] = {
    "roce_calculated": False,
    "book_value_calculated": False,
    "price_book_calculated": False,
}

DEFAULT_FACE_VALUE = 1.0


class RecordEnrichmentPipeline:
    """Runs every record through normalize → enrich → backfill defaults."""

    def __init__(
        self,
        normalizer: CurrencyNormalizer,
        *,
        currency_fields: Iterable[str] = CURRENCY_FIELDS,
        net_income_multiplier: float = NET_INCOME_MULTIPLIER,
        face_values: Mapping[str, float] | None = None,
        default_face_value: float = DEFAULT_FACE_VALUE,
        max_workers: int = 1,
    ):
        self.normalizer = normalizer
        self.currency_fields = tuple(currency_fields)
        self.net_income_multiplier = net_income_multiplier
        self.face_values = {k.upper(): v for k, v in (face_values or {}).items()}
        self.default_face_value = default_face_value
        self.max_workers = max(1, max_workers)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: RateProvider | None = None,
    ) -> RecordEnrichmentPipeline:
        provider = provider or RateProvider.from_settings(settings)
        return cls(
            CurrencyNormalizer(provider, settings.reporting_currency, settings.source_currency),
            net_income_multiplier=settings.roic_net_income_multiplier,
            face_values=settings.face_values,
            default_face_value=settings.default_face_value,
            max_workers=settings.pipeline_max_workers,
        )

    # ── Single record ────────────────────────────────────────────────

    def face_value_for(self, symbol: str | None) -> float:
        if symbol:
            # "NSE:HINDUNILVR" and "HINDUNILVR" share an entry
            for key in (symbol.upper(), symbol.upper().split(":")[-1]):
                if key in self.face_values:
                    return self.face_values[key]
        return self.default_face_value

    def apply_defaults(self, rec: FinancialRecord) -> FinancialRecord:
        """Fill documented defaults for fields that are still missing."""
        updates: dict[str, Any] = {
            key: value for key, value in DEFAULT_FIELD_VALUES.items()
            if getattr(rec, key) is None
        }
        if rec.face_value is None:
            updates["face_value"] = self.face_value_for(rec.symbol_code)
        if rec.market_cap is not None and rec.market_cap_currency is None and rec.fundamental_currency:
            updates["market_cap_currency"] = rec.fundamental_currency
        return rec.model_copy(update=updates) if updates else rec

    def process_one(self, raw: FinancialRecord | Mapping[str, Any]) -> FinancialRecord:
        """Enrich one record.  Raises InvalidRecord for non-mapping input."""
        rec = FinancialRecord.from_raw(raw)
        rec = self.normalizer.normalize(rec, self.currency_fields)
        rec = enrich(rec, self.net_income_multiplier)
        return self.apply_defaults(rec)

    def _safe_process(self, index: int, raw: Any) -> Any:
        try:
            return self.process_one(raw)
        except InvalidRecord as exc:
            log.warning("Passing through malformed record #%d: %s", index, exc)
        except Exception as exc:
            log.error("Enrichment failed for record #%d, passing through: %s", index, exc)
        return raw

    # ── Batch ────────────────────────────────────────────────────────

    def process(self, records: Sequence[Any]) -> list[Any]:
        """Enrich a batch, keeping length and order.

        Valid entries come back as FinancialRecord; malformed entries come
        back as they were given.
        """
        records = list(records)
        if self.max_workers == 1 or len(records) < 2:
            return [self._safe_process(i, raw) for i, raw in enumerate(records)]

        results: list[Any] = [None] * len(records)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._safe_process, i, raw): i
                for i, raw in enumerate(records)
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        return results


def process_records(
    records: Sequence[Any],
    settings: Settings | None = None,
    provider: RateProvider | None = None,
) -> list[dict[str, Any] | Any]:
    """Enrich a batch and dump valid records to dicts.

    Without an explicit provider, rates come from the process-wide cache:
    the shared provider when no settings are given, otherwise a provider
    built from ``settings`` for this call and closed afterwards.
    """
    owned: RateProvider | None = None
    if provider is None:
        if settings is None:
            provider = get_rate_provider()
        else:
            owned = provider = RateProvider.from_settings(
                settings, cache=get_rate_cache(settings.rate_cache_ttl_seconds),
            )
    try:
        pipeline = RecordEnrichmentPipeline.from_settings(settings or get_config(), provider)
        return [
            r.to_dict() if isinstance(r, FinancialRecord) else r
            for r in pipeline.process(records)
        ]
    finally:
        if owned is not None:
            owned.close()
