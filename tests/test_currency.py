"""Tests for currency normalization."""

import pytest

from equity_metrics.currency import CURRENCY_FIELDS, CurrencyNormalizer
from equity_metrics.models import FinancialRecord, InvalidRecord


class FixedRateProvider:
    """Stands in for RateProvider with a constant rate and a call counter."""

    def __init__(self, rate=80.0):
        self.rate = rate
        self.calls = []

    def resolve_rate(self, source_currency, target_currency):
        self.calls.append((source_currency, target_currency))
        return self.rate


def _normalizer(rate=80.0):
    provider = FixedRateProvider(rate)
    return CurrencyNormalizer(provider, "INR"), provider


def test_currency_fields_defined():
    assert CURRENCY_FIELDS == ("market_cap",)


def test_usd_market_cap_converted():
    normalizer, provider = _normalizer()
    result = normalizer.normalize({"fundamental_currency": "USD", "market_cap": 2e9, "close": 150.0})
    assert result.market_cap == pytest.approx(160e9)
    assert result.market_cap_currency == "INR"
    assert provider.calls == [("USD", "INR")]


def test_per_share_fields_untouched():
    normalizer, _ = _normalizer()
    data = {"fundamental_currency": "USD", "market_cap": 1e9, "close": 150.0, "high": 155.0, "low": 149.0}
    result = normalizer.normalize(data)
    assert (result.close, result.high, result.low) == (150.0, 155.0, 149.0)


def test_normalize_is_idempotent():
    normalizer, provider = _normalizer()
    once = normalizer.normalize({"fundamental_currency": "USD", "market_cap": 1e9})
    twice = normalizer.normalize(once)
    assert twice.to_dict() == once.to_dict()
    assert twice.market_cap == once.market_cap
    assert len(provider.calls) == 1


def test_already_marked_record_is_left_alone():
    normalizer, provider = _normalizer()
    data = {"fundamental_currency": "USD", "market_cap": 5e11, "market_cap_currency": "inr"}
    result = normalizer.normalize(data)
    assert result.market_cap == 5e11
    assert provider.calls == []


def test_record_in_reporting_currency_passes_through():
    normalizer, provider = _normalizer()
    result = normalizer.normalize({"fundamental_currency": "INR", "market_cap": 5e11})
    assert result.market_cap == 5e11
    assert result.market_cap_currency is None
    assert provider.calls == []


def test_record_without_currency_passes_through():
    normalizer, provider = _normalizer()
    result = normalizer.normalize({"market_cap": 5e11})
    assert result.market_cap == 5e11
    assert provider.calls == []


@pytest.mark.parametrize("value", [None, "n/a", float("nan")])
def test_missing_or_unusable_market_cap_not_converted(value):
    normalizer, provider = _normalizer()
    result = normalizer.normalize({"fundamental_currency": "USD", "market_cap": value})
    assert result.market_cap is None
    assert result.market_cap_currency is None
    assert provider.calls == []


def test_only_listed_fields_converted():
    normalizer, _ = _normalizer(2.0)
    data = {"fundamental_currency": "USD", "market_cap": 10.0, "enterprise_value": 30.0}
    result = normalizer.normalize(data, ["market_cap", "enterprise_value"])
    extras = result.to_dict()
    assert result.market_cap == 20.0
    assert extras["enterprise_value"] == 60.0
    assert extras["enterprise_value_currency"] == "INR"


def test_input_record_not_mutated():
    normalizer, _ = _normalizer()
    rec = FinancialRecord.from_raw({"fundamental_currency": "USD", "market_cap": 1e9})
    normalizer.normalize(rec)
    assert rec.market_cap == 1e9
    assert rec.market_cap_currency is None


def test_non_mapping_record_rejected():
    normalizer, _ = _normalizer()
    with pytest.raises(InvalidRecord):
        normalizer.normalize(["market_cap", 1e9])


def test_convert_values():
    normalizer, _ = _normalizer(10.0)
    result = normalizer.convert_values({"a": 1.5, "b": "text", "c": None, "d": 2})
    assert result == {"a": 15.0, "b": "text", "c": None, "d": 20.0}


@pytest.mark.parametrize("currency", ["JPY", "EUR", "gbp"])
def test_record_outside_configured_pair_passes_through(currency):
    normalizer, provider = _normalizer()
    result = normalizer.normalize({"fundamental_currency": currency, "market_cap": 1e6})
    assert result.market_cap == 1e6
    assert result.market_cap_currency is None
    assert provider.calls == []


def test_configured_source_currency_is_converted():
    provider = FixedRateProvider(90.0)
    normalizer = CurrencyNormalizer(provider, "INR", source_currency="eur")
    result = normalizer.normalize({"fundamental_currency": "EUR", "market_cap": 2.0})
    assert result.market_cap == pytest.approx(180.0)
    assert result.market_cap_currency == "INR"
    assert provider.calls == [("EUR", "INR")]
    assert normalizer.normalize({"fundamental_currency": "USD", "market_cap": 2.0}).market_cap == 2.0
