"""Pydantic models for records, exchange rates and aligned series."""

from __future__ import annotations

import math
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator


class InvalidRecord(ValueError):
    """Raised when a pipeline input cannot be read as a financial record."""


# ═══════════════════════════════════════════════════════════════════════════
#  Safe numeric helpers
# ═══════════════════════════════════════════════════════════════════════════

def _safe(v: Any) -> float | None:
    """Convert a value to float, returning None for invalid/missing values."""
    if v is None or isinstance(v, bool):
        return None
    if hasattr(v, "item"):
        v = v.item()
    try:
        f = float(v)
        if math.isnan(f) or math.isinf(f):
            return None
        return f
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Financial record
# ---------------------------------------------------------------------------

NUMERIC_FIELDS: tuple[str, ...] = (
    "close",
    "change",
    "volume",
    "high",
    "low",
    "open",
    "market_cap",
    "total_assets_fq",
    "total_equity_fq",
    "total_debt_fq",
    "total_liabilities_fq",
    "net_income_ttm",
    "oper_income_ttm",
    "total_shares_outstanding_current",
    "price_book_fq",
    "return_on_assets_fq",
    "return_on_equity_fq",
    "return_on_invested_capital_fq",
    "book_value",
    "face_value",
)

TEXT_FIELDS: tuple[str, ...] = (
    "symbol_code",
    "name",
    "sector",
    "fundamental_currency",
    "market_cap_currency",
)

FLAG_FIELDS: tuple[str, ...] = (
    "roce_calculated",
    "book_value_calculated",
    "price_book_calculated",
)


class FinancialRecord(BaseModel):
    """One company's loosely-populated fundamentals.

    Every recognised provider key is optional. Unknown keys are kept as
    extras so nothing the provider sends is lost on the way through.
    Numeric fields that are non-numeric, NaN or infinite become None.
    """

    symbol_code: str | None = None
    name: str | None = None
    sector: str | None = None

    close: float | None = None
    change: float | None = None
    volume: float | None = None
    high: float | None = None
    low: float | None = None
    open: float | None = None
    market_cap: float | None = None

    fundamental_currency: str | None = None
    market_cap_currency: str | None = None

    total_assets_fq: float | None = None
    total_equity_fq: float | None = None
    total_debt_fq: float | None = None
    total_liabilities_fq: float | None = None
    net_income_ttm: float | None = None
    oper_income_ttm: float | None = None
    total_shares_outstanding_current: float | None = None
    price_book_fq: float | None = None
    return_on_assets_fq: float | None = None
    return_on_equity_fq: float | None = None

    # Derived targets
    return_on_invested_capital_fq: float | None = None
    book_value: float | None = None
    face_value: float | None = None

    roce_calculated: bool | None = None
    book_value_calculated: bool | None = None
    price_book_calculated: bool | None = None

    model_config = {"extra": "allow"}

    @field_validator(*NUMERIC_FIELDS, mode="before")
    @classmethod
    def coerce_number(cls, v: Any) -> float | None:
        return _safe(v)

    @field_validator(*TEXT_FIELDS, mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str | None:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("fundamental_currency", "market_cap_currency")
    @classmethod
    def upper_currency(cls, v: str | None) -> str | None:
        return v.upper() if v else v

    @field_validator(*FLAG_FIELDS, mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> bool | None:
        return v if isinstance(v, bool) else None

    @classmethod
    def from_raw(cls, raw: Any) -> FinancialRecord:
        """Build a record from a provider mapping.

        Raises InvalidRecord for anything that is not a string-keyed mapping.
        """
        if isinstance(raw, FinancialRecord):
            return raw
        if not isinstance(raw, Mapping):
            raise InvalidRecord(f"Expected a mapping, got {type(raw).__name__}")
        if not all(isinstance(k, str) for k in raw):
            raise InvalidRecord("Record keys must be strings")
        try:
            return cls.model_validate(dict(raw))
        except ValidationError as exc:
            raise InvalidRecord(str(exc)) from exc

    def number(self, key: str) -> float | None:
        """Numeric value of a field or pass-through extra, None if unusable."""
        if key in type(self).model_fields:
            return _safe(getattr(self, key))
        return _safe((self.model_extra or {}).get(key))

    def to_dict(self) -> dict[str, Any]:
        """Dump the fields the provider or the engine actually set."""
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Exchange rates
# ---------------------------------------------------------------------------

class ExchangeRateSnapshot(BaseModel):
    """A rate observed at a point in time.  Replaced, never mutated."""
    source: str
    target: str
    rate: float = Field(gt=0)
    observed_at: float               # epoch seconds

    model_config = {"frozen": True}

    @field_validator("rate")
    @classmethod
    def finite_rate(cls, v: float) -> float:
        if math.isinf(v) or math.isnan(v):
            raise ValueError("rate must be finite")
        return v


class RateOrigin(str, Enum):
    IDENTITY = "identity"    # source == target
    CACHED = "cached"        # fresh cache hit
    LIVE = "live"            # fetched from a rate source just now
    STALE = "stale"          # expired cache entry, all sources failed
    FALLBACK = "fallback"    # hard-coded constant


class RateQuote(BaseModel):
    """A resolved rate plus where it came from (for logging/diagnostics)."""
    rate: float = Field(gt=0)
    origin: RateOrigin
    provider: str | None = None      # name of the live source, if any

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Quarterly series
# ---------------------------------------------------------------------------

class QuartersInfo(BaseModel):
    dates: list[str] = []
    periods: list[str] = []


class AlignedSeries(BaseModel):
    """Equal-length series with a shared period axis (index 0 = most recent)."""
    series: dict[str, list[float | None]] = {}
    quarters_info: QuartersInfo = QuartersInfo()
    metadata: dict[str, Any] = {}

    @property
    def length(self) -> int:
        return len(self.quarters_info.periods)

    def to_dict(self) -> dict[str, Any]:
        """Flatten to the response shape: series keys, metadata, quarters_info."""
        out: dict[str, Any] = dict(self.metadata)
        out.update({k: list(v) for k, v in self.series.items()})
        out["quarters_info"] = self.quarters_info.model_dump()
        return out
