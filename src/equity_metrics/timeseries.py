"""Quarterly series extraction and alignment.

Providers return per-field history arrays (``*_fq_h``) of different
lengths, most recent quarter first.  ``align`` pads every array at the
tail to the longest length and builds a matching ``quarters_info`` axis
by stepping back from a reference date:

    months Jan–Mar → "Mar YYYY"    Apr–Jun → "Jun YYYY"
    months Jul–Sep → "Sep YYYY"    Oct–Dec → "Dec YYYY"

If every array is empty there is nothing to align and ``align`` returns
None; callers decide what to show instead.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

import pandas as pd

from equity_metrics.models import AlignedSeries, QuartersInfo, _safe

log = logging.getLogger(__name__)

QUARTERLY_SUFFIX = "_fq_h"
QUARTER_MONTHS = 3

_QUARTER_LABELS = ("Mar", "Jun", "Sep", "Dec")


def fiscal_quarter_label(ts: pd.Timestamp | datetime | date) -> str:
    """Label the quarter a date falls in, e.g. 2025-05-14 → "Jun 2025"."""
    return f"{_QUARTER_LABELS[(ts.month - 1) // 3]} {ts.year}"


def _reference_timestamp(reference_date: pd.Timestamp | datetime | date | str | None) -> pd.Timestamp:
    ts = pd.Timestamp.now(tz="UTC") if reference_date is None else pd.Timestamp(reference_date)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts


def quarter_axis(
    length: int,
    reference_date: pd.Timestamp | datetime | date | str | None = None,
    period_length: int = QUARTER_MONTHS,
) -> QuartersInfo:
    """Build ``length`` ISO dates and labels stepping back ``period_length`` months."""
    ref = _reference_timestamp(reference_date)
    dates: list[str] = []
    periods: list[str] = []
    for i in range(length):
        # DateOffset clamps to month end (31 May - 3 months → 28/29 Feb)
        ts = ref - pd.DateOffset(months=i * period_length)
        dates.append(ts.isoformat())
        periods.append(fiscal_quarter_label(ts))
    return QuartersInfo(dates=dates, periods=periods)


def align(
    series_set: Mapping[str, Sequence[float | None]],
    reference_date: pd.Timestamp | datetime | date | str | None = None,
    period_length: int = QUARTER_MONTHS,
    metadata: Mapping[str, Any] | None = None,
) -> AlignedSeries | None:
    """Pad every series to a common length and attach the period axis.

    Index 0 is the most recent period in every input; shorter series are
    padded with None at the end (older periods).  Empty series are kept
    and come back fully null.  Returns None when all series are empty.

    Raises:
        TypeError: ``series_set`` is not a mapping of sequences.
        ValueError: ``period_length`` is smaller than one month.
    """
    if not isinstance(series_set, Mapping):
        raise TypeError(f"series_set must be a mapping, got {type(series_set).__name__}")
    if isinstance(period_length, bool) or not isinstance(period_length, int):
        raise TypeError(f"period_length must be an int, got {type(period_length).__name__}")
    if period_length < 1:
        raise ValueError(f"period_length must be at least 1 month, got {period_length}")

    values: dict[str, list[Any]] = {}
    for key, seq in series_set.items():
        # lists, tuples, numpy arrays and pandas Series all qualify
        if isinstance(seq, (str, bytes, Mapping)) or not hasattr(seq, "__len__"):
            raise TypeError(f"series {key!r} must be a sequence, got {type(seq).__name__}")
        values[key] = list(seq)

    length = max((len(v) for v in values.values()), default=0)
    if length == 0:
        log.info("No quarterly data to align (%d empty series)", len(values))
        return None

    aligned = {key: v + [None] * (length - len(v)) for key, v in values.items()}
    return AlignedSeries(
        series=aligned,
        quarters_info=quarter_axis(length, reference_date, period_length),
        metadata=dict(metadata or {}),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Provider payload extraction
# ═══════════════════════════════════════════════════════════════════════════

def extract_quarterly_series(
    items: Iterable[Mapping[str, Any]],
    suffix: str = QUARTERLY_SUFFIX,
) -> tuple[dict[str, list[float | None]], dict[str, Any]]:
    """Split provider ``{"id", "value"}`` items into series and metadata.

    Array values under ids ending in ``suffix`` become series; unusable
    entries turn into None in place so positions keep their period.
    Scalar values under other ids (``sector``, ``industry`` …) become
    metadata.  Items with no id or a null value are skipped.
    """
    series: dict[str, list[float | None]] = {}
    metadata: dict[str, Any] = {}

    for item in items:
        if not isinstance(item, Mapping):
            continue
        field_id = item.get("id")
        value = item.get("value")
        if not isinstance(field_id, str) or not field_id or value is None:
            continue
        is_series = isinstance(value, (list, tuple))
        if field_id.endswith(suffix) and is_series:
            series[field_id] = [_safe(v) for v in value]
        elif not field_id.endswith(suffix) and not is_series:
            metadata[field_id] = value

    return series, metadata


def align_quarterly(
    items: Iterable[Mapping[str, Any]],
    reference_date: pd.Timestamp | datetime | date | str | None = None,
    suffix: str = QUARTERLY_SUFFIX,
) -> AlignedSeries | None:
    """Extract quarterly series from provider items and align them."""
    series, metadata = extract_quarterly_series(items, suffix=suffix)
    return align(series, reference_date, QUARTER_MONTHS, metadata=metadata)


# ═══════════════════════════════════════════════════════════════════════════
#  Series helpers
# ═══════════════════════════════════════════════════════════════════════════

def most_recent_value(values: Sequence[float | None]) -> float | None:
    """First usable value, scanning from the most recent period."""
    for v in values:
        f = _safe(v)
        if f is not None:
            return f
    return None


def completeness(values: Sequence[float | None]) -> float:
    """Percentage of periods holding a usable value."""
    if len(values) == 0:
        return 0.0
    usable = sum(1 for v in values if _safe(v) is not None)
    return usable / len(values) * 100
