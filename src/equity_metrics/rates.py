"""Exchange rate resolution with cache, two live sources and fallbacks.

Resolution order for a currency pair:
  1. Fresh snapshot in the RateCache
  2. Primary rate source   (3 s timeout)
  3. Secondary rate source (3 s timeout)
  4. Stale snapshot in the RateCache (TTL ignored)
  5. Hard-coded fallback constant

Source failures (HTTP errors, timeouts, malformed JSON, missing or
non-positive rates) are logged and never reach the caller.  Every call
returns a positive, finite rate.

The timeout bounds a whole lookup.  requests applies its timeout to the
connect and to each socket read separately, so the body is streamed and
abandoned once the overall deadline passes; a server trickling bytes
cannot hold a lookup open past it.

Sources are expected to answer a GET with a JSON body of the form
``{"rates": {"<TARGET>": <number>, ...}}``.
"""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Any, Callable, NamedTuple

import requests

from equity_metrics.config import DEFAULT_RATE_TIMEOUT, FALLBACK_USD_TO_INR, Settings, get_config
from equity_metrics.models import ExchangeRateSnapshot, RateOrigin, RateQuote
from equity_metrics.rate_cache import DEFAULT_TTL, RateCache

log = logging.getLogger(__name__)

_CHUNK_SIZE = 4096


class RateSource(NamedTuple):
    name: str
    url_template: str       # {base} and {target} are substituted

    def url(self, base: str, target: str) -> str:
        return self.url_template.format(base=base, target=target)


def _valid_rate(v: Any) -> float | None:
    """Accept only real, finite, positive JSON numbers."""
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    f = float(v)
    if math.isnan(f) or math.isinf(f) or f <= 0:
        return None
    return f


class RateProvider:
    """Resolves conversion rates; never raises for network problems."""

    def __init__(
        self,
        cache: RateCache,
        sources: list[RateSource],
        *,
        fallback_rate: float = FALLBACK_USD_TO_INR,
        timeout: float = DEFAULT_RATE_TIMEOUT,
        user_agent: str = "equity-metrics/1.0",
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if _valid_rate(fallback_rate) is None:
            raise ValueError(f"fallback_rate must be a positive number, got {fallback_rate!r}")
        self.cache = cache
        self.sources = list(sources)
        self.fallback_rate = float(fallback_rate)
        self.timeout = timeout
        self.headers = {
            "Accept": "application/json",
            "User-Agent": user_agent,
        }
        self._session = session
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: RateCache | None = None,
        session: requests.Session | None = None,
    ) -> RateProvider:
        return cls(
            cache if cache is not None else RateCache(ttl_seconds=settings.rate_cache_ttl_seconds),
            [
                RateSource("primary", settings.primary_rate_url),
                RateSource("secondary", settings.secondary_rate_url),
            ],
            fallback_rate=settings.fallback_rate,
            timeout=settings.rate_timeout_seconds,
            user_agent=settings.rate_user_agent,
            session=session,
        )

    @property
    def session(self) -> requests.Session:
        """Lazy-initialize HTTP session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    # ── Live lookup ──────────────────────────────────────────────────

    def _read_body(self, resp: requests.Response, deadline: float) -> bytes:
        chunks: list[bytes] = []
        for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
            if self.clock() > deadline:
                raise requests.exceptions.Timeout(f"response body not complete within {self.timeout:.1f}s")
            chunks.append(chunk)
        return b"".join(chunks)

    def _fetch(self, source: RateSource, base: str, target: str) -> float | None:
        """Query one rate source.  Returns None on any kind of failure."""
        url = source.url(base, target)
        deadline = self.clock() + self.timeout
        try:
            resp = self.session.get(url, headers=self.headers, timeout=self.timeout, stream=True)
            try:
                resp.raise_for_status()
                body = self._read_body(resp, deadline)
            finally:
                resp.close()
            data = json.loads(body)
        except requests.exceptions.Timeout:
            log.warning("Rate source %s timed out after %.1fs", source.name, self.timeout)
            return None
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else 0
            log.warning("Rate source %s failed (HTTP %d)", source.name, status)
            return None
        except Exception as exc:
            log.warning("Rate source %s failed: %s", source.name, exc)
            return None

        rates = data.get("rates") if isinstance(data, dict) else None
        rate = _valid_rate(rates.get(target)) if isinstance(rates, dict) else None
        if rate is None:
            log.warning("Rate source %s returned no usable %s rate", source.name, target)
        return rate

    # ── Resolution ───────────────────────────────────────────────────

    def _cached(self, base: str, target: str, allow_stale: bool) -> ExchangeRateSnapshot | None:
        snapshot = self.cache.get(allow_stale=allow_stale)
        if snapshot is None or (snapshot.source, snapshot.target) != (base, target):
            return None
        return snapshot

    def resolve_quote(self, source_currency: str, target_currency: str) -> RateQuote:
        """Resolve a rate and report which fallback level produced it."""
        base = source_currency.strip().upper()
        target = target_currency.strip().upper()
        if base == target:
            return RateQuote(rate=1.0, origin=RateOrigin.IDENTITY)

        fresh = self._cached(base, target, allow_stale=False)
        if fresh is not None:
            return RateQuote(rate=fresh.rate, origin=RateOrigin.CACHED)

        for source in self.sources:
            rate = self._fetch(source, base, target)
            if rate is None:
                continue
            self.cache.put(ExchangeRateSnapshot(
                source=base, target=target, rate=rate, observed_at=self.cache.clock(),
            ))
            log.info(
                "Fetched %s→%s rate %.4f from %s (cached for %ds)",
                base, target, rate, source.name, self.cache.ttl_seconds,
            )
            return RateQuote(rate=rate, origin=RateOrigin.LIVE, provider=source.name)

        stale = self._cached(base, target, allow_stale=True)
        if stale is not None:
            log.warning("All rate sources failed, using stale %s→%s rate %.4f", base, target, stale.rate)
            return RateQuote(rate=stale.rate, origin=RateOrigin.STALE)

        log.warning(
            "All rate sources failed and nothing cached, using fallback %s→%s rate %.4f",
            base, target, self.fallback_rate,
        )
        return RateQuote(rate=self.fallback_rate, origin=RateOrigin.FALLBACK)

    def resolve_rate(self, source_currency: str, target_currency: str) -> float:
        """Target currency units per one source currency unit.  Always > 0."""
        return self.resolve_quote(source_currency, target_currency).rate


_cache: RateCache | None = None
_provider: RateProvider | None = None


def get_rate_cache(ttl_seconds: float = DEFAULT_TTL) -> RateCache:
    """Get or create the process-wide RateCache.

    ``ttl_seconds`` only applies when the cache is first created.
    """
    global _cache
    if _cache is None:
        _cache = RateCache(ttl_seconds=ttl_seconds)
    return _cache


def get_rate_provider() -> RateProvider:
    """Get or create a RateProvider wired from the shared Settings.

    Components accept a provider explicitly; this is only for callers
    that want one process-wide instance.
    """
    global _provider
    if _provider is None:
        settings = get_config()
        _provider = RateProvider.from_settings(settings, cache=get_rate_cache(settings.rate_cache_ttl_seconds))
    return _provider
