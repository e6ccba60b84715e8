"""Configuration management via environment variables.

Reads from .env file (via pydantic-settings) with sensible defaults.
All values can be overridden via environment variables.

Optional:
    REPORTING_CURRENCY   — Currency aggregate fields are converted into (default INR)
    PRIMARY_RATE_URL     — First exchange-rate endpoint ({base}/{target} placeholders)
    SECONDARY_RATE_URL   — Backup exchange-rate endpoint
    FALLBACK_RATE        — Constant used when no live or cached rate exists
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Approximate USD→INR rate, used only when nothing was ever fetched
FALLBACK_USD_TO_INR = 84.5

# Upper bound for one whole rate lookup, connect through last body byte
DEFAULT_RATE_TIMEOUT = 3.0


class Settings(BaseSettings):
    # Currency pair handled by the normalizer
    reporting_currency: str = "INR"
    source_currency: str = "USD"

    # Exchange-rate sources, tried in order
    primary_rate_url: str = "https://api.exchangerate-api.com/v4/latest/{base}"
    secondary_rate_url: str = "https://api.fixer.io/latest?base={base}&symbols={target}"
    rate_user_agent: str = "equity-metrics/1.0"
    rate_timeout_seconds: float = DEFAULT_RATE_TIMEOUT
    rate_cache_ttl_seconds: float = 1800.0

    # Last-resort rate for the source_currency → reporting_currency pair
    fallback_rate: float = FALLBACK_USD_TO_INR

    # Operating-to-net income approximation for the secondary ROIC formula.
    # Heuristic with no stated derivation; pending domain review.
    roic_net_income_multiplier: float = 1.4

    # Face value backfill: per-symbol table with an ultimate default
    default_face_value: float = 1.0
    face_values: dict[str, float] = {}

    # 1 = sequential record processing
    pipeline_max_workers: int = 1

    @field_validator(
        "reporting_currency", "source_currency", "primary_rate_url",
        "secondary_rate_url", "rate_user_agent", mode="before",
    )
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().strip('"').strip("'").strip()
        return v

    @field_validator("reporting_currency", "source_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


_config: Settings | None = None


def get_config() -> Settings:
    """Get or create the shared Settings singleton."""
    global _config
    if _config is None:
        _config = Settings()
    return _config
