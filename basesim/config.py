"""Runtime configuration read from environment variables."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from basesim.data.providers import DEFAULT_BASE_USD, DEFAULT_TTL_S, MarketPriceProvider
from basesim.errors import ConfigurationError
from basesim.storage import HostedLedgerStore, ILedgerStore, JsonFileStorage, LocalLedgerStore
from basesim.trading.models import STARTING_BALANCE
from basesim.util.env import env_decimal, env_float, env_path, env_str

BACKEND_LOCAL = "local"
BACKEND_HOSTED = "hosted"


@dataclass
class Settings:
    """Application settings.

    Attributes:
        data_dir: Directory for local ledger documents
        backend: "local" or "hosted"
        supabase_url: Project URL for the hosted backend
        supabase_key: API key for the hosted backend
        price_ttl_s: Price cache lifetime in seconds
        http_timeout_s: Timeout for outbound HTTP calls
        fallback_base_usd: Base currency USD price used when the lookup fails
        starting_balance: Balance seeded into a new ledger
        summary_url: Endpoint of the PnL summary function (optional)
        log_level: Root log level name
    """
    data_dir: Path = Path.home() / ".basesim"
    backend: str = BACKEND_LOCAL
    supabase_url: str = ""
    supabase_key: str = ""
    price_ttl_s: float = DEFAULT_TTL_S
    http_timeout_s: float = 5.0
    fallback_base_usd: Decimal = DEFAULT_BASE_USD
    starting_balance: Decimal = STARTING_BALANCE
    summary_url: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            data_dir=env_path("BASESIM_DATA_DIR", defaults.data_dir),
            backend=env_str("BASESIM_BACKEND", defaults.backend).lower(),
            supabase_url=env_str("BASESIM_SUPABASE_URL"),
            supabase_key=env_str("BASESIM_SUPABASE_KEY"),
            price_ttl_s=env_float("BASESIM_PRICE_TTL", defaults.price_ttl_s),
            http_timeout_s=env_float("BASESIM_HTTP_TIMEOUT", defaults.http_timeout_s),
            fallback_base_usd=env_decimal("BASESIM_FALLBACK_BASE_USD", defaults.fallback_base_usd),
            starting_balance=env_decimal("BASESIM_STARTING_BALANCE", defaults.starting_balance),
            summary_url=env_str("BASESIM_SUMMARY_URL"),
            log_level=env_str("BASESIM_LOG_LEVEL", defaults.log_level),
        )


def build_store(settings: Settings) -> ILedgerStore:
    """Create the ledger store selected by ``settings.backend``.

    Raises:
        ConfigurationError: For an unknown backend or a hosted backend without URL/key
    """
    if settings.backend == BACKEND_LOCAL:
        return LocalLedgerStore(
            JsonFileStorage(settings.data_dir),
            starting_balance=settings.starting_balance,
        )
    if settings.backend == BACKEND_HOSTED:
        if not settings.supabase_url or not settings.supabase_key:
            raise ConfigurationError("Hosted backend needs BASESIM_SUPABASE_URL and BASESIM_SUPABASE_KEY")
        return HostedLedgerStore(
            settings.supabase_url,
            settings.supabase_key,
            timeout_s=settings.http_timeout_s,
            starting_balance=settings.starting_balance,
        )
    raise ConfigurationError(f"Unknown ledger backend: {settings.backend!r}")


def build_price_source(settings: Settings) -> MarketPriceProvider:
    return MarketPriceProvider(
        timeout_s=settings.http_timeout_s,
        ttl_s=settings.price_ttl_s,
        fallback_base_usd=settings.fallback_base_usd,
    )
