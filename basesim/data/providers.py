from __future__ import annotations

import logging
import ssl
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

import httpx

from basesim.errors import PriceUnavailableError

logger = logging.getLogger(__name__)

DEXSCREENER_BASE = "https://api.dexscreener.com/latest/dex"
COINGECKO_BASE = "https://api.coingecko.com/api/v3"
BASE_COINGECKO_ID = "base"
DEFAULT_TTL_S = 30.0
DEFAULT_BASE_USD = Decimal("2500")

_REFERENCE_KEY = "__reference__"


def _parse_price(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        price = Decimal(str(value))
    except ArithmeticError:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


@dataclass(frozen=True)
class PriceQuote:
    price: Decimal
    as_of: datetime


class IPriceSource(ABC):
    """Unit prices in base currency plus the base currency's USD price."""

    @abstractmethod
    def get_unit_price(self, token_address: str) -> PriceQuote:
        """Price of one token in base currency.

        Raises:
            PriceUnavailableError: If no positive price is available
        """
        ...

    @abstractmethod
    def get_reference_price(self) -> PriceQuote:
        """USD price of one unit of base currency."""
        ...

    @abstractmethod
    def invalidate(self, token_address: str) -> None:
        """Drop the cached price for a token."""
        ...


class MarketPriceProvider(IPriceSource):
    """Prices from DexScreener (tokens, USD) and CoinGecko (base currency, USD).

    A token's unit price is ``token_usd / base_usd``. Results are cached for
    ``ttl_s`` seconds; ``invalidate`` forces the next read to refetch.
    """

    def __init__(
        self,
        timeout_s: float = 5.0,
        ttl_s: float = DEFAULT_TTL_S,
        chain_id: str = "base",
        fallback_base_usd: Decimal = DEFAULT_BASE_USD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = httpx.Client(timeout=timeout_s, verify=self._make_ssl_context())
        self._lock = threading.Lock()
        self._ttl_s = ttl_s
        self._chain_id = chain_id
        self._fallback_base_usd = fallback_base_usd
        self._clock = clock
        self._cache: Dict[str, Tuple[float, PriceQuote]] = {}

    def _normalize_address(self, address: str) -> str:
        return address.strip().lower()

    def _cached(self, key: str) -> Optional[PriceQuote]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, quote = entry
        if self._clock() - stored_at > self._ttl_s:
            del self._cache[key]
            return None
        return quote

    def _store(self, key: str, price: Decimal) -> PriceQuote:
        quote = PriceQuote(price=price, as_of=datetime.now(timezone.utc))
        self._cache[key] = (self._clock(), quote)
        return quote

    def fetch_token_usd(self, token_address: str) -> Decimal:
        """USD price of a token from its most liquid pair on the configured chain."""
        addr = self._normalize_address(token_address)
        try:
            with self._lock:
                r = self._client.get(f"{DEXSCREENER_BASE}/tokens/{addr}")
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PriceUnavailableError(f"Price lookup failed for {token_address}: {e}") from e

        pairs = [p for p in (data.get("pairs") or []) if p.get("chainId") == self._chain_id]
        pairs.sort(key=lambda p: float((p.get("liquidity") or {}).get("usd") or 0.0), reverse=True)
        for pair in pairs:
            price = _parse_price(pair.get("priceUsd"))
            if price is not None:
                return price
        raise PriceUnavailableError(f"No {self._chain_id} price for {token_address}")

    def fetch_base_usd(self) -> Decimal:
        """USD price of the base currency, falling back to a fixed price on failure."""
        params = {
            "ids": BASE_COINGECKO_ID,
            "vs_currencies": "usd",
            "include_24hr_change": "true",
        }
        try:
            with self._lock:
                r = self._client.get(f"{COINGECKO_BASE}/simple/price", params=params)
            r.raise_for_status()
            price = _parse_price((r.json().get(BASE_COINGECKO_ID) or {}).get("usd"))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Base price lookup failed, using fallback {self._fallback_base_usd}: {e}")
            return self._fallback_base_usd
        if price is None:
            logger.warning(f"Base price missing, using fallback {self._fallback_base_usd}")
            return self._fallback_base_usd
        return price

    def get_reference_price(self) -> PriceQuote:
        quote = self._cached(_REFERENCE_KEY)
        if quote is None:
            quote = self._store(_REFERENCE_KEY, self.fetch_base_usd())
        return quote

    def get_unit_price(self, token_address: str) -> PriceQuote:
        key = self._normalize_address(token_address)
        quote = self._cached(key)
        if quote is not None:
            return quote
        token_usd = self.fetch_token_usd(token_address)
        base_usd = self.get_reference_price().price
        return self._store(key, token_usd / base_usd)

    def invalidate(self, token_address: str) -> None:
        self._cache.pop(self._normalize_address(token_address), None)

    def invalidate_all(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._client.close()

    def _make_ssl_context(self):
        try:
            import truststore  # type: ignore
            return truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        except ImportError:
            import certifi
            return ssl.create_default_context(cafile=certifi.where())
