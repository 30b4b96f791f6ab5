import asyncio
import logging
import time
from typing import Dict, Iterable, Optional, Tuple

import httpx

from core.clients.price_oracle import PriceOracle
from core.domain.exceptions import PriceUnavailableError

# symbol -> CoinGecko coin id
DEFAULT_COIN_IDS: Dict[str, str] = {
    "ETH": "ethereum",
    "WETH": "ethereum",
    "BTC": "bitcoin",
    "WBTC": "wrapped-bitcoin",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
    "MATIC": "matic-network",
    "WMATIC": "matic-network",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "ARB": "arbitrum",
}


def split_pair(pair: str) -> Tuple[str, str]:
    """'WETH/USDC' (or 'WETH-USDC') -> ('WETH', 'USDC')."""
    raw = (pair or "").strip().upper()
    for sep in ("/", "-", "_"):
        if sep in raw:
            base, _, quote = raw.partition(sep)
            if base and quote:
                return base.strip(), quote.strip()
    raise PriceUnavailableError(pair, "pair must look like BASE/QUOTE")


class CoinGeckoPriceOracle(PriceOracle):
    """
    Spot prices from a CoinGecko-compatible `/simple/price` endpoint.

    Both legs are priced in USD and the pair price is base_usd / quote_usd.
    USD quotes are cached per coin for `cache_ttl_sec`; requests are spaced
    by at least `min_request_interval_sec` to stay inside the free-tier rate
    limit. If a refresh fails, a cached value younger than `max_stale_sec`
    is served instead.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        cache_ttl_sec: float = 30.0,
        min_request_interval_sec: float = 1.0,
        max_stale_sec: float = 300.0,
        timeout_sec: float = 10.0,
        coin_ids: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._base_url = (base_url or "").rstrip("/")
        self._api_key = api_key
        self._ttl = float(cache_ttl_sec)
        self._min_interval = float(min_request_interval_sec)
        self._max_stale = float(max_stale_sec)
        self._coin_ids = {k.upper(): v for k, v in (coin_ids or DEFAULT_COIN_IDS).items()}
        self._client = client or httpx.AsyncClient(timeout=timeout_sec)
        self._logger = logger or logging.getLogger(self.__class__.__name__)

        # coin id -> (usd price, fetched at monotonic seconds)
        self._cache: Dict[str, Tuple[float, float]] = {}
        self._request_lock = asyncio.Lock()
        self._last_request_at = 0.0

    def coin_id(self, symbol: str) -> str:
        coin = self._coin_ids.get(symbol.upper())
        if not coin:
            raise PriceUnavailableError(symbol, "no price feed configured for symbol")
        return coin

    async def get_price(self, pair: str) -> float:
        base, quote = split_pair(pair)
        base_id, quote_id = self.coin_id(base), self.coin_id(quote)
        if base_id == quote_id:
            return 1.0

        quotes = await self._usd_quotes([base_id, quote_id], pair)
        base_usd, quote_usd = quotes[base_id], quotes[quote_id]
        if quote_usd <= 0:
            raise PriceUnavailableError(pair, f"non-positive quote price for {quote}")
        return base_usd / quote_usd

    async def _usd_quotes(self, coin_ids: Iterable[str], pair: str) -> Dict[str, float]:
        wanted = list(dict.fromkeys(coin_ids))
        now = time.monotonic()
        fresh = {c: self._cache[c][0] for c in wanted if c in self._cache and now - self._cache[c][1] < self._ttl}
        missing = [c for c in wanted if c not in fresh]
        if not missing:
            return fresh

        try:
            fetched = await self._fetch(missing)
        except Exception as exc:
            self._logger.warning("Price fetch for %s failed: %s", pair, exc)
            fetched = {}

        out = dict(fresh)
        for coin in missing:
            if coin in fetched:
                out[coin] = fetched[coin]
                continue
            cached = self._cache.get(coin)
            if cached and now - cached[1] < self._max_stale:
                self._logger.warning("Serving stale USD price for %s (age %.0fs)", coin, now - cached[1])
                out[coin] = cached[0]
                continue
            raise PriceUnavailableError(pair, f"no USD price for {coin}")
        return out

    async def _fetch(self, coin_ids: Iterable[str]) -> Dict[str, float]:
        ids = ",".join(coin_ids)
        headers = {"accept": "application/json"}
        if self._api_key:
            headers["x-cg-demo-api-key"] = self._api_key

        async with self._request_lock:
            wait = self._min_interval - (time.monotonic() - self._last_request_at)
            if wait > 0:
                await asyncio.sleep(wait)
            try:
                r = await self._client.get(
                    f"{self._base_url}/simple/price",
                    params={"ids": ids, "vs_currencies": "usd"},
                    headers=headers,
                )
            finally:
                self._last_request_at = time.monotonic()

        if r.status_code != 200:
            raise RuntimeError(f"price API returned {r.status_code}: {r.text[:200]}")

        data = r.json() or {}
        fetched_at = time.monotonic()
        out: Dict[str, float] = {}
        for coin, row in data.items():
            try:
                usd = float((row or {}).get("usd"))
            except (TypeError, ValueError):
                continue
            if usd > 0:
                self._cache[coin] = (usd, fetched_at)
                out[coin] = usd
        return out

    async def close(self) -> None:
        await self._client.aclose()
