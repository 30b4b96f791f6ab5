import httpx
import pytest

from adapters.external.price.coingecko_price_oracle import CoinGeckoPriceOracle, split_pair
from core.domain.exceptions import PriceUnavailableError

USD = {"ethereum": 3000.0, "usd-coin": 1.0, "wrapped-bitcoin": 60000.0}


class PriceApi:
    def __init__(self):
        self.requests = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(500, text="upstream down")
        ids = request.url.params["ids"].split(",")
        return httpx.Response(200, json={c: {"usd": USD[c]} for c in ids if c in USD})


def _oracle(api: PriceApi, **kwargs) -> CoinGeckoPriceOracle:
    kwargs.setdefault("min_request_interval_sec", 0)
    return CoinGeckoPriceOracle(
        base_url="https://prices.test/api/v3",
        client=httpx.AsyncClient(transport=httpx.MockTransport(api.handler)),
        **kwargs,
    )


@pytest.mark.parametrize("pair", ["ETH/USDC", "eth-usdc", "ETH_USDC"])
def test_split_pair(pair) -> None:
    assert split_pair(pair) == ("ETH", "USDC")


def test_split_pair_rejects_garbage() -> None:
    with pytest.raises(PriceUnavailableError):
        split_pair("ETHUSDC")


@pytest.mark.asyncio
async def test_pair_price_is_ratio_of_usd_quotes() -> None:
    api = PriceApi()
    oracle = _oracle(api)
    assert await oracle.get_price("WBTC/WETH") == pytest.approx(20.0)
    assert await oracle.get_price("ETH/USDC") == pytest.approx(3000.0)
    assert api.requests[0].url.params["vs_currencies"] == "usd"


@pytest.mark.asyncio
async def test_fresh_quotes_come_from_cache() -> None:
    api = PriceApi()
    oracle = _oracle(api, cache_ttl_sec=60)
    await oracle.get_price("ETH/USDC")
    await oracle.get_price("WETH/USDC")
    assert len(api.requests) == 1


@pytest.mark.asyncio
async def test_stale_quote_served_when_api_fails() -> None:
    api = PriceApi()
    oracle = _oracle(api, cache_ttl_sec=0, max_stale_sec=300)
    assert await oracle.get_price("ETH/USDC") == pytest.approx(3000.0)

    api.fail = True
    assert await oracle.get_price("ETH/USDC") == pytest.approx(3000.0)
    assert len(api.requests) == 2


@pytest.mark.asyncio
async def test_no_quote_and_failing_api_raises() -> None:
    api = PriceApi()
    api.fail = True
    oracle = _oracle(api)
    with pytest.raises(PriceUnavailableError):
        await oracle.get_price("ETH/USDC")


@pytest.mark.asyncio
async def test_unknown_symbol_raises_without_a_request() -> None:
    api = PriceApi()
    oracle = _oracle(api)
    with pytest.raises(PriceUnavailableError):
        await oracle.get_price("PEPE/USDC")
    assert api.requests == []


@pytest.mark.asyncio
async def test_same_asset_is_parity() -> None:
    api = PriceApi()
    assert await _oracle(api).get_price("WETH/ETH") == 1.0
    assert api.requests == []


@pytest.mark.asyncio
async def test_api_key_header() -> None:
    api = PriceApi()
    oracle = _oracle(api, api_key="secret")
    await oracle.get_price("ETH/USDC")
    assert api.requests[0].headers["x-cg-demo-api-key"] == "secret"
