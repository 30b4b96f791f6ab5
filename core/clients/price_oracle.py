from abc import ABC, abstractmethod


class PriceOracle(ABC):
    """
    Source of current prices for trading pairs such as "ETH/USDC"
    (price of one unit of the base asset in the quote asset).
    """

    @abstractmethod
    async def get_price(self, pair: str) -> float:
        """
        Raises PriceUnavailableError when no fresh or cached price exists.
        """
        raise NotImplementedError
