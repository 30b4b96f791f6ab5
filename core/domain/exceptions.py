class StrategyEngineError(Exception):
    """Base class for errors raised by the strategy execution core."""


class StrategyValidationError(StrategyEngineError):
    """Malformed strategy or order input; rejected before it reaches the registry."""


class StrategyNotFoundError(StrategyEngineError):
    pass


class PriceUnavailableError(StrategyEngineError):
    """The price oracle has neither a fresh nor a stale price for the pair."""

    def __init__(self, pair: str, reason: str = ""):
        self.pair = pair
        self.reason = reason
        super().__init__(f"price unavailable for {pair}: {reason}" if reason else f"price unavailable for {pair}")


class SigningError(StrategyEngineError):
    """The signer rejected or failed to sign an order."""


class SubmissionError(StrategyEngineError):
    """The chain rejected the fill transaction or its gas estimation reverted."""
