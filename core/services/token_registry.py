from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Tuple

from eth_utils import is_address, to_checksum_address

from core.domain.entities.token_entity import TokenEntity
from core.domain.exceptions import StrategyValidationError


class TokenRegistry:
    """
    Resolves token symbols or addresses to (checksum address, symbol, decimals)
    for one network, and converts human amounts to base units.
    """

    def __init__(
        self,
        tokens: Dict[str, Tuple[str, int]],
        aliases: Optional[Dict[str, str]] = None,
    ):
        self._by_symbol: Dict[str, TokenEntity] = {}
        self._by_address: Dict[str, TokenEntity] = {}
        self._aliases = {k.upper(): v.upper() for k, v in (aliases or {}).items()}

        for symbol, (address, decimals) in tokens.items():
            token = TokenEntity(
                address=to_checksum_address(address),
                symbol=symbol.upper(),
                decimals=int(decimals),
            )
            self._by_symbol[token.symbol] = token
            self._by_address[token.address.lower()] = token

    def find(self, symbol_or_address: str) -> Optional[TokenEntity]:
        key = (symbol_or_address or "").strip()
        if not key:
            return None
        if is_address(key):
            return self._by_address.get(key.lower())
        symbol = self._aliases.get(key.upper(), key.upper())
        return self._by_symbol.get(symbol)

    def resolve(self, symbol_or_address: str) -> TokenEntity:
        """
        Known tokens resolve fully. Unknown addresses resolve with decimals=-1,
        so callers can still use base-unit amounts; unknown symbols are rejected.
        """
        token = self.find(symbol_or_address)
        if token:
            return token
        key = (symbol_or_address or "").strip()
        if is_address(key):
            return TokenEntity(address=to_checksum_address(key), symbol="UNKNOWN", decimals=-1)
        raise StrategyValidationError(f"unknown token: {symbol_or_address!r}")

    @staticmethod
    def to_base_units(amount, token: TokenEntity) -> int:
        if token.decimals < 0:
            raise StrategyValidationError(
                f"token {token.address} has unknown decimals; give the amount in base units"
            )
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError) as exc:
            raise StrategyValidationError(f"invalid amount: {amount!r}") from exc
        if not value.is_finite():
            raise StrategyValidationError(f"amount must be a finite number: {amount!r}")
        if value <= 0:
            raise StrategyValidationError(f"amount must be positive: {amount!r}")
        return int(value.scaleb(token.decimals).to_integral_value())

    @staticmethod
    def from_base_units(amount: int, token: TokenEntity) -> Decimal:
        if token.decimals < 0:
            return Decimal(amount)
        return Decimal(amount).scaleb(-token.decimals)
