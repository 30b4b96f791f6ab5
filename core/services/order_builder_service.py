import logging
import secrets
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from core.clients.protocol_client import ProtocolClient
from core.common.utils import now_ms
from core.domain.entities.order_entity import LimitOrderPayload, OrderEntity
from core.domain.entities.strategy_entity import StrategyEntity
from core.domain.enums.order_enums import SLOT_OCCUPYING_STATUSES, OrderStatus
from core.domain.exceptions import SigningError, StrategyEngineError
from core.repositories.order_repository import DuplicateOrderHashError, OrderRepository

from .token_registry import TokenRegistry
from .trade_resolver import ResolvedTrade, resolve_trade, taking_amount_at_price


def random_salt() -> int:
    return secrets.randbits(256)


class BuiltOrder(BaseModel):
    order: OrderEntity
    signature: str
    # True when an order persisted by an earlier, interrupted pass was picked up again
    resumed: bool = False

    model_config = ConfigDict(frozen=True)


class OrderBuilderService:
    """
    Builds the protocol order for a strategy firing, persists it as PENDING
    and only then asks the signer for a signature.

    Persisting first means a crash between persistence and signing leaves a
    PENDING row for the (strategy, slot) that the next pass resumes instead
    of building a second order.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        protocol_client: ProtocolClient,
        tokens: TokenRegistry,
        default_slippage: float = 0.005,
        logger: Optional[logging.Logger] = None,
        salt_factory: Callable[[], int] = random_salt,
        max_salt_attempts: int = 3,
    ):
        self._order_repo = order_repo
        self._protocol = protocol_client
        self._tokens = tokens
        self._default_slippage = default_slippage
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self._salt_factory = salt_factory
        self._max_salt_attempts = max_salt_attempts

    def resolve(self, strategy: StrategyEntity) -> ResolvedTrade:
        return resolve_trade(strategy.trade, self._tokens)

    async def build(
        self,
        strategy: StrategyEntity,
        slot: int = 0,
        price: Optional[float] = None,
        making_amount: Optional[int] = None,
        taking_amount: Optional[int] = None,
    ) -> Optional[BuiltOrder]:
        """
        Returns None when the slot already has an order on its way on-chain
        or already FILLED; a second one must not be issued.
        """
        existing = await self._order_repo.find_one(
            {
                "strategy_id": strategy.id,
                "slot": slot,
                "status": {"$in": [s.value for s in SLOT_OCCUPYING_STATUSES]},
            }
        )
        if existing:
            if existing.status == OrderStatus.PENDING and not existing.tx_hash:
                self._logger.info(
                    "Resuming PENDING order %s for strategy %s slot %s",
                    existing.id, strategy.id, slot,
                )
                signature = existing.signature or await self._sign(existing)
                return BuiltOrder(order=existing, signature=signature, resumed=True)

            self._logger.warning(
                "Strategy %s slot %s already has order %s (%s); not building another",
                strategy.id, slot, existing.id, existing.status,
            )
            return None

        trade = self.resolve(strategy)
        making = int(making_amount if making_amount is not None else trade.making_amount)
        taking = taking_amount if taking_amount is not None else trade.taking_amount
        if taking is None:
            if price is None:
                raise StrategyEngineError(
                    f"strategy {strategy.id} has no taker amount and no price to derive one"
                )
            slippage = float((strategy.conditions or {}).get("max_slippage", self._default_slippage))
            taking = taking_amount_at_price(making, trade.maker_token, trade.taker_token, price, slippage)
        if making <= 0 or taking <= 0:
            raise StrategyEngineError(
                f"strategy {strategy.id} resolved to an empty order (making={making}, taking={taking})"
            )

        if price is None:
            maker_h = TokenRegistry.from_base_units(making, trade.maker_token)
            taker_h = TokenRegistry.from_base_units(taking, trade.taker_token)
            price = float(taker_h / maker_h)

        order = await self._persist_pending(strategy, trade, slot, making, taking, price)
        signature = await self._sign(order)
        return BuiltOrder(order=order, signature=signature)

    async def _persist_pending(
        self,
        strategy: StrategyEntity,
        trade: ResolvedTrade,
        slot: int,
        making: int,
        taking: int,
        price: float,
    ) -> OrderEntity:
        last_exc: Optional[Exception] = None
        for attempt in range(self._max_salt_attempts):
            payload = LimitOrderPayload(
                salt=self._salt_factory(),
                maker_asset=trade.maker_token.address,
                taker_asset=trade.taker_token.address,
                maker=self._protocol.maker_address,
                receiver=trade.receiver,
                making_amount=making,
                taking_amount=taking,
            )
            order = OrderEntity(
                strategy_id=strategy.id,
                slot=slot,
                order_hash=self._protocol.compute_order_hash(payload),
                order_data=payload,
                maker_address=self._protocol.maker_address,
                owner_address=strategy.owner_address,
                token_in=trade.maker_token.address,
                token_in_symbol=trade.maker_token.symbol,
                token_out=trade.taker_token.address,
                token_out_symbol=trade.taker_token.symbol,
                amount_in=making,
                amount_out=taking,
                price_at_creation=float(price),
                status=OrderStatus.PENDING,
                trigger_conditions=dict(strategy.conditions) or None,
            )
            try:
                stored = await self._order_repo.create(order)
            except DuplicateOrderHashError as exc:
                last_exc = exc
                self._logger.warning(
                    "Order hash collision for strategy %s (attempt %s); drawing a new salt",
                    strategy.id, attempt + 1,
                )
                continue

            self._logger.info(
                "Created PENDING order %s hash=%s strategy=%s slot=%s %s %s -> %s %s",
                stored.id, stored.order_hash, strategy.id, slot,
                making, trade.maker_token.symbol, taking, trade.taker_token.symbol,
            )
            return stored

        raise StrategyEngineError(
            f"could not persist a unique order for strategy {strategy.id}: {last_exc}"
        )

    async def _sign(self, order: OrderEntity) -> str:
        try:
            signature = await self._protocol.sign(order.order_data)
        except Exception as exc:
            raise SigningError(f"signing order {order.id} failed: {exc}") from exc

        await self._order_repo.update({"_id": order.id}, {"signature": signature, "updated_at": now_ms()})
        return signature
