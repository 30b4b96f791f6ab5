import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from adapters.external.notify.telegram_notifier import TelegramNotifier
from core.clients.protocol_client import ProtocolClient
from core.common.utils import now_ms
from core.domain.entities.order_entity import OrderEntity
from core.domain.enums.order_enums import OrderStatus
from core.repositories.order_repository import OrderRepository

from .token_registry import TokenRegistry


class SubmissionResult(BaseModel):
    success: bool
    order_id: Optional[int] = None
    status: OrderStatus
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    gas_price: Optional[int] = None
    error: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        """Broadcast but not yet known to be mined."""
        return self.status == OrderStatus.SUBMITTED


class OrderSubmitterService:
    """
    Sends signed orders to the protocol and records the outcome on the order row.

    Flow: estimate gas -> broadcast (SUBMITTED) -> wait receipt (FILLED | FAILED).
    Failures come back as a SubmissionResult, never as an exception, and never
    as an invented receipt.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        protocol_client: ProtocolClient,
        tokens: TokenRegistry,
        gas_limit_multiplier: float = 1.2,
        logger: Optional[logging.Logger] = None,
        notifier: Optional[TelegramNotifier] = None,
    ):
        self._order_repo = order_repo
        self._protocol = protocol_client
        self._tokens = tokens
        self._gas_multiplier = gas_limit_multiplier
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self._notifier = notifier

    async def _notify_telegram(self, text: str) -> None:
        """
        Sends a Telegram message if configured.
        Notifier errors never break the submission flow.
        """
        if not self._notifier:
            return
        try:
            await self._notifier.send_message(text)
        except Exception as exc:
            self._logger.warning("Failed to send Telegram message: %s", exc)

    async def submit(self, order: OrderEntity, signature: str) -> SubmissionResult:
        try:
            gas_estimate = await self._protocol.estimate_fill_gas(order.order_data, signature)
        except Exception as exc:
            return await self._mark_failed(order, f"gas estimation failed: {exc}")

        gas_limit = int(gas_estimate * self._gas_multiplier)
        try:
            tx_hash = await self._protocol.send_fill(order.order_data, signature, gas_limit)
        except Exception as exc:
            return await self._mark_failed(order, f"broadcast failed: {exc}")

        await self._order_repo.update(
            {"_id": order.id},
            {
                "status": OrderStatus.SUBMITTED.value,
                "tx_hash": tx_hash,
                "updated_at": now_ms(),
            },
        )
        self._logger.info("Order %s submitted tx=%s gas_limit=%s", order.id, tx_hash, gas_limit)

        return await self._await_receipt(order, tx_hash)

    async def reconcile(self, order: OrderEntity) -> SubmissionResult:
        """
        Resolve an order left SUBMITTED by an earlier pass (e.g. receipt wait timed out).
        """
        if not order.tx_hash:
            return SubmissionResult(success=False, order_id=order.id, status=order.status)
        return await self._await_receipt(order, order.tx_hash)

    async def _await_receipt(self, order: OrderEntity, tx_hash: str) -> SubmissionResult:
        try:
            receipt = await self._protocol.wait_for_receipt(tx_hash)
        except Exception as exc:
            # stays SUBMITTED; reconcile() picks it up on a later pass
            self._logger.warning("Receipt for order %s tx=%s not available yet: %s", order.id, tx_hash, exc)
            return SubmissionResult(
                success=False,
                order_id=order.id,
                status=OrderStatus.SUBMITTED,
                tx_hash=tx_hash,
                error=f"receipt unavailable: {exc}",
            )

        if int(receipt.get("status", 0)) != 1:
            return await self._mark_failed(order, "fill transaction reverted", tx_hash=tx_hash, receipt=receipt)

        return await self._mark_filled(order, tx_hash, receipt)

    def _execution_price(self, order: OrderEntity) -> Optional[float]:
        token_in = self._tokens.find(order.token_in)
        token_out = self._tokens.find(order.token_out)
        if not token_in or not token_out or not order.amount_in:
            return None
        amount_in = TokenRegistry.from_base_units(order.amount_in, token_in)
        amount_out = TokenRegistry.from_base_units(order.amount_out, token_out)
        return float(amount_out / amount_in)

    async def _mark_filled(self, order: OrderEntity, tx_hash: str, receipt: Dict[str, Any]) -> SubmissionResult:
        executed_at = now_ms()
        result = SubmissionResult(
            success=True,
            order_id=order.id,
            status=OrderStatus.FILLED,
            tx_hash=tx_hash,
            block_number=receipt.get("block_number"),
            gas_used=receipt.get("gas_used"),
            gas_price=receipt.get("effective_gas_price"),
        )
        fields: Dict[str, Any] = {
            "status": OrderStatus.FILLED.value,
            "tx_hash": tx_hash,
            "block_number": result.block_number,
            "gas_used": result.gas_used,
            "executed_at": executed_at,
            "execution_price": self._execution_price(order),
            "updated_at": executed_at,
        }
        if result.gas_price is not None:
            fields["gas_price"] = str(result.gas_price)
        await self._order_repo.update({"_id": order.id}, fields)

        self._logger.info(
            "Order %s FILLED tx=%s block=%s gas_used=%s",
            order.id, tx_hash, result.block_number, result.gas_used,
        )
        await self._notify_telegram(
            "\n".join(
                [
                    "Order filled",
                    f"• Order: {order.id} (strategy {order.strategy_id})",
                    f"• {order.amount_in} {order.token_in_symbol} -> {order.amount_out} {order.token_out_symbol}",
                    f"• Tx: {tx_hash}",
                ]
            )
        )
        return result

    async def _mark_failed(
        self,
        order: OrderEntity,
        error: str,
        tx_hash: Optional[str] = None,
        receipt: Optional[Dict[str, Any]] = None,
    ) -> SubmissionResult:
        fields: Dict[str, Any] = {
            "status": OrderStatus.FAILED.value,
            "error_message": error,
            "updated_at": now_ms(),
        }
        if tx_hash:
            fields["tx_hash"] = tx_hash
        if receipt:
            fields["block_number"] = receipt.get("block_number")
            fields["gas_used"] = receipt.get("gas_used")
        await self._order_repo.update({"_id": order.id}, fields)

        self._logger.warning("Order %s FAILED: %s", order.id, error)
        await self._notify_telegram(
            "\n".join(
                [
                    "Order failed",
                    f"• Order: {order.id} (strategy {order.strategy_id})",
                    f"• Error: {error}",
                ]
            )
        )
        return SubmissionResult(
            success=False,
            order_id=order.id,
            status=OrderStatus.FAILED,
            tx_hash=tx_hash,
            block_number=fields.get("block_number"),
            gas_used=fields.get("gas_used"),
            error=error,
        )
