"""
Application service composing the ClickPesa collections and payouts clients.

The payouts client never authenticates on its own; this service hands it the
collections token. Successful initiations are recorded as transactions so
later callbacks update an existing row.
"""
from __future__ import annotations

from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, Callable, Optional, Protocol

from application.dtos.gateway import GatewayResult
from application.ports.locks import KeyedLockPort
from core.logging_config import get_logger, redact
from domain.common.exceptions import TransactionNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.transaction.entity import (
    Transaction,
    TransactionType,
    normalize_status,
    to_decimal,
)


logger = get_logger(__name__)


class CollectionsGateway(Protocol):
    environment: str
    preview_cache: Any

    async def get_token(self) -> Optional[str]: ...

    async def invalidate_token(self) -> None: ...

    async def preview_ussd_push(self, payload: dict) -> GatewayResult: ...

    async def initiate_ussd_push(self, payload: dict) -> GatewayResult: ...

    async def query_payment_status(self, order_reference: str) -> GatewayResult: ...

    async def preview_card_payment(self, payload: dict) -> GatewayResult: ...

    async def initiate_card_payment(self, payload: dict) -> GatewayResult: ...

    async def aclose(self) -> None: ...


class PayoutsGateway(Protocol):
    def set_token(self, token: Optional[str]) -> None: ...

    async def preview_mobile_money_payout(self, payload: dict) -> GatewayResult: ...

    async def create_mobile_money_payout(self, payload: dict) -> GatewayResult: ...

    async def preview_bank_payout(self, payload: dict) -> GatewayResult: ...

    async def create_bank_payout(self, payload: dict) -> GatewayResult: ...

    async def query_payout_status(self, order_reference: str) -> GatewayResult: ...

    async def aclose(self) -> None: ...


def _first(body: Any) -> dict:
    """Query endpoints return a list; initiations return an object."""
    if isinstance(body, list):
        return body[-1] if body and isinstance(body[-1], dict) else {}
    return body if isinstance(body, dict) else {}


def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class GatewayService:
    def __init__(
        self,
        collections: CollectionsGateway,
        payouts: PayoutsGateway,
        uow_factory: Optional[Callable[..., AbstractUnitOfWork]] = None,
        *,
        locks: Optional[KeyedLockPort] = None,
        default_currency: str = "TZS",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.collections = collections
        self.payouts = payouts
        self._uow_factory = uow_factory
        # same per-order lock instance as WebhookReconciler
        self._locks = locks
        self._default_currency = default_currency
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def authenticate_payouts(self) -> Optional[str]:
        """Forward the collections token into the payouts client explicitly."""
        token = await self.collections.get_token()
        self.payouts.set_token(token)
        return token

    # Collections
    async def preview_ussd_push(self, payload: dict) -> GatewayResult:
        return await self.collections.preview_ussd_push(payload)

    async def initiate_ussd_push(self, payload: dict) -> GatewayResult:
        result = await self.collections.initiate_ussd_push(payload)
        await self._record(TransactionType.PAYMENT, "ussd_push", payload, result)
        return result

    async def preview_card_payment(self, payload: dict) -> GatewayResult:
        return await self.collections.preview_card_payment(payload)

    async def initiate_card_payment(self, payload: dict) -> GatewayResult:
        result = await self.collections.initiate_card_payment(payload)
        await self._record(TransactionType.PAYMENT, "card", payload, result)
        return result

    async def query_payment_status(self, order_reference: str) -> GatewayResult:
        return await self.collections.query_payment_status(order_reference)

    # Payouts
    async def preview_mobile_money_payout(self, payload: dict) -> GatewayResult:
        return await self.payouts.preview_mobile_money_payout(payload)

    async def create_mobile_money_payout(self, payload: dict) -> GatewayResult:
        result = await self.payouts.create_mobile_money_payout(payload)
        await self._record(TransactionType.PAYOUT, "mobile_money", payload, result)
        return result

    async def preview_bank_payout(self, payload: dict) -> GatewayResult:
        return await self.payouts.preview_bank_payout(payload)

    async def create_bank_payout(self, payload: dict) -> GatewayResult:
        result = await self.payouts.create_bank_payout(payload)
        await self._record(TransactionType.PAYOUT, "bank_transfer", payload, result)
        return result

    async def query_payout_status(self, order_reference: str) -> GatewayResult:
        return await self.payouts.query_payout_status(order_reference)

    # Pull-based reconciliation
    async def refresh_payment_status(self, order_reference: str) -> Transaction:
        result = await self.collections.query_payment_status(order_reference)
        return await self._apply_query_result(order_reference, result)

    async def refresh_payout_status(self, order_reference: str) -> Transaction:
        result = await self.payouts.query_payout_status(order_reference)
        return await self._apply_query_result(order_reference, result)

    async def _apply_query_result(self, order_reference: str, result: GatewayResult) -> Transaction:
        if self._uow_factory is None:
            raise RuntimeError("GatewayService was built without a unit of work factory")
        async with self._lock(order_reference), self._uow_factory() as uow:
            txn = await uow.transaction_repository.get_by_order_reference(order_reference)
            if txn is None:
                raise TransactionNotFoundException(order_reference)
            if not result.success:
                logger.warning(
                    "transaction_refresh_failed",
                    order_reference=order_reference,
                    message=result.message,
                )
                return txn
            latest = _first(result.body)
            if latest.get("status"):
                txn.apply_gateway_status(latest["status"], result.body, self._clock())
                txn = await uow.transaction_repository.update(txn)
                logger.info(
                    "transaction_refreshed",
                    order_reference=order_reference,
                    status=txn.status.value,
                )
            await uow.commit()
            return txn

    async def _record(
        self,
        txn_type: TransactionType,
        channel: str,
        payload: dict,
        result: GatewayResult,
    ) -> Optional[Transaction]:
        if self._uow_factory is None or not result.success:
            return None
        order_reference = payload.get("orderReference") or payload.get("order_reference")
        if not order_reference:
            return None

        body = _first(result.body)
        now = self._clock()
        async with self._lock(str(order_reference)), self._uow_factory() as uow:
            txn = await uow.transaction_repository.get_by_order_reference(str(order_reference))
            if txn is None:
                txn = Transaction(
                    id=None,
                    order_reference=str(order_reference),
                    type=txn_type,
                    channel=channel,
                    amount=to_decimal(payload.get("amount", body.get("amount"))),
                    currency=str(payload.get("currency") or body.get("currency") or self._default_currency),
                    status=normalize_status(body.get("status") or "PENDING"),
                    reference=_str_or_none(body.get("id")),
                    description=payload.get("description"),
                    channel_provider=_str_or_none(body.get("channelProvider")),
                    account_details=_account_details(payload),
                    fee=to_decimal(body["fee"]) if body.get("fee") is not None else None,
                    fee_bearer=body.get("payoutFeeBearer") or body.get("feeBearer"),
                    exchanged=bool(body.get("exchanged", False)),
                    exchange_details=body.get("exchange"),
                    request_payload=redact(payload),
                    response_payload=result.body,
                    created_at=now,
                )
                txn = await uow.transaction_repository.create(txn)
            else:
                # status belongs to callbacks and refreshes; only fill missing fields
                txn.reference = txn.reference or _str_or_none(body.get("id"))
                txn.request_payload = txn.request_payload or redact(payload)
                if txn.response_payload is None:
                    txn.response_payload = result.body
                txn = await uow.transaction_repository.update(txn)
            await uow.commit()
        return txn

    def _lock(self, order_reference: str) -> AsyncContextManager[None]:
        if self._locks is None:
            return nullcontext()
        return self._locks.acquire(order_reference)

    async def flush_caches(self) -> int:
        """Drop the cached token and every cached preview; returns the number of previews removed."""
        await self.collections.invalidate_token()
        self.payouts.set_token(None)
        cache = self.collections.preview_cache
        if cache is None:
            return 0
        return await cache.flush()

    async def aclose(self) -> None:
        await self.collections.aclose()
        await self.payouts.aclose()


def _account_details(payload: dict) -> Optional[dict]:
    keys = ("phoneNumber", "accountNumber", "accountName", "bic", "customer")
    details = {k: payload[k] for k in keys if k in payload}
    return details or None


__all__ = ["GatewayService", "CollectionsGateway", "PayoutsGateway"]
