"""
Webhook reconciliation: verify, persist, de-duplicate and apply gateway callbacks.

Every delivery that carries an order reference is stored before anything
else happens, so failed deliveries stay inspectable. Deliveries for the same
order reference are serialized through a keyed lock; the duplicate check and
the transaction upsert run in one unit of work.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from application.ports.events import EventPublisherPort
from application.ports.locks import KeyedLockPort
from application.ports.signature import SignatureVerifierPort
from core.logging_config import get_logger
from domain.common.exceptions import (
    InvalidWebhookPayloadException,
    OrderReferenceMissingException,
    ReconciliationFailedException,
    SignatureRejectedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.transaction.entity import (
    Transaction,
    TransactionType,
    normalize_status,
    to_decimal,
)
from domain.transaction.events import PaymentReceived
from domain.webhook.entity import DEFAULT_EVENT_TYPE, WebhookDelivery


logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_SIGNATURE_HEADER = "X-Clickpesa-Signature"
DEFAULT_DUPLICATE_WINDOW = timedelta(minutes=5)

ORDER_REFERENCE_KEYS = ("orderReference", "order_reference")
EVENT_TYPE_KEYS = ("event", "eventType", "event_type")


class ReconcileStatus(str, Enum):
    RECONCILED = "success"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class ReconcileOutcome:
    status: ReconcileStatus
    order_reference: str
    delivery_id: Optional[int] = None
    transaction_status: Optional[str] = None


def extract_order_reference(payload: Mapping[str, Any]) -> Optional[str]:
    for key in ORDER_REFERENCE_KEYS:
        value = payload.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def extract_event_type(payload: Mapping[str, Any]) -> str:
    for key in EVENT_TYPE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return DEFAULT_EVENT_TYPE


def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


class WebhookReconciler:
    """Webhook ingestion pipeline.

    ``handle`` returns a ``ReconcileOutcome`` for accepted deliveries and
    raises a ``BusinessException`` subclass for the rejected ones:

    - ``SignatureRejectedException``: nothing persisted
    - ``InvalidWebhookPayloadException`` / ``OrderReferenceMissingException``: nothing persisted
    - ``ReconciliationFailedException``: delivery stored, failure recorded on it
    """

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        verifier: SignatureVerifierPort,
        locks: KeyedLockPort,
        publisher: Optional[EventPublisherPort] = None,
        *,
        secret: Optional[str] = None,
        enforce_signature: bool = False,
        signature_header: str = DEFAULT_SIGNATURE_HEADER,
        duplicate_window: timedelta = DEFAULT_DUPLICATE_WINDOW,
        storage_timeout: Optional[float] = None,
        default_currency: str = "TZS",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._verifier = verifier
        self._locks = locks
        self._publisher = publisher
        self._secret = secret
        self._enforce_signature = enforce_signature
        self._signature_header = signature_header
        self._duplicate_window = duplicate_window
        self._storage_timeout = storage_timeout
        self._default_currency = default_currency
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        if self._storage_timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._storage_timeout)

    def _parse(self, raw_body: bytes) -> dict[str, Any]:
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("webhook_invalid_json", error=str(exc))
            raise InvalidWebhookPayloadException() from exc
        if not isinstance(payload, dict):
            logger.warning("webhook_invalid_payload", payload_type=type(payload).__name__)
            raise InvalidWebhookPayloadException()
        return payload

    async def handle(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        client_ip: Optional[str] = None,
    ) -> ReconcileOutcome:
        signature = _header(headers, self._signature_header)
        check = self._verifier.verify(raw_body, signature, self._secret, self._enforce_signature)
        if not check.accepted:
            raise SignatureRejectedException(check.reason or "Invalid signature")

        payload = self._parse(raw_body)
        order_reference = extract_order_reference(payload)
        if order_reference is None:
            logger.warning("webhook_order_reference_missing")
            raise OrderReferenceMissingException()

        logger.info(
            "webhook_received",
            order_reference=order_reference,
            verified=check.verified,
            status=payload.get("status"),
        )

        async with self._locks.acquire(order_reference):
            delivery = await self._store_delivery(
                order_reference,
                payload,
                headers={
                    "signature": signature,
                    "user_agent": _header(headers, "User-Agent"),
                    "ip": client_ip,
                },
                verified=check.verified,
            )
            try:
                outcome = await self._bounded(self._apply(delivery, payload))
            except Exception as exc:
                error = str(exc) or exc.__class__.__name__
                logger.error(
                    "webhook_processing_failed",
                    order_reference=order_reference,
                    delivery_id=delivery.id,
                    error=error,
                    exc_info=True,
                )
                await self._record_failure(delivery, error)
                raise ReconciliationFailedException(order_reference, error, delivery.id) from exc

        if outcome.status == ReconcileStatus.RECONCILED:
            await self._notify(outcome, payload, delivery.event_type)
        return outcome

    async def _store_delivery(
        self,
        order_reference: str,
        payload: dict[str, Any],
        *,
        headers: dict[str, Optional[str]],
        verified: bool,
    ) -> WebhookDelivery:
        async def _create() -> WebhookDelivery:
            async with self._uow_factory() as uow:
                stored = await uow.webhook_repository.create(
                    WebhookDelivery(
                        id=None,
                        order_reference=order_reference,
                        event_type=extract_event_type(payload),
                        payload=payload,
                        headers=headers,
                        verified=verified,
                        created_at=self._clock(),
                    )
                )
                await uow.commit()
                return stored

        try:
            return await self._bounded(_create())
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.error(
                "webhook_store_failed",
                order_reference=order_reference,
                error=error,
                exc_info=True,
            )
            raise ReconciliationFailedException(order_reference, error) from exc

    async def _apply(self, delivery: WebhookDelivery, payload: dict[str, Any]) -> ReconcileOutcome:
        now = self._clock()
        async with self._uow_factory() as uow:
            duplicate = await uow.webhook_repository.find_recent_processed(
                delivery.order_reference,
                exclude_id=delivery.id,
                since=now - self._duplicate_window,
            )
            if duplicate is not None:
                logger.info(
                    "webhook_duplicate",
                    order_reference=delivery.order_reference,
                    delivery_id=delivery.id,
                    processed_delivery_id=duplicate.id,
                )
                return ReconcileOutcome(
                    status=ReconcileStatus.DUPLICATE,
                    order_reference=delivery.order_reference,
                    delivery_id=delivery.id,
                )

            status = normalize_status(payload.get("status"))
            txn = await uow.transaction_repository.get_by_order_reference(delivery.order_reference)
            if txn is None:
                txn = self._new_transaction(delivery.order_reference, payload)
                txn.apply_gateway_status(status, payload, now)
                txn = await uow.transaction_repository.create(txn)
            else:
                txn.apply_gateway_status(status, payload, now)
                txn = await uow.transaction_repository.update(txn)

            delivery.mark_processed(now)
            await uow.webhook_repository.update(delivery)
            await uow.commit()

        logger.info(
            "webhook_reconciled",
            order_reference=delivery.order_reference,
            delivery_id=delivery.id,
            status=txn.status.value,
        )
        return ReconcileOutcome(
            status=ReconcileStatus.RECONCILED,
            order_reference=delivery.order_reference,
            delivery_id=delivery.id,
            transaction_status=txn.status.value,
        )

    def _new_transaction(self, order_reference: str, payload: Mapping[str, Any]) -> Transaction:
        """Transaction for a callback that arrived before (or without) a local initiation."""
        raw_type = str(payload.get("type") or "").lower()
        txn_type = TransactionType.PAYOUT if raw_type == TransactionType.PAYOUT.value else TransactionType.PAYMENT
        amount = payload.get("collectedAmount", payload.get("amount"))
        currency = payload.get("collectedCurrency") or payload.get("currency") or self._default_currency
        return Transaction(
            id=None,
            order_reference=order_reference,
            type=txn_type,
            channel=str(payload.get("channel") or "unknown"),
            amount=to_decimal(amount),
            currency=str(currency),
            reference=_str_or_none(payload.get("id") or payload.get("paymentReference")),
            channel_provider=_str_or_none(payload.get("channelProvider")),
        )

    async def _record_failure(self, delivery: WebhookDelivery, error: str) -> None:
        async def _update() -> None:
            async with self._uow_factory() as uow:
                current = await uow.webhook_repository.get_by_id(delivery.id)
                target = current or delivery
                target.record_failure(error)
                await uow.webhook_repository.update(target)
                await uow.commit()

        try:
            await self._bounded(_update())
        except Exception as exc:
            logger.error(
                "webhook_failure_record_failed",
                order_reference=delivery.order_reference,
                delivery_id=delivery.id,
                error=str(exc) or exc.__class__.__name__,
            )

    async def _notify(self, outcome: ReconcileOutcome, payload: dict[str, Any], event_type: str) -> None:
        if self._publisher is None:
            return
        event = PaymentReceived(
            order_reference=outcome.order_reference,
            status=outcome.transaction_status,
            event_type=event_type,
            payload=payload,
        )
        try:
            await self._publisher.publish(event)
        except Exception as exc:
            # the delivery is already committed; a subscriber failure must not turn it into a 500
            logger.error(
                "webhook_notification_failed",
                order_reference=outcome.order_reference,
                error=str(exc) or exc.__class__.__name__,
                exc_info=True,
            )


__all__ = [
    "ReconcileOutcome",
    "ReconcileStatus",
    "WebhookReconciler",
    "extract_event_type",
    "extract_order_reference",
]
