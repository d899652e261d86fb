import asyncio
import json
from datetime import timedelta
from decimal import Decimal

import pytest

from application.services.webhook_reconciler import (
    ReconcileStatus,
    WebhookReconciler,
    extract_event_type,
    extract_order_reference,
)
from domain.common.exceptions import (
    InvalidWebhookPayloadException,
    OrderReferenceMissingException,
    ReconciliationFailedException,
    SignatureRejectedException,
)
from domain.transaction.entity import Transaction, TransactionStatus, TransactionType
from domain.transaction.events import PaymentReceived
from infrastructure.events import InMemoryEventDispatcher
from infrastructure.external.clickpesa.signature import SignatureVerifier, compute_signature
from infrastructure.locks import InProcessKeyedLock
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


SECRET = "test-api-key"


def body(**fields) -> bytes:
    payload = {"orderReference": "ORD-1", "status": "SUCCESS", "collectedAmount": "1000", "currency": "TZS"}
    payload.update(fields)
    return json.dumps(payload).encode()


def make_reconciler(uow_factory, clock=None, **kwargs):
    params = dict(
        uow_factory=uow_factory,
        verifier=SignatureVerifier(),
        locks=InProcessKeyedLock(),
        secret=SECRET,
        clock=clock,
    )
    params.update(kwargs)
    return WebhookReconciler(**params)


async def deliveries(uow_factory, order_reference="ORD-1"):
    async with uow_factory(readonly=True) as uow:
        return await uow.webhook_repository.list_by_order_reference(order_reference)


async def transaction(uow_factory, order_reference="ORD-1"):
    async with uow_factory(readonly=True) as uow:
        return await uow.transaction_repository.get_by_order_reference(order_reference)


def test_payload_field_extraction():
    assert extract_order_reference({"order_reference": " ORD-9 "}) == "ORD-9"
    assert extract_order_reference({"orderReference": ""}) is None
    assert extract_event_type({"eventType": "PAYMENT RECEIVED"}) == "PAYMENT RECEIVED"
    assert extract_event_type({}) == "callback"


@pytest.mark.asyncio
async def test_first_delivery_creates_transaction(uow_factory, clock):
    reconciler = make_reconciler(uow_factory, clock)

    outcome = await reconciler.handle(body(channel="TIGO-PESA"), {"User-Agent": "ClickPesa"}, client_ip="10.0.0.1")

    assert outcome.status == ReconcileStatus.RECONCILED
    assert outcome.transaction_status == "successful"
    txn = await transaction(uow_factory)
    assert txn.status == TransactionStatus.SUCCESSFUL
    assert txn.amount == Decimal("1000.00")
    assert txn.channel == "TIGO-PESA"
    assert txn.processed_at == clock.now
    [delivery] = await deliveries(uow_factory)
    assert delivery.is_processed()
    assert delivery.verified is False
    assert delivery.headers == {"signature": None, "user_agent": "ClickPesa", "ip": "10.0.0.1"}


@pytest.mark.asyncio
async def test_existing_transaction_is_updated(uow_factory, clock):
    async with uow_factory() as uow:
        await uow.transaction_repository.create(
            Transaction(
                id=None,
                order_reference="ORD-1",
                type=TransactionType.PAYOUT,
                channel="mobile_money",
                amount=Decimal("500"),
                currency="TZS",
                status=TransactionStatus.AUTHORIZED,
            )
        )

    await make_reconciler(uow_factory, clock).handle(body(status="FAILED"), {})

    txn = await transaction(uow_factory)
    assert txn.status == TransactionStatus.FAILED
    assert txn.type == TransactionType.PAYOUT
    assert txn.amount == Decimal("500.00")
    assert txn.response_payload["status"] == "FAILED"


@pytest.mark.asyncio
async def test_duplicate_within_window_leaves_transaction_untouched(uow_factory, clock):
    reconciler = make_reconciler(uow_factory, clock)
    await reconciler.handle(body(status="SUCCESS"), {})

    clock.advance(minutes=1)
    outcome = await reconciler.handle(body(status="FAILED"), {})

    assert outcome.status == ReconcileStatus.DUPLICATE
    txn = await transaction(uow_factory)
    assert txn.status == TransactionStatus.SUCCESSFUL
    stored = await deliveries(uow_factory)
    assert len(stored) == 2
    assert stored[1].processed_at is None
    assert stored[1].processing_error is None


@pytest.mark.asyncio
async def test_last_write_wins_after_window(uow_factory, clock):
    reconciler = make_reconciler(uow_factory, clock)
    await reconciler.handle(body(status="SUCCESS"), {})

    clock.advance(minutes=5, seconds=1)
    outcome = await reconciler.handle(body(status="REVERSED"), {})

    assert outcome.status == ReconcileStatus.RECONCILED
    txn = await transaction(uow_factory)
    assert txn.status == TransactionStatus.REVERSED


@pytest.mark.asyncio
async def test_concurrent_duplicates_apply_once(uow_factory):
    reconciler = make_reconciler(uow_factory)

    outcomes = await asyncio.gather(
        reconciler.handle(body(), {}),
        reconciler.handle(body(), {}),
        reconciler.handle(body(), {}),
    )

    statuses = sorted(o.status.value for o in outcomes)
    assert statuses == ["duplicate", "duplicate", "success"]
    stored = await deliveries(uow_factory)
    assert len(stored) == 3
    assert sum(1 for d in stored if d.is_processed()) == 1


@pytest.mark.asyncio
async def test_missing_order_reference_persists_nothing(uow_factory):
    reconciler = make_reconciler(uow_factory)

    with pytest.raises(OrderReferenceMissingException) as exc_info:
        await reconciler.handle(json.dumps({"status": "SUCCESS"}).encode(), {})

    assert exc_info.value.message == "Order reference required"
    async with uow_factory(readonly=True) as uow:
        assert await uow.webhook_repository.list_unprocessed() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [b"not json", b"[1, 2]", b"\xff\xfe"])
async def test_invalid_payload_is_rejected(uow_factory, raw):
    with pytest.raises(InvalidWebhookPayloadException) as exc_info:
        await make_reconciler(uow_factory).handle(raw, {})
    assert exc_info.value.message == "Invalid payload"


@pytest.mark.asyncio
async def test_enforced_signature(uow_factory):
    reconciler = make_reconciler(uow_factory, enforce_signature=True)
    raw = body()

    with pytest.raises(SignatureRejectedException) as missing:
        await reconciler.handle(raw, {})
    assert missing.value.reason == "Signature required"

    with pytest.raises(SignatureRejectedException) as invalid:
        await reconciler.handle(raw, {"X-Clickpesa-Signature": "0" * 64})
    assert invalid.value.reason == "Invalid signature"
    assert await deliveries(uow_factory) == []

    outcome = await reconciler.handle(raw, {"x-clickpesa-signature": compute_signature(raw, SECRET)})
    assert outcome.status == ReconcileStatus.RECONCILED
    [delivery] = await deliveries(uow_factory)
    assert delivery.verified is True


@pytest.mark.asyncio
async def test_unknown_status_records_failure(uow_factory, clock):
    reconciler = make_reconciler(uow_factory, clock)

    with pytest.raises(ReconciliationFailedException) as exc_info:
        await reconciler.handle(body(status="EXPLODED"), {})

    assert exc_info.value.message == "Processing failed"
    assert await transaction(uow_factory) is None
    [delivery] = await deliveries(uow_factory)
    assert delivery.processed_at is None
    assert delivery.retry_count == 1
    assert "EXPLODED" in delivery.processing_error

    # a later valid delivery is not treated as a duplicate of the failed one
    clock.advance(seconds=10)
    outcome = await reconciler.handle(body(status="SUCCESS"), {})
    assert outcome.status == ReconcileStatus.RECONCILED


class SlowUnitOfWork(SQLAlchemyUnitOfWork):
    async def __aenter__(self):
        await asyncio.sleep(1)
        return await super().__aenter__()


@pytest.mark.asyncio
async def test_storage_timeout_is_processing_failure(session_factory):
    calls = []

    def factory(**kwargs):
        calls.append(kwargs)
        # second unit of work applies the delivery
        cls = SlowUnitOfWork if len(calls) == 2 else SQLAlchemyUnitOfWork
        return cls(session_factory=session_factory, **kwargs)

    reconciler = make_reconciler(factory, storage_timeout=0.05)

    with pytest.raises(ReconciliationFailedException):
        await reconciler.handle(body(), {})

    async with SQLAlchemyUnitOfWork(session_factory=session_factory, readonly=True) as uow:
        [delivery] = await uow.webhook_repository.list_by_order_reference("ORD-1")
        assert delivery.processing_error == "TimeoutError"
        assert delivery.retry_count == 1
        assert await uow.transaction_repository.get_by_order_reference("ORD-1") is None


@pytest.mark.asyncio
async def test_reconciled_delivery_is_published(uow_factory):
    dispatcher = InMemoryEventDispatcher()
    received = []

    async def handler(event):
        received.append(event)

    await dispatcher.subscribe(handler)
    reconciler = make_reconciler(uow_factory, publisher=dispatcher)

    await reconciler.handle(body(event="PAYMENT RECEIVED"), {})

    [event] = received
    assert isinstance(event, PaymentReceived)
    assert event.order_reference == "ORD-1"
    assert event.status == "successful"
    assert event.event_type == "PAYMENT RECEIVED"


@pytest.mark.asyncio
async def test_subscriber_failure_does_not_fail_delivery(uow_factory):
    dispatcher = InMemoryEventDispatcher()

    async def broken(event):
        raise RuntimeError("subscriber down")

    await dispatcher.subscribe(broken)
    reconciler = make_reconciler(uow_factory, publisher=dispatcher)

    outcome = await reconciler.handle(body(), {})

    assert outcome.status == ReconcileStatus.RECONCILED
    assert (await transaction(uow_factory)).is_successful()


@pytest.mark.asyncio
async def test_duplicate_window_is_configurable(uow_factory, clock):
    reconciler = make_reconciler(uow_factory, clock, duplicate_window=timedelta(seconds=30))
    await reconciler.handle(body(), {})

    clock.advance(seconds=31)
    outcome = await reconciler.handle(body(status="FAILED"), {})

    assert outcome.status == ReconcileStatus.RECONCILED
