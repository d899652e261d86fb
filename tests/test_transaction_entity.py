from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.transaction.entity import (
    Transaction,
    TransactionStatus,
    TransactionType,
    normalize_status,
    to_decimal,
)
from domain.webhook.entity import DEFAULT_EVENT_TYPE, WebhookDelivery


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("SUCCESS", TransactionStatus.SUCCESSFUL),
        ("SETTLED", TransactionStatus.SUCCESSFUL),
        ("successful", TransactionStatus.SUCCESSFUL),
        ("PROCESSING", TransactionStatus.PROCESSING),
        ("PENDING", TransactionStatus.PENDING),
        ("FAILED", TransactionStatus.FAILED),
        ("AUTHORIZED", TransactionStatus.AUTHORIZED),
        ("REVERSED", TransactionStatus.REVERSED),
        (" settled ", TransactionStatus.SUCCESSFUL),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_normalize_status_is_idempotent():
    for status in TransactionStatus:
        assert normalize_status(normalize_status(status.value)) == status


@pytest.mark.parametrize("raw", [None, "", "UNKNOWN", 3])
def test_normalize_status_rejects_unknown(raw):
    with pytest.raises(DomainValidationException):
        normalize_status(raw)


def test_to_decimal_quantizes():
    assert to_decimal("1000") == Decimal("1000.00")
    assert to_decimal("12.5") == Decimal("12.50")
    assert to_decimal(None) == Decimal("0")
    with pytest.raises(DomainValidationException):
        to_decimal("abc")


def _txn(**overrides):
    params = dict(
        id=None,
        order_reference="ORD-1",
        type=TransactionType.PAYMENT,
        channel="ussd_push",
        amount=Decimal("1000"),
        currency="tzs",
    )
    params.update(overrides)
    return Transaction(**params)


def test_transaction_defaults_and_normalization():
    txn = _txn(status="SETTLED")
    assert txn.currency == "TZS"
    assert txn.status == TransactionStatus.SUCCESSFUL
    assert txn.is_successful() and txn.is_payment()


@pytest.mark.parametrize(
    "overrides",
    [{"order_reference": " "}, {"amount": Decimal("-1")}, {"currency": "TZSH"}],
)
def test_transaction_validation(overrides):
    with pytest.raises(DomainValidationException):
        _txn(**overrides)


def test_apply_gateway_status_overwrites():
    txn = _txn()
    at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    txn.apply_gateway_status("FAILED", {"status": "FAILED"}, at)
    assert txn.is_failed()
    assert txn.response_payload == {"status": "FAILED"}
    assert txn.processed_at == at


def test_payout_amount_helpers():
    txn = _txn(
        type="payout",
        fee=Decimal("25"),
        exchanged=True,
        exchange_details={"rate": "2500.5"},
    )
    assert txn.is_payout()
    assert txn.total_amount() == Decimal("1025.00")
    assert txn.exchange_rate() == Decimal("2500.5")


def test_webhook_delivery_lifecycle():
    delivery = WebhookDelivery(id=1, order_reference="ORD-1", payload={}, event_type="")
    assert delivery.event_type == DEFAULT_EVENT_TYPE
    assert not delivery.is_processed()

    delivery.record_failure("boom")
    delivery.record_failure("boom again")
    assert delivery.retry_count == 2
    assert delivery.processing_error == "boom again"

    delivery.mark_processed()
    assert delivery.is_processed()
    assert delivery.processing_error is None
