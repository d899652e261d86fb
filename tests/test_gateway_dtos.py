from decimal import Decimal

from application.dtos.gateway import (
    CardPaymentLink,
    GatewayResult,
    PaymentResponse,
    PayoutResponse,
    PreviewResponse,
)


def test_preview_helpers():
    preview = PreviewResponse.model_validate({
        "activeMethods": [{"name": "M-PESA", "status": "AVAILABLE"}, {"name": "TIGO-PESA"}],
        "amount": "1000",
        "fee": "25",
        "balance": "5000",
    })

    assert preview.has_available_methods()
    assert preview.preferred_method() == {"name": "M-PESA", "status": "AVAILABLE"}
    assert len(preview.available_methods()) == 2
    assert preview.net_amount() == Decimal("975")
    assert preview.fee_percentage() == Decimal("2.5")
    assert preview.has_sufficient_balance()
    assert preview.remaining_balance() == Decimal("4000")


def test_empty_preview_is_safe():
    preview = PreviewResponse.model_validate({})

    assert preview.available_methods() == []
    assert not preview.has_available_methods()
    assert preview.preferred_method() is None
    assert preview.fee_percentage() == Decimal("0")
    assert preview.net_amount() == Decimal("0")


def test_preview_insufficient_balance():
    preview = PreviewResponse.model_validate({"amount": "1000", "balance": "400"})

    assert not preview.has_sufficient_balance()
    assert preview.remaining_balance() == Decimal("-600")


def test_payment_status_helpers():
    settled = PaymentResponse.model_validate({"status": "SETTLED", "orderReference": "ORD-1"})
    pending = PaymentResponse.model_validate({"status": "PENDING"})
    failed = PaymentResponse.model_validate({"status": "FAILED"})

    assert settled.is_successful() and settled.order_reference == "ORD-1"
    assert pending.is_processing() and not pending.is_successful()
    assert failed.is_failed()


def test_payout_helpers_and_extra_fields_kept():
    payout = PayoutResponse.model_validate({
        "status": "AUTHORIZED",
        "amount": "10000",
        "fee": "150",
        "exchanged": True,
        "exchange": {"rate": 2500.5, "sourceCurrency": "USD"},
        "notes": "kept",
    })

    assert payout.is_authorized()
    assert not payout.is_successful() and not payout.is_reversed()
    assert payout.total_cost() == Decimal("10000")
    assert payout.fee_amount() == Decimal("150")
    assert payout.payout_amount() == Decimal("9850")
    assert payout.has_exchange()
    assert payout.exchange_rate() == Decimal("2500.5")
    assert payout.model_extra == {"notes": "kept"}


def test_payout_without_exchange():
    payout = PayoutResponse.model_validate({"status": "REVERSED"})

    assert payout.is_reversed()
    assert not payout.has_exchange()
    assert payout.exchange_rate() is None


def test_card_payment_link_alias():
    link = CardPaymentLink.model_validate({"cardPaymentLink": "https://pay.example/abc"})

    assert link.card_payment_link == "https://pay.example/abc"


def test_result_to_dict_shapes():
    ok = GatewayResult(success=True, body={"status": "PROCESSING"})
    listed = GatewayResult(success=True, body=[{"status": "SUCCESS"}])
    failed = GatewayResult.failure("Request failed", body={"message": "bad"}, status_code=400)

    assert ok.to_dict() == {"status": "PROCESSING"}
    assert listed.to_dict() == {"success": True, "data": [{"status": "SUCCESS"}]}
    assert failed.to_dict() == {"success": False, "message": "Request failed", "response": {"message": "bad"}}
    assert GatewayResult.failure("boom").to_dict() == {"success": False, "message": "boom"}
