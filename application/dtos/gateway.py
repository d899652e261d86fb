"""
ClickPesa gateway DTOs (Pydantic v2) used at application boundaries.

Gateway payloads are validated once into typed views; unknown fields are
kept (``extra="allow"``) so nothing the gateway sends is lost.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


T = TypeVar("T")

_ZERO = Decimal("0")


class GatewayModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class TokenResponse(GatewayModel):
    success: bool = False
    token: Optional[str] = None


class PreviewResponse(GatewayModel):
    """Result of a preview call (USSD push, card, payouts)."""

    active_methods: Optional[list[dict[str, Any]]] = None
    sender: Optional[dict[str, Any]] = None
    receiver: Optional[dict[str, Any]] = None
    amount: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    channel_provider: Optional[str] = None
    fee: Optional[Decimal] = None
    exchanged: bool = False
    exchange: Optional[dict[str, Any]] = None
    order: Optional[dict[str, Any]] = None
    payout_fee_bearer: Optional[str] = None
    message: Optional[str] = None

    def available_methods(self) -> list[dict[str, Any]]:
        return list(self.active_methods or [])

    def has_available_methods(self) -> bool:
        return bool(self.active_methods)

    def preferred_method(self) -> Optional[dict[str, Any]]:
        return self.active_methods[0] if self.active_methods else None

    def net_amount(self) -> Decimal:
        return (self.amount or _ZERO) - (self.fee or _ZERO)

    def fee_percentage(self) -> Decimal:
        if not self.amount:
            return _ZERO
        return (self.fee or _ZERO) / self.amount * 100

    def has_sufficient_balance(self) -> bool:
        return (self.balance or _ZERO) >= (self.amount or _ZERO)

    def remaining_balance(self) -> Decimal:
        return (self.balance or _ZERO) - (self.amount or _ZERO)


class PaymentResponse(GatewayModel):
    """A collection (USSD push / card) as reported by the gateway."""

    id: Optional[str] = None
    status: Optional[str] = None
    channel: Optional[str] = None
    order_reference: Optional[str] = None
    collected_amount: Optional[Decimal] = None
    collected_currency: Optional[str] = None
    payment_reference: Optional[str] = None
    customer: Optional[dict[str, Any]] = None
    client_id: Optional[str] = None
    message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def is_successful(self) -> bool:
        return self.status in ("SUCCESS", "SETTLED")

    def is_processing(self) -> bool:
        return self.status in ("PROCESSING", "PENDING")

    def is_failed(self) -> bool:
        return self.status == "FAILED"


class CardPaymentLink(GatewayModel):
    card_payment_link: Optional[str] = None
    client_id: Optional[str] = None


class PayoutResponse(GatewayModel):
    """A payout (mobile money / bank) as reported by the gateway."""

    id: Optional[str] = None
    status: Optional[str] = None
    order_reference: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    fee: Optional[Decimal] = None
    channel: Optional[str] = None
    channel_provider: Optional[str] = None
    beneficiary: Optional[dict[str, Any]] = None
    exchange: Optional[dict[str, Any]] = None
    exchanged: bool = False
    transfer_type: Optional[str] = None
    client_id: Optional[str] = None
    message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def is_successful(self) -> bool:
        return self.status == "SUCCESS"

    def is_authorized(self) -> bool:
        return self.status == "AUTHORIZED"

    def is_reversed(self) -> bool:
        return self.status == "REVERSED"

    def total_cost(self) -> Decimal:
        return self.amount or _ZERO

    def fee_amount(self) -> Decimal:
        return self.fee or _ZERO

    def payout_amount(self) -> Decimal:
        return self.total_cost() - self.fee_amount()

    def has_exchange(self) -> bool:
        return self.exchanged and bool(self.exchange)

    def exchange_rate(self) -> Optional[Decimal]:
        if not self.exchange or self.exchange.get("rate") is None:
            return None
        return Decimal(str(self.exchange["rate"]))


class GatewayResult(BaseModel, Generic[T]):
    """Outcome of a gateway call. Failures are values, never exceptions.

    ``body`` is the parsed response verbatim; ``data`` is its typed view.
    """

    success: bool
    body: Any = None
    data: Optional[T] = None
    message: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def failure(
        cls,
        message: str,
        *,
        body: Any = None,
        status_code: Optional[int] = None,
    ) -> "GatewayResult[T]":
        return cls(success=False, message=message, body=body, status_code=status_code)

    def to_dict(self) -> dict[str, Any]:
        """Legacy array shape: the body on success, ``{success, message, response}`` on failure."""
        if self.success:
            return self.body if isinstance(self.body, dict) else {"success": True, "data": self.body}
        out: dict[str, Any] = {"success": False, "message": self.message}
        if self.body is not None:
            out["response"] = self.body
        return out


__all__ = [
    "GatewayModel",
    "TokenResponse",
    "PreviewResponse",
    "PaymentResponse",
    "CardPaymentLink",
    "PayoutResponse",
    "GatewayResult",
]
