"""
ClickPesa specific codes and gateway status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class GatewayCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Gateway/Network errors (6xxxx)
    GATEWAY_ERROR = 60000
    CONFIGURATION_ERROR = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    AUTHENTICATION_FAILED = 60004

    # Webhook reconciliation (7xxxx)
    ORDER_REFERENCE_MISSING = 70000
    INVALID_WEBHOOK_PAYLOAD = 70001
    RECONCILIATION_FAILED = 70002
    TRANSACTION_NOT_FOUND = 70003


# Gateway status vocabulary (upper-cased) -> internal transaction status.
# Internal values map onto themselves so normalization is idempotent.
GATEWAY_STATUS_TO_INTERNAL = {
    "SUCCESS": "successful",
    "SETTLED": "successful",
    "SUCCESSFUL": "successful",
    "PROCESSING": "processing",
    "PENDING": "pending",
    "FAILED": "failed",
    "AUTHORIZED": "authorized",
    "REVERSED": "reversed",
}
