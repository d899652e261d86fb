"""
Webhook signature verification (hex HMAC-SHA256 over the raw request body).
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Union

from application.ports.signature import SignatureCheck, SignatureVerifierPort
from core.logging_config import get_logger


logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Clickpesa-Signature"

SIGNATURE_REQUIRED = "Signature required"
INVALID_SIGNATURE = "Invalid signature"


def compute_signature(raw_body: Union[bytes, str], secret: str) -> str:
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


class SignatureVerifier(SignatureVerifierPort):
    """Verify ``X-Clickpesa-Signature`` against the exact bytes received.

    The body must not be re-serialized before verification.
    """

    def matches(self, raw_body: bytes, signature: str, secret: Optional[str]) -> bool:
        if not secret:
            logger.error("webhook_signature_secret_missing")
            return False
        expected = compute_signature(raw_body, secret)
        # exact bytes as received: no case folding, no trimming
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))

    def verify(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        secret: Optional[str],
        enforced: bool,
    ) -> SignatureCheck:
        if not signature_header:
            if enforced:
                logger.warning("webhook_signature_missing")
                return SignatureCheck(accepted=False, verified=False, reason=SIGNATURE_REQUIRED)
            return SignatureCheck(accepted=True, verified=False)

        if not enforced and not secret:
            return SignatureCheck(accepted=True, verified=False)

        matched = self.matches(raw_body, signature_header, secret)
        if enforced and not matched:
            logger.warning("webhook_signature_invalid")
            return SignatureCheck(accepted=False, verified=False, reason=INVALID_SIGNATURE)
        return SignatureCheck(accepted=True, verified=matched)


__all__ = [
    "SIGNATURE_HEADER",
    "SIGNATURE_REQUIRED",
    "INVALID_SIGNATURE",
    "SignatureCheck",
    "SignatureVerifier",
    "compute_signature",
]
