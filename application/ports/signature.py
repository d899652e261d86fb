"""
Webhook signature verification port.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class SignatureCheck:
    """Outcome of a verification.

    ``accepted`` decides whether the delivery is processed; ``verified`` is
    informational and only true when a header was present and matched.
    """

    accepted: bool
    verified: bool
    reason: Optional[str] = None


class SignatureVerifierPort(Protocol):
    def verify(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        secret: Optional[str],
        enforced: bool,
    ) -> SignatureCheck: ...


__all__ = ["SignatureCheck", "SignatureVerifierPort"]
