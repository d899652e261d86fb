"""
Exceptions for the ClickPesa integration mapped to unified BusinessException variants.

Gateway failures are returned as ``GatewayResult`` values; only malformed
local configuration raises.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.gateway_codes import GatewayCode


class GatewayConfigurationError(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=GatewayCode.CONFIGURATION_ERROR,
            message=message,
            error_type="GatewayConfigurationError",
            details=details,
        )
