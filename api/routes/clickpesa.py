"""
ClickPesa callback endpoint.

Server-to-server route: answers with the flat bodies the gateway expects
instead of the unified response envelope. Keep this thin; verification,
persistence and reconciliation live in ``WebhookReconciler``.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette import status as http_status

from api.dependencies import get_webhook_reconciler
from api.middleware import get_client_ip
from application.services.webhook_reconciler import WebhookReconciler
from core.logging_config import get_logger
from domain.common.exceptions import (
    InvalidWebhookPayloadException,
    OrderReferenceMissingException,
    ReconciliationFailedException,
    SignatureRejectedException,
)


router = APIRouter(tags=["ClickPesa"])
logger = get_logger(__name__)

PROCESSING_FAILED = "Processing failed"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/callback")
async def clickpesa_callback(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}

    try:
        outcome = await reconciler.handle(raw_body, headers, client_ip=get_client_ip(request))
    except SignatureRejectedException as exc:
        return _error(http_status.HTTP_401_UNAUTHORIZED, exc.reason)
    except (InvalidWebhookPayloadException, OrderReferenceMissingException) as exc:
        return _error(http_status.HTTP_400_BAD_REQUEST, exc.message)
    except ReconciliationFailedException:
        return _error(http_status.HTTP_500_INTERNAL_SERVER_ERROR, PROCESSING_FAILED)
    except Exception as exc:
        # lock acquisition timeouts and other failures outside the stored delivery
        logger.error("webhook_unhandled_error", error=str(exc) or exc.__class__.__name__, exc_info=True)
        return _error(http_status.HTTP_500_INTERNAL_SERVER_ERROR, PROCESSING_FAILED)

    return {"status": outcome.status.value}
