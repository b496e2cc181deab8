"""
FastAPI router for voice provider webhooks.
"""

import hashlib
import hmac
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.config import get_settings
from vetcall.shared.database import get_db_session
from vetcall.shared.logging import get_logger
from vetcall.webhooks.dispatcher import WebhookDispatcher
from vetcall.webhooks.events import parse_payload

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "x-vapi-signature"


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.webhook_dispatcher


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA256 of the raw body, hex encoded."""
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


@router.post("/vapi", status_code=status.HTTP_200_OK)
async def receive_vapi_webhook(
    request: Request,
    dispatcher: Annotated[WebhookDispatcher, Depends(get_dispatcher)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> Any:
    body = await request.body()

    secret = get_settings().vapi_webhook_secret
    if secret and not verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning("Webhook signature mismatch")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Invalid signature"})

    payload = parse_payload(body)
    if payload is None:
        logger.warning("Rejected invalid webhook payload", extra={"body_length": len(body)})
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid payload"})

    return await dispatcher.dispatch(payload, session)
