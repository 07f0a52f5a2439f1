import json
import logging
import secrets

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.database.session import get_db
from src.core.notifications import NotificationQueue, get_notification_queue
from src.integrations.gateway.reconciler import WebhookReconciler
from src.integrations.gateway.schemas import WebhookEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def verify_webhook_secret(provided: str | None) -> bool:
    configured = (settings.gateway_webhook_secret or "").strip()
    if not configured:
        return True
    return secrets.compare_digest(provided or "", configured)


@router.post("/gateway", response_class=PlainTextResponse)
async def gateway_webhook(
    request: Request,
    x_webhook_secret: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationQueue = Depends(get_notification_queue),
):
    """
    Collection result callback. Answers in plain text:
    200 processed or already processed, 400 bad reference, 401 bad secret,
    404 unknown reference, 500 internal failure.
    """
    if not verify_webhook_secret(x_webhook_secret):
        logger.warning("gateway callback rejected: bad shared secret")
        return PlainTextResponse("Unauthorized", status_code=401)

    body = await request.body()
    try:
        payload = json.loads(body) if body else {}
    except ValueError:
        logger.warning("gateway callback with invalid JSON body")
        payload = {}

    event = WebhookEvent.from_payload(payload)
    result = await WebhookReconciler(db, notifier=notifier).reconcile(event)
    return PlainTextResponse(result.message, status_code=result.http_status)
