"""PortPro webhook ingestion, dead-letter administration and sync health."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import get_sync_monitor, get_webhook_service, require_cron_secret, require_module_access
from app.core.rbac import AdminModule
from app.core.security import verify_portpro_webhook_signature
from app.schemas.webhook import (
    DeadLetterList,
    DeadLetterResponse,
    DeadLetterRetrySummary,
    SyncMetrics,
    WebhookAck,
)
from app.services.portpro.monitoring import SyncMonitor
from app.services.portpro.webhooks import PortProWebhookService

logger = logging.getLogger(__name__)

router = APIRouter()

_sync_access = require_module_access(AdminModule.SYNC)
# Settings is granted to platform admins only
_platform_admin = require_module_access(AdminModule.SETTINGS)


@router.post("/webhooks/portpro", response_model=WebhookAck, response_model_exclude_none=True)
async def portpro_webhook(
    request: Request,
    x_hub_signature: Optional[str] = Header(None, alias="X-Hub-Signature"),
    service: PortProWebhookService = Depends(get_webhook_service),
) -> WebhookAck:
    """
    Receive a PortPro webhook.

    Verified against ``PORTPRO_WEBHOOK_SECRET`` when one is configured.
    Processing failures are queued for retry and still answered with 200.
    """
    body = await request.body()
    if not verify_portpro_webhook_signature(x_hub_signature, body):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook payload must be an object")

    try:
        return await service.receive(payload)
    except SQLAlchemyError as exc:
        logger.error(f"PortPro webhook could not be recorded: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Processing error"},
        )


@router.get("/webhooks/portpro")
async def portpro_webhook_status() -> Dict[str, Any]:
    return {
        "status": "ok",
        "webhook": "portpro",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/cron/dlq-retry", response_model=DeadLetterRetrySummary, dependencies=[Depends(require_cron_secret)])
async def cron_dlq_retry(
    service: PortProWebhookService = Depends(get_webhook_service),
) -> DeadLetterRetrySummary:
    """Retry dead-lettered webhooks whose backoff has elapsed."""
    summary = await service.retry_dead_letters()
    logger.info(f"DLQ Retry complete: {summary.succeeded} succeeded, {summary.failed} failed")
    return summary


@router.get("/admin/sync-health", response_model=SyncMetrics, dependencies=[Depends(_platform_admin)])
async def sync_health(monitor: SyncMonitor = Depends(get_sync_monitor)) -> SyncMetrics:
    return await monitor.get_sync_metrics()


@router.get("/admin/dlq", response_model=DeadLetterList, dependencies=[Depends(_platform_admin)])
async def list_dead_letters(
    service: PortProWebhookService = Depends(get_webhook_service),
) -> DeadLetterList:
    items = await service.dead_letters.items(limit=100)
    stats = await service.dead_letters.stats()
    return DeadLetterList(items=[DeadLetterResponse.model_validate(item) for item in items], stats=stats)


@router.delete("/admin/dlq", dependencies=[Depends(_platform_admin)])
async def clear_dead_letters(
    service: PortProWebhookService = Depends(get_webhook_service),
) -> Dict[str, Any]:
    removed = await service.dead_letters.clear()
    return {"success": True, "removed": removed}


@router.delete("/admin/dlq/{item_id}", dependencies=[Depends(_platform_admin)])
async def delete_dead_letter(
    item_id: str,
    service: PortProWebhookService = Depends(get_webhook_service),
) -> Dict[str, Any]:
    if not await service.dead_letters.remove(item_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return {"success": True}


@router.post("/admin/dlq/{item_id}/retry", dependencies=[Depends(_sync_access)])
async def retry_dead_letter(
    item_id: str,
    service: PortProWebhookService = Depends(get_webhook_service),
) -> Dict[str, Any]:
    success = await service.retry_dead_letter(item_id)
    if success is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return {"success": success, "id": item_id}
