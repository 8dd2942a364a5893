import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_sync_service, require_cron_secret, require_module_access
from app.core.config import get_settings
from app.core.db import get_db
from app.core.rbac import AdminModule
from app.core.security import verify_qstash_signature
from app.schemas.sync import PollRequest, SyncRequest, SyncRunResponse
from app.services.portpro.portpro_client import PortProError
from app.services.portpro.repository import LoadRepository
from app.services.portpro.sync_service import PortProSyncService

logger = logging.getLogger(__name__)

router = APIRouter()

_sync_access = require_module_access(AdminModule.SYNC)


async def _verify_qstash(
    request: Request,
    upstash_signature: Optional[str] = Header(None, alias="Upstash-Signature"),
) -> None:
    body = await request.body()
    if not verify_qstash_signature(upstash_signature, body, url=str(request.url)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")


def _upstream_failure(message: str, exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": message, "details": str(exc)},
    )


def _timed_out(seconds: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_504_GATEWAY_TIMEOUT,
        detail={"error": "Sync timed out", "details": f"Run exceeded {seconds}s budget"},
    )


@router.post("/admin/sync-portpro", dependencies=[Depends(_sync_access)])
async def sync_portpro(
    payload: Optional[SyncRequest] = Body(None),
    service: PortProSyncService = Depends(get_sync_service),
) -> dict:
    """Sync one page of PortPro loads into loads and tracking events."""
    payload = payload or SyncRequest()
    budget = get_settings().portpro_sync_max_seconds
    logger.info(f"Fetching loads from PortPro (skip: {payload.skip}, limit: {payload.limit})...")
    try:
        summary = await asyncio.wait_for(
            service.sync_page(skip=payload.skip, limit=payload.limit),
            timeout=budget,
        )
    except asyncio.TimeoutError:
        logger.error(f"Manual PortPro sync exceeded {budget}s")
        raise _timed_out(budget)
    except PortProError as exc:
        raise _upstream_failure("Failed to fetch loads from PortPro", exc)
    return summary.model_dump(by_alias=True, exclude_none=True)


@router.get("/admin/sync-portpro", dependencies=[Depends(_sync_access)])
async def check_portpro_connection(
    service: PortProSyncService = Depends(get_sync_service),
) -> dict:
    try:
        result = await service.check_connection()
    except PortProError as exc:
        logger.error(f"PortPro check error: {exc}")
        raise _upstream_failure("PortPro connection failed", exc)
    return result.model_dump(by_alias=True)


@router.get(
    "/admin/sync-portpro/runs",
    response_model=List[SyncRunResponse],
    dependencies=[Depends(_sync_access)],
)
async def list_sync_runs(limit: int = 20, db: AsyncSession = Depends(get_db)) -> List[SyncRunResponse]:
    runs = await LoadRepository(db).list_runs(limit=min(max(limit, 1), 100))
    return [SyncRunResponse.model_validate(run) for run in runs]


@router.post("/qstash/portpro-poll", dependencies=[Depends(_verify_qstash)])
async def qstash_portpro_poll(
    request: Request,
    service: PortProSyncService = Depends(get_sync_service),
) -> dict:
    """Scheduled poll, triggered by an Upstash QStash schedule every few minutes."""
    body = await request.body()
    try:
        payload = PollRequest.model_validate_json(body) if body.strip() else PollRequest()
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    budget = get_settings().portpro_sync_max_seconds
    try:
        summary = await asyncio.wait_for(
            service.poll(limit=payload.limit, skip=payload.skip),
            timeout=budget,
        )
    except asyncio.TimeoutError:
        logger.error(f"QStash poll exceeded {budget}s")
        raise _timed_out(budget)
    except PortProError as exc:
        logger.error(f"QStash Poll failed: {exc}")
        raise _upstream_failure("Poll failed", exc)

    if summary.synced or summary.updated:
        logger.info(f"QStash Poll: synced={summary.synced}, updated={summary.updated}, duration={summary.duration_ms}ms")
    return summary.model_dump(by_alias=True, exclude_none=True)


@router.get("/qstash/portpro-poll")
async def qstash_portpro_poll_status() -> dict:
    return {
        "status": "ok",
        "endpoint": "qstash-portpro-poll",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/cron/portpro-reconcile", dependencies=[Depends(require_cron_secret)])
async def cron_portpro_reconcile(
    service: PortProSyncService = Depends(get_sync_service),
) -> dict:
    """Full reconciliation of every PortPro load; catches anything the poll missed."""
    budget = get_settings().portpro_reconcile_max_seconds
    try:
        summary = await asyncio.wait_for(service.reconcile(), timeout=budget)
    except asyncio.TimeoutError:
        logger.error(f"PortPro reconciliation exceeded {budget}s")
        raise _timed_out(budget)
    except PortProError as exc:
        logger.error(f"Reconciliation failed: {exc}")
        raise _upstream_failure("Reconciliation failed", exc)
    return summary.model_dump(by_alias=True, exclude_none=True)
