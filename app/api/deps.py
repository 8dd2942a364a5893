import logging
from typing import Annotated, Any, Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.rbac import AdminModule, has_module_access
from app.core.security import decode_access_token, verify_cron_secret
from app.services.portpro.monitoring import SyncMonitor
from app.services.portpro.portpro_client import PortProClient, PortProConfigurationError
from app.services.portpro.repository import LoadRepository
from app.services.portpro.sync_service import PortProSyncService
from app.services.portpro.webhooks import PortProWebhookService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_claims(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Dict[str, Any]:
    """Claims of the identity provider's access token sent as ``Authorization: Bearer``."""
    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing credentials")

    claims = decode_access_token(credentials.credentials)
    if not claims or not claims.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return claims


def require_module_access(module: AdminModule) -> Callable:
    """
    FastAPI dependency factory restricting an endpoint to staff granted ``module``.

    Usage:
        @router.post("/sync", dependencies=[Depends(require_module_access(AdminModule.SYNC))])
    """

    async def _checker(claims: Dict[str, Any] = Depends(get_current_claims)) -> Dict[str, Any]:
        if not has_module_access(claims, module):
            logger.info(f"Denied {module.value} access to {claims.get('sub')}")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
        return claims

    return _checker


async def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Scheduler-triggered endpoints: ``Authorization: Bearer <CRON_SECRET>``."""
    if not verify_cron_secret(authorization):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_portpro_client(request: Request) -> PortProClient:
    """The PortPro client built at startup; 503 when credentials are missing."""
    client = getattr(request.app.state, "portpro_client", None)
    if client is not None:
        return client
    try:
        return PortProClient.from_settings()
    except PortProConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "PortPro not configured", "details": exc.message},
        )


async def get_sync_service(
    db: AsyncSession = Depends(get_db),
    client: PortProClient = Depends(get_portpro_client),
) -> PortProSyncService:
    return PortProSyncService(LoadRepository(db), client)


async def get_webhook_service(db: AsyncSession = Depends(get_db)) -> PortProWebhookService:
    return PortProWebhookService(db)


async def get_sync_monitor(db: AsyncSession = Depends(get_db)) -> SyncMonitor:
    return SyncMonitor(db)
