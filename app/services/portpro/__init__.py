"""PortPro TMS integration: API client, payload mapping and load sync."""

from app.services.portpro.portpro_client import (  # noqa: F401
    PortProAPIError,
    PortProClient,
    PortProConfigurationError,
    PortProError,
)
from app.services.portpro.sync_service import PortProSyncService  # noqa: F401
