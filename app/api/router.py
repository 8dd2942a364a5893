from fastapi import APIRouter

from app.routers import health, portpro_sync, portpro_webhooks, quotes

api_router = APIRouter()
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(portpro_sync.router, tags=["PortPro Sync"])
api_router.include_router(portpro_webhooks.router, tags=["PortPro Webhooks"])
api_router.include_router(quotes.router, prefix="/admin/quotes", tags=["Quotes"])
