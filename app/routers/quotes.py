from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import require_module_access
from app.core.db import get_db
from app.core.rbac import AdminModule
from app.schemas.quote import QuoteConvert, QuoteResponse, QuoteStatusUpdate
from app.services.quote import QuoteService

router = APIRouter(dependencies=[Depends(require_module_access(AdminModule.QUOTES))])


async def _service(db: AsyncSession = Depends(get_db)) -> QuoteService:
    return QuoteService(db)


@router.get("/{quote_id}", response_model=QuoteResponse)
async def get_quote(quote_id: str, service: QuoteService = Depends(_service)) -> QuoteResponse:
    try:
        quote = await service.get(quote_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return QuoteResponse.model_validate(quote)


@router.post("/{quote_id}/status", response_model=QuoteResponse)
async def update_quote_status(
    quote_id: str,
    payload: QuoteStatusUpdate,
    service: QuoteService = Depends(_service),
) -> QuoteResponse:
    try:
        await service.get(quote_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    try:
        quote = await service.transition(quote_id, payload.status)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return QuoteResponse.model_validate(quote)


@router.post("/{quote_id}/convert", response_model=QuoteResponse)
async def convert_quote(
    quote_id: str,
    payload: QuoteConvert,
    service: QuoteService = Depends(_service),
) -> QuoteResponse:
    """Record that a load was created from this quote."""
    try:
        await service.get(quote_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    try:
        quote = await service.mark_converted(quote_id, payload.load_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return QuoteResponse.model_validate(quote)
