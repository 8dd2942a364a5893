from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.models.quote import QuoteStatus


class QuoteStatusUpdate(BaseModel):
    status: QuoteStatus


class QuoteConvert(BaseModel):
    load_id: str


class QuoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    container_size: Optional[str] = None
    quoted_price: Optional[float] = None
    expires_at: Optional[datetime] = None
    load_id: Optional[str] = None
    converted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
