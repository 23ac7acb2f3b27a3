from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.status_schema import EventType, OrderStatus


class LifecycleEvent(BaseModel):
    """Message delivered to a notification channel on every order transition"""

    type: EventType
    order_id: Optional[UUID] = None
    status: Optional[OrderStatus] = None
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None
    timestamp: datetime = Field(default_factory=datetime.now)

    def to_message(self) -> dict:
        return self.model_dump(mode="json")
