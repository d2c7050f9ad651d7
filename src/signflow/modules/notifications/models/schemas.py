from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: int
    recipient_email: str
    kind: str
    title: str
    message: str
    link: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    read: bool = False

    model_config = {"from_attributes": True}
