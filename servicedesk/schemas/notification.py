import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field


class NotificationResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    type: str
    title: str
    message: str
    link_url: str
    metadata: dict[str, Any] | None = Field(None, validation_alias=AliasChoices("metadata_", "metadata"))
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}
