import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from servicedesk.models.base import DelayStatus, JustificationStatus


class DelayResponse(BaseModel):
    id: uuid.UUID
    ticket_id: uuid.UUID
    user_id: uuid.UUID
    estimated_time: int
    actual_time: int
    delay_time: int
    delay_percentage: float
    status: DelayStatus
    detected_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class JustificationCreate(BaseModel):
    justification: str = Field(min_length=1)


class JustificationUpdate(BaseModel):
    justification: str = Field(min_length=1)


class JustificationValidate(BaseModel):
    validated: bool
    comment: str = ""


class DelayReject(BaseModel):
    comment: str = ""


class JustificationResponse(BaseModel):
    id: uuid.UUID
    delay_id: uuid.UUID
    user_id: uuid.UUID
    justification: str
    status: JustificationStatus
    validated_by_id: uuid.UUID | None
    validated_at: datetime | None
    validation_comment: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
