import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, model_validator

from servicedesk.models.base import TicketCategory, TicketPriority, TicketStatus


class TicketCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    category: TicketCategory
    priority: TicketPriority = TicketPriority.medium
    assignee_ids: list[uuid.UUID] = []
    lead_id: uuid.UUID | None = None
    estimated_time: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def lead_must_be_assignee(self):
        if self.lead_id is not None and self.lead_id not in self.assignee_ids:
            raise ValueError("lead_id must be one of assignee_ids")
        return self


class TicketStatusChange(BaseModel):
    # Kept as a plain string so unknown values reach the lifecycle check.
    status: str
    expect_change: bool = False


class TicketAssign(BaseModel):
    user_ids: list[uuid.UUID] = Field(min_length=1)
    lead_id: uuid.UUID | None = None
    estimated_time: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def lead_must_be_assignee(self):
        if self.lead_id is not None and self.lead_id not in self.user_ids:
            raise ValueError("lead_id must be one of user_ids")
        return self


class TicketResponse(BaseModel):
    id: uuid.UUID
    code: str
    title: str
    description: str
    category: TicketCategory
    priority: TicketPriority
    status: TicketStatus
    created_by_id: uuid.UUID
    assigned_to_id: uuid.UUID | None
    assignee_ids: list[uuid.UUID] = []
    estimated_time: int | None
    actual_time: int | None
    closed_at: datetime | None
    validated_by_id: uuid.UUID | None
    validated_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TicketListResponse(BaseModel):
    id: uuid.UUID
    code: str
    title: str
    category: TicketCategory
    priority: TicketPriority
    status: TicketStatus
    created_by_id: uuid.UUID
    assigned_to_id: uuid.UUID | None
    estimated_time: int | None
    actual_time: int | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TicketHistoryResponse(BaseModel):
    id: uuid.UUID
    ticket_id: uuid.UUID
    actor_id: uuid.UUID | None
    action: str
    field_changed: str | None
    old_value: str | None
    new_value: str | None
    metadata: dict[str, Any] | None = Field(None, validation_alias=AliasChoices("metadata_", "metadata"))
    created_at: datetime

    model_config = {"from_attributes": True}


class TimeComparisonResponse(BaseModel):
    ticket_id: uuid.UUID
    estimated_time: int | None
    actual_time: int
    difference: int | None
    percentage: float | None
    is_over: bool
