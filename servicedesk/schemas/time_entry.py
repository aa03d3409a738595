import datetime as dt
import uuid

from pydantic import BaseModel


class TimeEntryCreate(BaseModel):
    ticket_id: uuid.UUID
    # Positivity is enforced by the ledger so it surfaces as invalid_input.
    time_spent: int
    date: dt.date | None = None
    description: str = ""


class TimeEntryUpdate(BaseModel):
    time_spent: int | None = None
    date: dt.date | None = None
    description: str | None = None


class TimeEntryValidate(BaseModel):
    validated: bool = True


class TimeEntryResponse(BaseModel):
    id: uuid.UUID
    ticket_id: uuid.UUID
    user_id: uuid.UUID
    time_spent: int
    date: dt.date
    description: str
    validated: bool
    validated_by_id: uuid.UUID | None
    validated_at: dt.datetime | None
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}
