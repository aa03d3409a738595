import uuid
from datetime import datetime

from pydantic import BaseModel

from servicedesk.models.base import UserRole


class UserResponse(BaseModel):
    id: uuid.UUID
    username: str
    email: str
    full_name: str
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DepartmentResponse(BaseModel):
    id: uuid.UUID
    name: str
    code: str
    is_it_department: bool

    model_config = {"from_attributes": True}


class MeResponse(UserResponse):
    departments: list[DepartmentResponse] = []
