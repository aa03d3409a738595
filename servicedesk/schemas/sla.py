import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from servicedesk.models.base import SlaStatus, SlaUnit, TicketCategory, TicketPriority


class SlaDefinitionCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    ticket_category: TicketCategory
    priority: TicketPriority | None = None
    target_time: int = Field(gt=0)
    unit: SlaUnit = SlaUnit.minutes
    is_active: bool = True


class SlaDefinitionUpdate(BaseModel):
    name: str | None = Field(None, min_length=1)
    description: str | None = None
    ticket_category: TicketCategory | None = None
    priority: TicketPriority | None = None
    target_time: int | None = Field(None, gt=0)
    unit: SlaUnit | None = None
    is_active: bool | None = None


class SlaDefinitionResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str
    ticket_category: TicketCategory
    priority: TicketPriority | None
    target_time: int
    unit: SlaUnit
    target_minutes: int
    is_active: bool
    created_by_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TicketSlaResponse(BaseModel):
    ticket_id: uuid.UUID
    sla_id: uuid.UUID
    target_minutes: int
    target_time: datetime
    elapsed_time: int
    remaining_time: int
    status: SlaStatus
    violated_at: datetime | None
    evaluated_at: datetime | None

    model_config = {"from_attributes": True}


class SlaComplianceResponse(BaseModel):
    sla_id: uuid.UUID
    name: str
    total_tickets: int
    compliant: int
    at_risk: int
    violations: int
    compliance_rate: float


class SlaViolationResponse(BaseModel):
    ticket_id: uuid.UUID
    ticket_code: str
    title: str
    category: TicketCategory
    priority: TicketPriority
    ticket_status: str
    sla_id: uuid.UUID
    sla_name: str
    target_time: datetime
    violated_at: datetime
    overdue_minutes: int


class ComplianceBreakdown(BaseModel):
    key: str
    total_tickets: int
    compliant: int
    violations: int
    compliance_rate: float


class DelayStats(BaseModel):
    unjustified: int = 0
    pending: int = 0
    justified: int = 0
    rejected: int = 0
    total: int = 0


class ComplianceReport(BaseModel):
    period: str | None
    date_from: datetime | None
    date_to: datetime
    total_tickets: int
    compliant: int
    at_risk: int
    violations: int
    compliance_rate: float
    by_category: list[ComplianceBreakdown]
    by_priority: list[ComplianceBreakdown]
    delay_stats: DelayStats
    generated_at: datetime


class SweepResult(BaseModel):
    processed: int
    violated: int
    at_risk: int
    delays_synced: int
