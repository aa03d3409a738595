from servicedesk.models.base import (
    Base,
    DelayStatus,
    JustificationStatus,
    SlaStatus,
    SlaUnit,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    TimestampMixin,
    UserRole,
)
from servicedesk.models.delay import Delay, DelayJustification
from servicedesk.models.department import Department, DepartmentMembership
from servicedesk.models.notification import Notification
from servicedesk.models.sla import SlaDefinition, TicketSla
from servicedesk.models.ticket import Ticket, TicketAssignee
from servicedesk.models.ticket_history import TicketHistory
from servicedesk.models.time_entry import TimeEntry
from servicedesk.models.user import User

__all__ = [
    "Base",
    "Delay",
    "DelayJustification",
    "DelayStatus",
    "Department",
    "DepartmentMembership",
    "JustificationStatus",
    "Notification",
    "SlaDefinition",
    "SlaStatus",
    "SlaUnit",
    "Ticket",
    "TicketAssignee",
    "TicketCategory",
    "TicketHistory",
    "TicketPriority",
    "TicketSla",
    "TicketStatus",
    "TimeEntry",
    "TimestampMixin",
    "User",
    "UserRole",
]
