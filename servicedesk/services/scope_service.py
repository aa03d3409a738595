"""Authorization predicates and the user/department directory.

The workflow services only ask yes/no questions here; they never look at the
org chart themselves.
"""

import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.exceptions import NotFoundError
from servicedesk.models.base import UserRole
from servicedesk.models.delay import Delay
from servicedesk.models.department import Department, DepartmentMembership
from servicedesk.models.user import User

TICKETS_VALIDATE = "tickets.validate"
TICKETS_ASSIGN_CROSS_DEPARTMENT = "tickets.assign_cross_department"
TIME_ENTRIES_VALIDATE = "time_entries.validate"
DELAYS_VALIDATE = "delays.validate"
DELAYS_VIEW_ALL = "delays.view_all"

ROLE_PERMISSIONS: dict[UserRole, frozenset[str]] = {
    UserRole.manager: frozenset({
        TICKETS_VALIDATE,
        TICKETS_ASSIGN_CROSS_DEPARTMENT,
        TIME_ENTRIES_VALIDATE,
        DELAYS_VALIDATE,
        DELAYS_VIEW_ALL,
    }),
    UserRole.agent: frozenset(),
}


def has_permission(user: User, code: str) -> bool:
    """Admins hold every permission; other roles use ROLE_PERMISSIONS."""
    if user.role == UserRole.admin:
        return True
    return code in ROLE_PERMISSIONS.get(user.role, frozenset())


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------

async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    """Get a user by ID. Raises 404 if not found."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user


async def get_users(db: AsyncSession, user_ids: list[uuid.UUID]) -> list[User]:
    """Load several active users; raises 404 naming the first missing one."""
    result = await db.execute(
        select(User).where(User.id.in_(user_ids), User.is_active == True)
    )
    found = {u.id: u for u in result.scalars().all()}
    for user_id in user_ids:
        if user_id not in found:
            raise NotFoundError(f"User {user_id} not found")
    return [found[user_id] for user_id in user_ids]


async def get_user_departments(db: AsyncSession, user_id: uuid.UUID) -> list[Department]:
    result = await db.execute(
        select(Department)
        .join(DepartmentMembership, DepartmentMembership.department_id == Department.id)
        .where(DepartmentMembership.user_id == user_id)
        .order_by(Department.name)
    )
    return list(result.scalars().all())


async def _memberships(db: AsyncSession, user_id: uuid.UUID) -> list[DepartmentMembership]:
    result = await db.execute(
        select(DepartmentMembership).where(DepartmentMembership.user_id == user_id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Capability checks
# ---------------------------------------------------------------------------

async def supervised_department_ids(db: AsyncSession, user: User) -> set[uuid.UUID]:
    """Departments where ``user`` has supervisory authority.

    Managers supervise every department they belong to; agents only the ones
    they lead.
    """
    memberships = await _memberships(db, user.id)
    return {
        m.department_id
        for m in memberships
        if user.role == UserRole.manager or m.is_lead
    }


async def can_validate_delay(db: AsyncSession, user: User, delay: Delay) -> bool:
    """Whether ``user`` may approve or reject a justification for ``delay``.

    Nobody validates their own delay. Admins validate everything else;
    managers and department leads validate delays of users in a department
    they supervise.
    """
    if user.id == delay.user_id:
        return False
    if user.role == UserRole.admin:
        return True
    supervised = await supervised_department_ids(db, user)
    if not supervised:
        return False
    delayed_user_departments = {m.department_id for m in await _memberships(db, delay.user_id)}
    return bool(supervised & delayed_user_departments)


async def can_assign(db: AsyncSession, user: User, assignee_ids: list[uuid.UUID]) -> bool:
    """Assignees outside the assigner's own departments need the cross-department permission."""
    if has_permission(user, TICKETS_ASSIGN_CROSS_DEPARTMENT):
        return True
    own = {m.department_id for m in await _memberships(db, user.id)}
    for assignee_id in assignee_ids:
        if assignee_id == user.id:
            continue
        theirs = {m.department_id for m in await _memberships(db, assignee_id)}
        if not own & theirs:
            return False
    return True


async def list_delay_validators(db: AsyncSession, delay: Delay) -> list[User]:
    """Active users who may validate justifications for ``delay``."""
    department_ids = {m.department_id for m in await _memberships(db, delay.user_id)}

    result = await db.execute(
        select(User).where(User.role == UserRole.admin, User.is_active == True)
    )
    validators = {u.id: u for u in result.scalars().all()}

    if department_ids:
        result = await db.execute(
            select(User)
            .join(DepartmentMembership, DepartmentMembership.user_id == User.id)
            .where(
                DepartmentMembership.department_id.in_(department_ids),
                User.is_active == True,
                or_(User.role == UserRole.manager, DepartmentMembership.is_lead == True),
            )
        )
        for user in result.scalars().all():
            validators.setdefault(user.id, user)

    validators.pop(delay.user_id, None)
    return list(validators.values())
