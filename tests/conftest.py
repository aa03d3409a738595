import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SLA_SWEEP_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from servicedesk.clock import get_clock
from servicedesk.database import get_db
from servicedesk.main import create_app
from servicedesk.models import Base, Department, DepartmentMembership, SlaDefinition, User
from servicedesk.models.base import SlaUnit, TicketCategory, TicketPriority, UserRole
from servicedesk.services.auth_service import create_access_token, hash_password

# In-memory SQLite shared across the session via a single pooled connection.
engine = create_async_engine(
    "sqlite+aiosqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)
TestSession = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves.
@event.listens_for(engine.sync_engine, "connect")
def _do_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine.sync_engine, "begin")
def _do_begin(conn):
    conn.exec_driver_sql("BEGIN")


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test and drop them after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    async with TestSession() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
async def client(db: AsyncSession, clock: FrozenClock) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client wired to the FastAPI app with test DB and clock overrides."""
    app = create_app()

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


async def _make_user(db: AsyncSession, username: str, role: UserRole, password: str) -> User:
    user = User(
        username=username,
        email=f"{username}@test.com",
        full_name=username.replace("test", "Test ").title(),
        hashed_password=hash_password(password),
        role=role,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def admin_user(db: AsyncSession) -> User:
    """Create and return an admin user."""
    return await _make_user(db, "testadmin", UserRole.admin, "adminpass")


@pytest.fixture
async def manager_user(db: AsyncSession) -> User:
    """Create and return a manager user."""
    return await _make_user(db, "testmanager", UserRole.manager, "managerpass")


@pytest.fixture
async def agent_user(db: AsyncSession) -> User:
    """Create and return an agent user."""
    return await _make_user(db, "testagent", UserRole.agent, "agentpass")


@pytest.fixture
async def other_agent(db: AsyncSession) -> User:
    """A second agent, not a lead anywhere."""
    return await _make_user(db, "otheragent", UserRole.agent, "otherpass")


@pytest.fixture
def admin_token(admin_user: User) -> str:
    return create_access_token(admin_user.id, admin_user.role.value)


@pytest.fixture
def manager_token(manager_user: User) -> str:
    return create_access_token(manager_user.id, manager_user.role.value)


@pytest.fixture
def agent_token(agent_user: User) -> str:
    return create_access_token(agent_user.id, agent_user.role.value)


@pytest.fixture
def other_agent_token(other_agent: User) -> str:
    return create_access_token(other_agent.id, other_agent.role.value)


@pytest.fixture
async def it_department(
    db: AsyncSession, manager_user: User, agent_user: User, other_agent: User
) -> Department:
    """IT department with the manager, the agent and the other agent as members."""
    department = Department(name="IT Support", code="IT", is_it_department=True)
    db.add(department)
    await db.flush()
    for user in (manager_user, agent_user, other_agent):
        db.add(DepartmentMembership(user_id=user.id, department_id=department.id))
    await db.commit()
    await db.refresh(department)
    return department


@pytest.fixture
async def sla_definitions(db: AsyncSession) -> dict[str, SlaDefinition]:
    """Incident SLA of 60 minutes, 30 minutes for critical incidents, one day for requests."""
    definitions = {
        "incident": SlaDefinition(
            name="Incident",
            ticket_category=TicketCategory.incident,
            priority=None,
            target_time=60,
            unit=SlaUnit.minutes,
            is_active=True,
        ),
        "incident_critical": SlaDefinition(
            name="Incident critical",
            ticket_category=TicketCategory.incident,
            priority=TicketPriority.critical,
            target_time=30,
            unit=SlaUnit.minutes,
            is_active=True,
        ),
        "demande": SlaDefinition(
            name="Demande",
            ticket_category=TicketCategory.demande,
            priority=None,
            target_time=1,
            unit=SlaUnit.days,
            is_active=True,
        ),
    }
    db.add_all(definitions.values())
    await db.commit()
    return definitions


def auth_header(token: str) -> dict:
    """Helper to create Authorization header."""
    return {"Authorization": f"Bearer {token}"}


async def create_ticket(client: AsyncClient, token: str, **overrides) -> dict:
    """POST a ticket and return its JSON body."""
    payload = {
        "title": "Printer down",
        "description": "The third floor printer does not respond",
        "category": "incident",
        "priority": "medium",
    }
    payload.update(overrides)
    response = await client.post("/api/v1/tickets/", json=payload, headers=auth_header(token))
    assert response.status_code == 201, response.text
    return response.json()
