import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.models import TicketSla
from tests.conftest import auth_header, create_ticket


pytestmark = pytest.mark.asyncio


async def _close(client: AsyncClient, token: str, ticket_id: str):
    response = await client.post(
        f"/api/v1/tickets/{ticket_id}/status",
        json={"status": "cloture"},
        headers=auth_header(token),
    )
    assert response.status_code == 200


async def test_empty_report(client: AsyncClient, admin_token: str):
    response = await client.get("/api/v1/dashboard/compliance", headers=auth_header(admin_token))
    assert response.status_code == 200

    data = response.json()
    assert data["total_tickets"] == 0
    assert data["compliance_rate"] == 0.0
    assert data["by_category"] == []
    assert data["delay_stats"]["total"] == 0


async def test_report_counts_at_risk_as_compliant(
    client: AsyncClient, admin_token: str, sla_definitions, clock
):
    """Closed on time, open past deadline, and open inside the risk window."""
    on_time = await create_ticket(client, admin_token, title="On time")
    await create_ticket(client, admin_token, title="Late")
    clock.advance(minutes=30)
    await _close(client, admin_token, on_time["id"])
    clock.advance(minutes=5)
    await create_ticket(client, admin_token, title="Tight", priority="high")
    clock.advance(minutes=55)

    response = await client.get("/api/v1/dashboard/compliance", headers=auth_header(admin_token))
    data = response.json()

    assert data["total_tickets"] == 3
    assert data["compliant"] == 2
    assert data["at_risk"] == 1
    assert data["violations"] == 1
    assert data["compliance_rate"] == 66.67
    assert data["by_category"] == [
        {"key": "incident", "total_tickets": 3, "compliant": 2, "violations": 1, "compliance_rate": 66.67}
    ]
    assert {b["key"]: b["violations"] for b in data["by_priority"]} == {"high": 0, "medium": 1}


async def test_report_is_deterministic(client: AsyncClient, admin_token: str, sla_definitions, clock):
    await create_ticket(client, admin_token)
    await create_ticket(client, admin_token, category="demande")
    clock.advance(hours=2)

    first = await client.get("/api/v1/dashboard/compliance?period=week", headers=auth_header(admin_token))
    second = await client.get("/api/v1/dashboard/compliance?period=week", headers=auth_header(admin_token))
    assert first.json() == second.json()


async def test_report_does_not_write(client: AsyncClient, admin_token: str, sla_definitions, clock):
    ticket = await create_ticket(client, admin_token)
    clock.advance(minutes=90)

    report = await client.get("/api/v1/dashboard/compliance", headers=auth_header(admin_token))
    assert report.json()["violations"] == 1

    clock.advance(minutes=-60)
    status = await client.get(f"/api/v1/sla/tickets/{ticket['id']}/status", headers=auth_header(admin_token))
    assert status.json()["status"] == "on_time"


async def test_window_excludes_older_tickets(client: AsyncClient, admin_token: str, sla_definitions, clock):
    await create_ticket(client, admin_token, title="Old")
    clock.advance(days=10)
    await create_ticket(client, admin_token, title="Recent")

    response = await client.get("/api/v1/dashboard/compliance?period=week", headers=auth_header(admin_token))
    assert response.json()["total_tickets"] == 1

    response = await client.get("/api/v1/dashboard/compliance?period=month", headers=auth_header(admin_token))
    assert response.json()["total_tickets"] == 2


async def test_explicit_date_range(client: AsyncClient, admin_token: str, sla_definitions, clock):
    await create_ticket(client, admin_token)
    clock.advance(days=3)
    await create_ticket(client, admin_token)

    response = await client.get(
        "/api/v1/dashboard/compliance",
        params={"date_from": "2026-03-01T00:00:00Z", "date_to": "2026-03-03T00:00:00Z"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["total_tickets"] == 1


async def test_invalid_period(client: AsyncClient, admin_token: str):
    response = await client.get("/api/v1/dashboard/compliance?period=fortnight", headers=auth_header(admin_token))
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_period"


async def test_inverted_range_rejected(client: AsyncClient, admin_token: str):
    response = await client.get(
        "/api/v1/dashboard/compliance",
        params={"date_from": "2026-03-05T00:00:00Z", "date_to": "2026-03-01T00:00:00Z"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 400


async def test_sla_compliance_report_endpoint(client: AsyncClient, admin_token: str, sla_definitions, clock):
    await create_ticket(client, admin_token)
    clock.advance(minutes=61)

    response = await client.get("/api/v1/sla/compliance-report", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert response.json()["period"] == "month"
    assert response.json()["violations"] == 1


async def test_report_includes_delay_histogram(
    client: AsyncClient, admin_token: str, agent_token: str, agent_user
):
    ticket = await create_ticket(client, admin_token, estimated_time=60, assignee_ids=[str(agent_user.id)])
    await client.post(
        "/api/v1/time-entries/",
        json={"ticket_id": ticket["id"], "time_spent": 90},
        headers=auth_header(agent_token),
    )

    response = await client.get("/api/v1/dashboard/compliance", headers=auth_header(admin_token))
    assert response.json()["delay_stats"] == {
        "unjustified": 1,
        "pending": 0,
        "justified": 0,
        "rejected": 0,
        "total": 1,
    }


async def test_delay_rankings(
    client: AsyncClient, admin_token: str, agent_token: str, agent_user, other_agent
):
    for user, minutes in ((agent_user, 90), (agent_user, 75), (other_agent, 100)):
        ticket = await create_ticket(client, admin_token, estimated_time=60, assignee_ids=[str(user.id)])
        await client.post(
            "/api/v1/time-entries/",
            json={"ticket_id": ticket["id"], "time_spent": minutes},
            headers=auth_header(agent_token),
        )

    response = await client.get("/api/v1/dashboard/delay-rankings", headers=auth_header(admin_token))
    assert response.status_code == 200

    rankings = response.json()
    assert [r["username"] for r in rankings] == ["testagent", "otheragent"]
    assert rankings[0]["delay_count"] == 2
    assert rankings[0]["total_delay_time"] == 45
    assert rankings[0]["average_percentage"] == 37.5
    assert rankings[1]["total_delay_time"] == 40

    response = await client.get("/api/v1/dashboard/delay-rankings?limit=1", headers=auth_header(admin_token))
    assert len(response.json()) == 1


async def test_report_counts_tickets_created_before_their_sla(
    client: AsyncClient, db: AsyncSession, admin_token: str, clock
):
    """A ticket opened before its category had an SLA is judged against the current catalog."""
    ticket = await create_ticket(client, admin_token, title="Opened early")
    response = await client.post(
        "/api/v1/sla/",
        json={"name": "Incident", "ticket_category": "incident", "target_time": 60, "unit": "minutes"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 201
    sla_id = response.json()["id"]
    clock.advance(hours=3)

    report = (await client.get("/api/v1/dashboard/compliance", headers=auth_header(admin_token))).json()
    assert report["total_tickets"] == 1
    assert report["violations"] == 1
    assert report["compliance_rate"] == 0.0

    per_sla = (await client.get(f"/api/v1/sla/{sla_id}/compliance", headers=auth_header(admin_token))).json()
    assert per_sla["total_tickets"] == 1
    assert per_sla["violations"] == 1

    violations = (await client.get("/api/v1/sla/violations", headers=auth_header(admin_token))).json()
    assert [v["ticket_id"] for v in violations] == [ticket["id"]]
    assert violations[0]["sla_id"] == sla_id
    assert violations[0]["sla_name"] == "Incident"
    assert violations[0]["overdue_minutes"] == 120

    # Reporting stays read-only: the ticket is still unattached.
    attached = (await db.execute(select(func.count()).select_from(TicketSla))).scalar()
    assert attached == 0


async def test_report_skips_tickets_without_applicable_sla(
    client: AsyncClient, admin_token: str, sla_definitions, clock
):
    await create_ticket(client, admin_token)
    await create_ticket(client, admin_token, category="changement")
    clock.advance(minutes=90)

    report = (await client.get("/api/v1/dashboard/compliance", headers=auth_header(admin_token))).json()
    assert report["total_tickets"] == 1
    assert [b["key"] for b in report["by_category"]] == ["incident"]
