import uuid

import pytest
from httpx import AsyncClient

from tests.conftest import auth_header, create_ticket


pytestmark = pytest.mark.asyncio


def _sla_payload(**overrides) -> dict:
    base = {
        "name": "Incident",
        "ticket_category": "incident",
        "target_time": 4,
        "unit": "hours",
    }
    base.update(overrides)
    return base


async def _sla_status(client: AsyncClient, token: str, ticket_id: str):
    response = await client.get(f"/api/v1/sla/tickets/{ticket_id}/status", headers=auth_header(token))
    assert response.status_code == 200, response.text
    return response.json()


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


async def test_create_definition(client: AsyncClient, admin_token: str, admin_user):
    response = await client.post("/api/v1/sla/", json=_sla_payload(), headers=auth_header(admin_token))
    assert response.status_code == 201

    data = response.json()
    assert data["ticket_category"] == "incident"
    assert data["priority"] is None
    assert data["target_minutes"] == 240
    assert data["is_active"] is True
    assert data["created_by_id"] == str(admin_user.id)


async def test_create_definition_requires_admin(client: AsyncClient, manager_token: str):
    response = await client.post("/api/v1/sla/", json=_sla_payload(), headers=auth_header(manager_token))
    assert response.status_code == 403


async def test_target_must_be_positive(client: AsyncClient, admin_token: str):
    response = await client.post(
        "/api/v1/sla/", json=_sla_payload(target_time=0), headers=auth_header(admin_token)
    )
    assert response.status_code == 422


async def test_duplicate_active_definition_conflicts(client: AsyncClient, admin_token: str):
    await client.post("/api/v1/sla/", json=_sla_payload(), headers=auth_header(admin_token))
    response = await client.post(
        "/api/v1/sla/", json=_sla_payload(name="Other"), headers=auth_header(admin_token)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "sla_conflict"

    # A priority-specific definition for the same category is a different slot.
    response = await client.post(
        "/api/v1/sla/", json=_sla_payload(name="Critical", priority="critical"), headers=auth_header(admin_token)
    )
    assert response.status_code == 201


async def test_inactive_duplicate_allowed(client: AsyncClient, admin_token: str):
    await client.post("/api/v1/sla/", json=_sla_payload(), headers=auth_header(admin_token))
    response = await client.post(
        "/api/v1/sla/", json=_sla_payload(name="Draft", is_active=False), headers=auth_header(admin_token)
    )
    assert response.status_code == 201


async def test_list_and_filter_definitions(client: AsyncClient, agent_token: str, sla_definitions):
    response = await client.get("/api/v1/sla/", headers=auth_header(agent_token))
    assert response.status_code == 200
    assert len(response.json()) == 3

    response = await client.get("/api/v1/sla/?category=incident", headers=auth_header(agent_token))
    assert {d["name"] for d in response.json()} == {"Incident", "Incident critical"}


async def test_update_definition(client: AsyncClient, admin_token: str, sla_definitions):
    sla_id = sla_definitions["demande"].id
    response = await client.patch(
        f"/api/v1/sla/{sla_id}",
        json={"target_time": 2},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["target_minutes"] == 2880


async def test_update_into_occupied_slot_conflicts(client: AsyncClient, admin_token: str, sla_definitions):
    sla_id = sla_definitions["demande"].id
    response = await client.patch(
        f"/api/v1/sla/{sla_id}",
        json={"ticket_category": "incident"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 409


async def test_delete_unused_definition(client: AsyncClient, admin_token: str, sla_definitions):
    sla_id = sla_definitions["demande"].id
    response = await client.delete(f"/api/v1/sla/{sla_id}", headers=auth_header(admin_token))
    assert response.status_code == 204

    response = await client.get(f"/api/v1/sla/{sla_id}", headers=auth_header(admin_token))
    assert response.status_code == 404


async def test_delete_used_definition_deactivates(client: AsyncClient, admin_token: str, sla_definitions):
    await create_ticket(client, admin_token)
    sla_id = sla_definitions["incident"].id

    response = await client.delete(f"/api/v1/sla/{sla_id}", headers=auth_header(admin_token))
    assert response.status_code == 204

    response = await client.get(f"/api/v1/sla/{sla_id}", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert response.json()["is_active"] is False


async def test_get_unknown_definition(client: AsyncClient, admin_token: str):
    response = await client.get(f"/api/v1/sla/{uuid.uuid4()}", headers=auth_header(admin_token))
    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Per-ticket status
# ---------------------------------------------------------------------------


async def test_ticket_status_progresses_to_violation(client: AsyncClient, admin_token: str, sla_definitions, clock):
    ticket = await create_ticket(client, admin_token)

    status = await _sla_status(client, admin_token, ticket["id"])
    assert status["sla_id"] == str(sla_definitions["incident"].id)
    assert status["target_minutes"] == 60
    assert status["status"] == "on_time"
    assert status["target_time"].startswith("2026-03-02T10:00:00")

    clock.advance(minutes=55)
    status = await _sla_status(client, admin_token, ticket["id"])
    assert status["status"] == "at_risk"
    assert status["remaining_time"] == 5

    clock.advance(minutes=6)
    status = await _sla_status(client, admin_token, ticket["id"])
    assert status["status"] == "violated"
    assert status["elapsed_time"] == 61
    assert status["violated_at"].startswith("2026-03-02T10:00:00")


async def test_priority_specific_sla_applies(client: AsyncClient, admin_token: str, sla_definitions):
    ticket = await create_ticket(client, admin_token, priority="critical")
    status = await _sla_status(client, admin_token, ticket["id"])
    assert status["sla_id"] == str(sla_definitions["incident_critical"].id)
    assert status["target_minutes"] == 30


async def test_no_sla_for_category(client: AsyncClient, admin_token: str, sla_definitions):
    ticket = await create_ticket(client, admin_token, category="changement")
    assert await _sla_status(client, admin_token, ticket["id"]) is None


async def test_sla_attached_lazily(client: AsyncClient, admin_token: str):
    """A ticket created before its SLA existed picks it up on the next evaluation."""
    ticket = await create_ticket(client, admin_token)
    assert await _sla_status(client, admin_token, ticket["id"]) is None

    await client.post(
        "/api/v1/sla/", json=_sla_payload(target_time=90, unit="minutes"), headers=auth_header(admin_token)
    )
    status = await _sla_status(client, admin_token, ticket["id"])
    assert status["target_minutes"] == 90


async def test_closed_ticket_keeps_verdict(client: AsyncClient, admin_token: str, sla_definitions, clock):
    ticket = await create_ticket(client, admin_token)
    clock.advance(minutes=40)
    await client.post(
        f"/api/v1/tickets/{ticket['id']}/status",
        json={"status": "cloture"},
        headers=auth_header(admin_token),
    )

    clock.advance(days=2)
    status = await _sla_status(client, admin_token, ticket["id"])
    assert status["status"] == "on_time"
    assert status["elapsed_time"] == 40


async def test_violation_survives_close(client: AsyncClient, admin_token: str, sla_definitions, clock):
    ticket = await create_ticket(client, admin_token)
    clock.advance(minutes=75)
    await client.post(
        f"/api/v1/tickets/{ticket['id']}/status",
        json={"status": "cloture"},
        headers=auth_header(admin_token),
    )
    clock.advance(days=1)
    status = await _sla_status(client, admin_token, ticket["id"])
    assert status["status"] == "violated"
    assert status["elapsed_time"] == 75


async def test_definition_change_does_not_move_existing_targets(
    client: AsyncClient, admin_token: str, sla_definitions
):
    ticket = await create_ticket(client, admin_token)
    await client.patch(
        f"/api/v1/sla/{sla_definitions['incident'].id}",
        json={"target_time": 600},
        headers=auth_header(admin_token),
    )
    status = await _sla_status(client, admin_token, ticket["id"])
    assert status["target_minutes"] == 60


async def test_unknown_ticket_status(client: AsyncClient, admin_token: str):
    response = await client.get(f"/api/v1/sla/tickets/{uuid.uuid4()}/status", headers=auth_header(admin_token))
    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


async def test_violations_listing(client: AsyncClient, admin_token: str, sla_definitions, clock):
    await create_ticket(client, admin_token, title="Late")
    clock.advance(minutes=20)
    await create_ticket(client, admin_token, title="Fresh")
    clock.advance(minutes=70)

    response = await client.get("/api/v1/sla/violations", headers=auth_header(admin_token))
    assert response.status_code == 200

    violations = response.json()
    assert {v["title"] for v in violations} == {"Late", "Fresh"}
    late_row = next(v for v in violations if v["title"] == "Late")
    assert late_row["sla_name"] == "Incident"
    assert late_row["overdue_minutes"] == 30
    assert late_row["violated_at"].startswith("2026-03-02T10:00:00")
    assert violations[0]["title"] == "Fresh"


async def test_violations_filtered_by_category(client: AsyncClient, admin_token: str, sla_definitions, clock):
    await create_ticket(client, admin_token)
    clock.advance(minutes=90)

    response = await client.get("/api/v1/sla/violations?category=demande", headers=auth_header(admin_token))
    assert response.json() == []


async def test_sla_compliance(client: AsyncClient, admin_token: str, sla_definitions, clock):
    first = await create_ticket(client, admin_token)
    await create_ticket(client, admin_token)
    clock.advance(minutes=30)
    await client.post(
        f"/api/v1/tickets/{first['id']}/status",
        json={"status": "cloture"},
        headers=auth_header(admin_token),
    )
    clock.advance(minutes=45)

    response = await client.get(
        f"/api/v1/sla/{sla_definitions['incident'].id}/compliance", headers=auth_header(admin_token)
    )
    assert response.status_code == 200
    assert response.json() == {
        "sla_id": str(sla_definitions["incident"].id),
        "name": "Incident",
        "total_tickets": 2,
        "compliant": 1,
        "at_risk": 0,
        "violations": 1,
        "compliance_rate": 50.0,
    }


async def test_recalculate_requires_admin(client: AsyncClient, manager_token: str):
    response = await client.post("/api/v1/sla/recalculate", headers=auth_header(manager_token))
    assert response.status_code == 403


async def test_recalculate(client: AsyncClient, admin_token: str, sla_definitions, clock):
    await create_ticket(client, admin_token)
    await create_ticket(client, admin_token, category="changement")
    clock.advance(minutes=61)

    response = await client.post("/api/v1/sla/recalculate", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert response.json() == {"processed": 2, "violated": 1, "at_risk": 0, "delays_synced": 0}
