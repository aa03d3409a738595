import uuid

import pytest
from httpx import AsyncClient

from servicedesk.services import ticket_service
from tests.conftest import auth_header, create_ticket


pytestmark = pytest.mark.asyncio


async def _move(client: AsyncClient, token: str, ticket_id: str, status: str, **extra):
    return await client.post(
        f"/api/v1/tickets/{ticket_id}/status",
        json={"status": status, **extra},
        headers=auth_header(token),
    )


# ---------------------------------------------------------------------------
# Ticket CRUD
# ---------------------------------------------------------------------------


async def test_create_ticket(client: AsyncClient, admin_token: str, admin_user):
    """POST /api/v1/tickets/ creates an open ticket with a yearly code."""
    data = await create_ticket(client, admin_token)

    assert data["code"] == "TKT-2026-0001"
    assert data["status"] == "ouvert"
    assert data["category"] == "incident"
    assert data["priority"] == "medium"
    assert data["created_by_id"] == str(admin_user.id)
    assert data["estimated_time"] is None
    assert data["actual_time"] is None
    assert data["closed_at"] is None
    assert data["created_at"].startswith("2026-03-02T09:00:00")


async def test_ticket_codes_increment(client: AsyncClient, admin_token: str):
    first = await create_ticket(client, admin_token)
    second = await create_ticket(client, admin_token, title="Second")
    assert first["code"] == "TKT-2026-0001"
    assert second["code"] == "TKT-2026-0002"


async def test_code_taken_concurrently_is_retried(client: AsyncClient, admin_token: str, monkeypatch):
    first = await create_ticket(client, admin_token)
    next_code = ticket_service._next_ticket_code
    attempts = []

    async def stale_then_fresh(db, year):
        attempts.append(year)
        if len(attempts) == 1:
            return first["code"]
        return await next_code(db, year)

    monkeypatch.setattr(ticket_service, "_next_ticket_code", stale_then_fresh)
    second = await create_ticket(client, admin_token, title="Second")
    assert second["code"] == "TKT-2026-0002"
    assert len(attempts) == 2


async def test_code_collision_gives_up_with_conflict(client: AsyncClient, admin_token: str, monkeypatch):
    first = await create_ticket(client, admin_token)

    async def always_taken(db, year):
        return first["code"]

    monkeypatch.setattr(ticket_service, "_next_ticket_code", always_taken)
    response = await client.post(
        "/api/v1/tickets/",
        json={"title": "Third", "description": "", "category": "incident", "priority": "low"},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 409
    assert response.json()["code"] == "conflict"

    monkeypatch.undo()
    listing = await client.get("/api/v1/tickets/", headers=auth_header(admin_token))
    assert listing.json()["total"] == 1


async def test_create_with_estimate_starts_work(client: AsyncClient, admin_token: str):
    data = await create_ticket(client, admin_token, estimated_time=90)
    assert data["status"] == "en_cours"
    assert data["estimated_time"] == 90


async def test_create_with_assignees(client: AsyncClient, admin_token: str, agent_user, other_agent):
    data = await create_ticket(
        client,
        admin_token,
        assignee_ids=[str(agent_user.id), str(other_agent.id)],
        lead_id=str(other_agent.id),
    )
    assert set(data["assignee_ids"]) == {str(agent_user.id), str(other_agent.id)}
    assert data["assigned_to_id"] == str(other_agent.id)


async def test_create_rejects_lead_outside_assignees(client: AsyncClient, admin_token: str, agent_user):
    response = await client.post(
        "/api/v1/tickets/",
        json={
            "title": "Bad lead",
            "category": "incident",
            "assignee_ids": [str(agent_user.id)],
            "lead_id": str(uuid.uuid4()),
        },
        headers=auth_header(admin_token),
    )
    assert response.status_code == 422


async def test_create_sanitizes_description(client: AsyncClient, admin_token: str):
    data = await create_ticket(client, admin_token, description="<script>alert(1)</script>Broken")
    assert "<script>" not in data["description"]
    assert "Broken" in data["description"]


async def test_list_tickets_pagination(client: AsyncClient, admin_token: str):
    for i in range(3):
        await create_ticket(client, admin_token, title=f"Ticket {i}")

    response = await client.get("/api/v1/tickets/?page=1&page_size=2", headers=auth_header(admin_token))
    assert response.status_code == 200

    data = response.json()
    assert len(data["items"]) == 2
    assert data["total"] == 3
    assert data["pages"] == 2


async def test_list_tickets_status_filter(client: AsyncClient, admin_token: str):
    await create_ticket(client, admin_token, title="open")
    await create_ticket(client, admin_token, title="working", estimated_time=30)
    pending = await create_ticket(client, admin_token, title="pending")
    await _move(client, admin_token, pending["id"], "en_attente")

    response = await client.get("/api/v1/tickets/?status=ouvert,en_cours", headers=auth_header(admin_token))
    assert response.status_code == 200
    assert {t["title"] for t in response.json()["items"]} == {"open", "working"}


async def test_list_tickets_unknown_status(client: AsyncClient, admin_token: str):
    response = await client.get("/api/v1/tickets/?status=done", headers=auth_header(admin_token))
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_status"


async def test_get_ticket_not_found(client: AsyncClient, admin_token: str):
    response = await client.get(f"/api/v1/tickets/{uuid.uuid4()}", headers=auth_header(admin_token))
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


async def test_requires_authentication(client: AsyncClient):
    response = await client.get("/api/v1/tickets/")
    assert response.status_code == 401


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def test_full_lifecycle(client: AsyncClient, admin_token: str, clock):
    ticket = await create_ticket(client, admin_token)

    for status in ("en_cours", "en_attente", "en_cours", "resolu"):
        response = await _move(client, admin_token, ticket["id"], status)
        assert response.status_code == 200, response.text
        assert response.json()["status"] == status

    clock.advance(minutes=45)
    response = await _move(client, admin_token, ticket["id"], "cloture")
    assert response.status_code == 200
    assert response.json()["status"] == "cloture"
    assert response.json()["closed_at"].startswith("2026-03-02T09:45:00")


async def test_disallowed_transition(client: AsyncClient, admin_token: str):
    ticket = await create_ticket(client, admin_token)
    response = await _move(client, admin_token, ticket["id"], "resolu")
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_transition"


async def test_unknown_status_rejected(client: AsyncClient, admin_token: str):
    ticket = await create_ticket(client, admin_token)
    response = await _move(client, admin_token, ticket["id"], "done")
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_status"


async def test_same_status_is_noop(client: AsyncClient, admin_token: str):
    ticket = await create_ticket(client, admin_token)
    response = await _move(client, admin_token, ticket["id"], "ouvert")
    assert response.status_code == 200
    assert response.json()["status"] == "ouvert"

    history = await client.get(f"/api/v1/tickets/{ticket['id']}/history", headers=auth_header(admin_token))
    assert [h["action"] for h in history.json()] == ["created"]


async def test_same_status_with_expect_change(client: AsyncClient, admin_token: str):
    ticket = await create_ticket(client, admin_token)
    response = await _move(client, admin_token, ticket["id"], "ouvert", expect_change=True)
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_transition"


async def test_closed_ticket_is_terminal(client: AsyncClient, admin_token: str, clock):
    ticket = await create_ticket(client, admin_token)
    closed = (await _move(client, admin_token, ticket["id"], "cloture")).json()

    clock.advance(hours=2)
    for status in ("ouvert", "en_cours", "resolu"):
        response = await _move(client, admin_token, ticket["id"], status)
        assert response.status_code == 400

    response = await client.get(f"/api/v1/tickets/{ticket['id']}", headers=auth_header(admin_token))
    assert response.json()["closed_at"] == closed["closed_at"]


async def test_closing_twice_changes_nothing(client: AsyncClient, admin_token: str, sla_definitions, clock):
    ticket = await create_ticket(client, admin_token)
    clock.advance(minutes=40)
    first = await _move(client, admin_token, ticket["id"], "cloture")
    assert first.status_code == 200

    clock.advance(hours=3)
    second = await _move(client, admin_token, ticket["id"], "cloture")
    assert second.status_code == 200
    assert second.json()["closed_at"] == first.json()["closed_at"]

    history = await client.get(f"/api/v1/tickets/{ticket['id']}/history", headers=auth_header(admin_token))
    assert [h["action"] for h in history.json()] == ["created", "status_changed"]

    sla = await client.get(f"/api/v1/sla/tickets/{ticket['id']}/status", headers=auth_header(admin_token))
    assert sla.json()["status"] == "on_time"
    assert sla.json()["elapsed_time"] == 40


async def test_reopen_from_resolved_notifies_responsible(
    client: AsyncClient, admin_token: str, agent_token: str, agent_user
):
    ticket = await create_ticket(client, admin_token, assignee_ids=[str(agent_user.id)])
    await _move(client, admin_token, ticket["id"], "en_cours")
    await _move(client, admin_token, ticket["id"], "resolu")
    response = await _move(client, admin_token, ticket["id"], "en_cours")
    assert response.status_code == 200

    notifications = await client.get("/api/v1/notifications/", headers=auth_header(agent_token))
    types = [n["type"] for n in notifications.json()["items"]]
    assert "ticket_invalidated" in types


async def test_history_records_transitions(client: AsyncClient, admin_token: str, admin_user):
    ticket = await create_ticket(client, admin_token)
    await _move(client, admin_token, ticket["id"], "en_cours")
    await _move(client, admin_token, ticket["id"], "resolu")

    response = await client.get(f"/api/v1/tickets/{ticket['id']}/history", headers=auth_header(admin_token))
    assert response.status_code == 200

    history = response.json()
    assert [h["action"] for h in history] == ["created", "status_changed", "status_changed"]
    assert history[0]["metadata"]["code"] == ticket["code"]
    assert (history[2]["old_value"], history[2]["new_value"]) == ("en_cours", "resolu")
    assert history[2]["actor_id"] == str(admin_user.id)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


async def test_validate_requires_permission(client: AsyncClient, admin_token: str, agent_token: str):
    ticket = await create_ticket(client, admin_token, estimated_time=30)
    await _move(client, admin_token, ticket["id"], "resolu")

    response = await client.post(f"/api/v1/tickets/{ticket['id']}/validate", headers=auth_header(agent_token))
    assert response.status_code == 403


async def test_validate_requires_resolved(client: AsyncClient, admin_token: str, manager_token: str):
    ticket = await create_ticket(client, admin_token)
    response = await client.post(f"/api/v1/tickets/{ticket['id']}/validate", headers=auth_header(manager_token))
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_transition"


async def test_validate_closes_ticket_and_time_entries(
    client: AsyncClient, admin_token: str, manager_token: str, agent_token: str, manager_user, clock
):
    ticket = await create_ticket(client, admin_token, estimated_time=60)
    entry = await client.post(
        "/api/v1/time-entries/",
        json={"ticket_id": ticket["id"], "time_spent": 40},
        headers=auth_header(agent_token),
    )
    await _move(client, admin_token, ticket["id"], "resolu")

    clock.advance(minutes=20)
    response = await client.post(f"/api/v1/tickets/{ticket['id']}/validate", headers=auth_header(manager_token))
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "cloture"
    assert data["validated_by_id"] == str(manager_user.id)
    assert data["validated_at"].startswith("2026-03-02T09:20:00")
    assert data["closed_at"].startswith("2026-03-02T09:20:00")

    entry_response = await client.get(
        f"/api/v1/time-entries/{entry.json()['id']}", headers=auth_header(admin_token)
    )
    assert entry_response.json()["validated"] is True


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


async def test_assign_with_estimate_advances_open_ticket(
    client: AsyncClient, admin_token: str, agent_user, other_agent
):
    ticket = await create_ticket(client, admin_token)
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"user_ids": [str(agent_user.id), str(other_agent.id)], "estimated_time": 120},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "en_cours"
    assert data["estimated_time"] == 120
    assert data["assigned_to_id"] == str(agent_user.id)

    history = await client.get(f"/api/v1/tickets/{ticket['id']}/history", headers=auth_header(admin_token))
    assert [h["action"] for h in history.json()] == [
        "created",
        "assigned",
        "estimated_time_changed",
        "status_changed",
    ]


async def test_reassign_replaces_assignees(client: AsyncClient, admin_token: str, agent_user, other_agent):
    ticket = await create_ticket(client, admin_token, assignee_ids=[str(agent_user.id)])
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"user_ids": [str(other_agent.id), str(agent_user.id)], "lead_id": str(other_agent.id)},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 200
    assert set(response.json()["assignee_ids"]) == {str(agent_user.id), str(other_agent.id)}
    assert response.json()["assigned_to_id"] == str(other_agent.id)
    assert response.json()["status"] == "ouvert"

    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"user_ids": [str(other_agent.id)]},
        headers=auth_header(admin_token),
    )
    assert response.json()["assignee_ids"] == [str(other_agent.id)]


async def test_assign_notifies_new_assignees(
    client: AsyncClient, admin_token: str, agent_token: str, agent_user
):
    ticket = await create_ticket(client, admin_token)
    await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"user_ids": [str(agent_user.id)]},
        headers=auth_header(admin_token),
    )

    response = await client.get("/api/v1/notifications/", headers=auth_header(agent_token))
    items = response.json()["items"]
    assert [n["type"] for n in items] == ["ticket_assigned"]
    assert items[0]["metadata"]["ticket_id"] == ticket["id"]


async def test_agent_cannot_assign_outside_department(
    client: AsyncClient, agent_token: str, admin_user, it_department
):
    ticket = await create_ticket(client, agent_token)
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"user_ids": [str(admin_user.id)]},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 403


async def test_agent_can_assign_within_department(
    client: AsyncClient, agent_token: str, other_agent, it_department
):
    ticket = await create_ticket(client, agent_token)
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"user_ids": [str(other_agent.id)]},
        headers=auth_header(agent_token),
    )
    assert response.status_code == 200
    assert response.json()["assigned_to_id"] == str(other_agent.id)


async def test_assign_unknown_user(client: AsyncClient, admin_token: str):
    ticket = await create_ticket(client, admin_token)
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"user_ids": [str(uuid.uuid4())]},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 404


async def test_closed_ticket_cannot_be_reassigned(client: AsyncClient, admin_token: str, agent_user):
    ticket = await create_ticket(client, admin_token)
    await _move(client, admin_token, ticket["id"], "cloture")
    response = await client.post(
        f"/api/v1/tickets/{ticket['id']}/assign",
        json={"user_ids": [str(agent_user.id)]},
        headers=auth_header(admin_token),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_transition"


async def test_created_at_uses_clock(client: AsyncClient, admin_token: str, clock):
    clock.advance(days=1)
    data = await create_ticket(client, admin_token)
    assert data["created_at"].startswith("2026-03-03T09:00:00")
