"""Seed script for demo data. Run with: python seed.py [--if-empty]"""
import argparse
import asyncio
import json
from pathlib import Path

from sqlalchemy import select

from servicedesk.config import settings
from servicedesk.database import async_session
from servicedesk.models import Department, DepartmentMembership, SlaDefinition, User
from servicedesk.models.base import SlaUnit, TicketCategory, TicketPriority, UserRole
from servicedesk.services.auth_service import hash_password

SEED_PATHS = [
    Path("/config/seed.json"),
    Path(__file__).resolve().parent / "seed.json",
]


def load_seed_data() -> tuple[list[dict], list[dict]]:
    """Load departments and users from seed.json. Returns empty lists if not found."""
    seed_file = next((p for p in SEED_PATHS if p.exists()), None)
    if seed_file is None:
        print("No seed.json found, skipping demo users and departments.")
        return [], []

    with open(seed_file) as f:
        data = json.load(f)

    departments = data.get("departments", [])
    users = data.get("users", [])
    print(f"Loaded {len(departments)} departments and {len(users)} users from seed.json")
    return departments, users


SLA_DEFAULTS = [
    {
        "name": "Incident (critical)",
        "ticket_category": TicketCategory.incident,
        "priority": TicketPriority.critical,
        "target_time": settings.sla_incident_critical_target,
    },
    {
        "name": "Incident",
        "ticket_category": TicketCategory.incident,
        "priority": None,
        "target_time": settings.sla_incident_target,
    },
    {
        "name": "Demande",
        "ticket_category": TicketCategory.demande,
        "priority": None,
        "target_time": settings.sla_demande_target,
    },
    {
        "name": "Changement",
        "ticket_category": TicketCategory.changement,
        "priority": None,
        "target_time": settings.sla_changement_target,
    },
    {
        "name": "Developpement",
        "ticket_category": TicketCategory.developpement,
        "priority": None,
        "target_time": settings.sla_developpement_target,
    },
]


async def seed(if_empty: bool = False):
    async with async_session() as db:
        # Check if already seeded
        existing = await db.execute(
            select(User).where(User.username == settings.default_admin_username)
        )
        if existing.scalar_one_or_none():
            print("Database already seeded. Skipping.")
            return
        if if_empty and (await db.execute(select(User.id).limit(1))).first() is not None:
            print("Database is not empty. Skipping.")
            return

        # Create admin user
        admin = User(
            username=settings.default_admin_username,
            email=settings.default_admin_email,
            full_name="System Administrator",
            hashed_password=hash_password(settings.default_admin_password),
            role=UserRole.admin,
        )
        db.add(admin)

        seed_departments, seed_users = load_seed_data()

        department_map = {}
        for d in seed_departments:
            department = Department(**d)
            db.add(department)
            department_map[d["code"]] = department

        await db.flush()

        # Create users and memberships
        for u in seed_users:
            password = u.get("password", "password123")
            codes = u.get("departments", [])
            is_lead = u.get("is_lead", False)
            user_data = {
                k: v for k, v in u.items()
                if k not in ("departments", "is_lead", "password")
            }
            user_data["role"] = UserRole(user_data["role"])
            user = User(hashed_password=hash_password(password), **user_data)
            db.add(user)
            await db.flush()
            for code in codes:
                if code in department_map:
                    db.add(
                        DepartmentMembership(
                            user_id=user.id,
                            department_id=department_map[code].id,
                            is_lead=is_lead,
                        )
                    )

        for s in SLA_DEFAULTS:
            db.add(SlaDefinition(unit=SlaUnit.minutes, created_by_id=admin.id, **s))

        await db.commit()

        print("=" * 60)
        print("Seed data created successfully!")
        print(f"Admin user: {settings.default_admin_username}")
        print(f"SLA definitions: {len(SLA_DEFAULTS)}")
        print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--if-empty", action="store_true", help="Only seed if database is empty")
    args = parser.parse_args()
    asyncio.run(seed(if_empty=args.if_empty))
