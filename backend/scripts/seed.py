"""Seed script: creates a demo organization with staff, a client, a contract, and the default SLA/escalation set.

Idempotent: checks for existing records before inserting.
Run: docker exec msp-helpdesk-backend-1 python scripts/seed.py
"""
import asyncio
import os
import sys
from datetime import date, timedelta
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import hash_password as get_password_hash
from app.core.seed import seed_organization_defaults
from app.core.tenancy import TenantContext
from app.db.session import AsyncSessionLocal
from app.models.client import Client, Contract
from app.models.organization import Organization
from app.models.user import User

TODAY = date.today()


# ─── Upsert helpers ───────────────────────────────────────────────────────────

async def _upsert_org(db: AsyncSession, name: str, slug: str) -> Organization:
    org = (await db.execute(select(Organization).where(Organization.slug == slug))).scalars().first()
    if org:
        print(f"  [skip] Organization {slug}")
        return org
    org = Organization(name=name, slug=slug, email=f"support@{slug}.example.com", is_active=True)
    db.add(org)
    await db.flush()
    print(f"  [new]  Organization {slug}")
    return org


async def _upsert_user(db: AsyncSession, org: Organization, email: str, first: str, last: str, role: str) -> User:
    user = (await db.execute(select(User).where(User.email == email))).scalars().first()
    if user:
        print(f"  [skip] User {email}")
        return user
    user = User(
        organization_id=org.id,
        email=email, first_name=first, last_name=last,
        password_hash=get_password_hash("changeme123"),
        role=role, is_active=True,
    )
    db.add(user)
    await db.flush()
    print(f"  [new]  User {email} ({role})")
    return user


async def _upsert_client(db: AsyncSession, org: Organization, name: str, rate: Decimal) -> Client:
    client = (await db.execute(
        select(Client).where(Client.organization_id == org.id, Client.name == name)
    )).scalars().first()
    if client:
        print(f"  [skip] Client {name}")
        return client
    client = Client(
        organization_id=org.id, name=name, company_name=f"{name} Ltd",
        email=f"it@{name.lower().replace(' ', '')}.example.com",
        status="active", hourly_rate=rate,
    )
    db.add(client)
    await db.flush()
    print(f"  [new]  Client {name}")
    return client


async def _upsert_contract(db: AsyncSession, org: Organization, client: Client, number: str) -> Contract:
    contract = (await db.execute(select(Contract).where(Contract.contract_number == number))).scalars().first()
    if contract:
        print(f"  [skip] Contract {number}")
        return contract
    contract = Contract(
        organization_id=org.id, client_id=client.id, contract_number=number,
        name=f"{client.name} managed services", type="managed_services", status="active",
        start_date=TODAY - timedelta(days=30), end_date=TODAY + timedelta(days=335),
        monthly_value=Decimal("2500.00"), hourly_rate=Decimal("95.00"), included_hours=20,
    )
    db.add(contract)
    await db.flush()
    print(f"  [new]  Contract {number}")
    return contract


# ─── Main ─────────────────────────────────────────────────────────────────────

async def main() -> None:
    async with AsyncSessionLocal() as db:
        print("Organization")
        org = await _upsert_org(db, "Demo MSP", "demo-msp")

        print("Users")
        await _upsert_user(db, org, "admin@demo-msp.example.com", "Ada", "Admin", "admin")
        await _upsert_user(db, org, "manager@demo-msp.example.com", "Max", "Manager", "manager")
        await _upsert_user(db, org, "tech1@demo-msp.example.com", "Tess", "Tech", "technician")
        await _upsert_user(db, org, "tech2@demo-msp.example.com", "Theo", "Tech", "technician")

        print("Clients")
        acme = await _upsert_client(db, org, "Acme Corp", Decimal("120.00"))
        await _upsert_contract(db, org, acme, "CON-DEMO-0001")

        print("SLA definitions and escalation rules")
        counts = await db.run_sync(lambda s: seed_organization_defaults(s, TenantContext.system(org.id)))
        print(f"  {counts}")

        await db.commit()
    print("Seed complete.")


if __name__ == "__main__":
    asyncio.run(main())
