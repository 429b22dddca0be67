"""Client and contract CRUD, scoped by tenant and audited on every mutation."""
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.tenancy import TenantContext
from app.models.client import Client, Contract
from app.rules.errors import NotFoundError
from app.services import audit as audit_service

logger = logging.getLogger(__name__)

CLIENT_FIELDS = ("name", "company_name", "email", "phone", "status", "hourly_rate", "notes")
CONTRACT_FIELDS = (
    "client_id", "contract_number", "name", "description", "type", "status",
    "start_date", "end_date", "monthly_value", "hourly_rate", "included_hours",
)


# ─── Clients ───

def list_clients(
    db: Session, tenant: TenantContext, status: str | None = None, search: str | None = None
) -> list[Client]:
    stmt = select(Client).where(Client.organization_id == tenant.organization_id, Client.is_active.is_(True))
    if status:
        stmt = stmt.where(Client.status == status)
    if search:
        stmt = stmt.where(Client.name.ilike(f"%{search}%"))
    return list(db.execute(stmt.order_by(Client.name)).scalars().all())


def get_client(db: Session, tenant: TenantContext, client_id: uuid.UUID) -> Client:
    client = db.execute(
        select(Client).where(
            Client.id == client_id,
            Client.organization_id == tenant.organization_id,
            Client.is_active.is_(True),
        )
    ).scalars().first()
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    return client


def create_client(db: Session, tenant: TenantContext, values: dict) -> Client:
    client = Client(organization_id=tenant.organization_id, **{k: v for k, v in values.items() if k in CLIENT_FIELDS})
    db.add(client)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "CREATE", "client", client.id, entity_name=client.name, new_values=audit_service.snapshot(client)
    )
    return client


def update_client(db: Session, tenant: TenantContext, client_id: uuid.UUID, changes: dict) -> Client:
    client = get_client(db, tenant, client_id)
    before = audit_service.snapshot(client)
    for field, value in changes.items():
        if field in CLIENT_FIELDS:
            setattr(client, field, value)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "UPDATE", "client", client.id,
        entity_name=client.name, old_values=before, new_values=audit_service.snapshot(client),
    )
    return client


def delete_client(db: Session, tenant: TenantContext, client_id: uuid.UUID) -> None:
    client = get_client(db, tenant, client_id)
    client.is_active = False
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "DELETE", "client", client.id,
        entity_name=client.name, old_values=audit_service.snapshot(client, ["name", "status"]),
    )


# ─── Contracts ───

def list_contracts(
    db: Session, tenant: TenantContext, client_id: uuid.UUID | None = None, status: str | None = None
) -> list[Contract]:
    stmt = select(Contract).where(Contract.organization_id == tenant.organization_id)
    if client_id:
        stmt = stmt.where(Contract.client_id == client_id)
    if status:
        stmt = stmt.where(Contract.status == status)
    return list(db.execute(stmt.order_by(Contract.start_date.desc())).scalars().all())


def get_contract(db: Session, tenant: TenantContext, contract_id: uuid.UUID) -> Contract:
    contract = db.execute(
        select(Contract).where(Contract.id == contract_id, Contract.organization_id == tenant.organization_id)
    ).scalars().first()
    if contract is None:
        raise NotFoundError(f"Contract {contract_id} not found")
    return contract


def _check_dates(values: dict) -> None:
    if values.get("start_date") and values.get("end_date") and values["end_date"] < values["start_date"]:
        raise ValueError("end_date must not be before start_date")


def _next_contract_number(db: Session, tenant: TenantContext) -> str:
    count = db.execute(
        select(func.count(Contract.id)).where(Contract.organization_id == tenant.organization_id)
    ).scalar() or 0
    return f"CON-{str(tenant.organization_id)[:8].upper()}-{count + 1:04d}"


def create_contract(db: Session, tenant: TenantContext, values: dict) -> Contract:
    get_client(db, tenant, values["client_id"])
    _check_dates(values)
    values = {k: v for k, v in values.items() if k in CONTRACT_FIELDS and v is not None}
    values.setdefault("contract_number", _next_contract_number(db, tenant))
    contract = Contract(organization_id=tenant.organization_id, created_by=tenant.actor_id, **values)
    db.add(contract)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "CREATE", "contract", contract.id,
        entity_name=contract.name, new_values=audit_service.snapshot(contract),
    )
    return contract


def update_contract(db: Session, tenant: TenantContext, contract_id: uuid.UUID, changes: dict) -> Contract:
    contract = get_contract(db, tenant, contract_id)
    before = audit_service.snapshot(contract)
    merged = {"start_date": contract.start_date, "end_date": contract.end_date, **changes}
    _check_dates(merged)
    for field, value in changes.items():
        if field in CONTRACT_FIELDS and field != "client_id":
            setattr(contract, field, value)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "UPDATE", "contract", contract.id,
        entity_name=contract.name, old_values=before, new_values=audit_service.snapshot(contract),
    )
    return contract


def delete_contract(db: Session, tenant: TenantContext, contract_id: uuid.UUID) -> None:
    contract = get_contract(db, tenant, contract_id)
    snapshot = audit_service.snapshot(contract)
    db.delete(contract)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "DELETE", "contract", contract_id, entity_name=snapshot.get("name"), old_values=snapshot,
    )
