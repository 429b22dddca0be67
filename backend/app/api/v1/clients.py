"""Client and contract endpoints."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import service_errors
from app.core.deps import get_tenant, require_role
from app.core.tenancy import TenantContext
from app.db.session import get_session
from app.schemas.client import (
    ClientCreate,
    ClientOut,
    ClientUpdate,
    ContractCreate,
    ContractOut,
    ContractUpdate,
)
from app.services import clients as client_svc

router = APIRouter()

Session = Annotated[AsyncSession, Depends(get_session)]
Tenant = Annotated[TenantContext, Depends(get_tenant)]
_managers = Depends(require_role("admin", "manager"))


# ─── Clients ───

@router.get("/clients", response_model=list[ClientOut])
async def list_clients(
    db: Session,
    tenant: Tenant,
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = None,
):
    return await db.run_sync(lambda s: client_svc.list_clients(s, tenant, status=status_filter, search=search))


@router.post("/clients", response_model=ClientOut, status_code=status.HTTP_201_CREATED, dependencies=[_managers])
async def create_client(body: ClientCreate, db: Session, tenant: Tenant):
    client = await db.run_sync(lambda s: client_svc.create_client(s, tenant, body.model_dump()))
    await db.commit()
    await db.refresh(client)
    return client


@router.get("/clients/{client_id}", response_model=ClientOut)
async def get_client(client_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        return await db.run_sync(lambda s: client_svc.get_client(s, tenant, client_id))


@router.patch("/clients/{client_id}", response_model=ClientOut, dependencies=[_managers])
async def update_client(client_id: uuid.UUID, body: ClientUpdate, db: Session, tenant: Tenant):
    changes = body.model_dump(exclude_unset=True)
    with service_errors():
        client = await db.run_sync(lambda s: client_svc.update_client(s, tenant, client_id, changes))
    await db.commit()
    await db.refresh(client)
    return client


@router.delete("/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[_managers])
async def delete_client(client_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        await db.run_sync(lambda s: client_svc.delete_client(s, tenant, client_id))
    await db.commit()


# ─── Contracts ───

@router.get("/contracts", response_model=list[ContractOut])
async def list_contracts(
    db: Session,
    tenant: Tenant,
    client_id: uuid.UUID | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
):
    return await db.run_sync(
        lambda s: client_svc.list_contracts(s, tenant, client_id=client_id, status=status_filter)
    )


@router.post("/contracts", response_model=ContractOut, status_code=status.HTTP_201_CREATED, dependencies=[_managers])
async def create_contract(body: ContractCreate, db: Session, tenant: Tenant):
    with service_errors():
        contract = await db.run_sync(lambda s: client_svc.create_contract(s, tenant, body.model_dump()))
    await db.commit()
    await db.refresh(contract)
    return contract


@router.get("/contracts/{contract_id}", response_model=ContractOut)
async def get_contract(contract_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        return await db.run_sync(lambda s: client_svc.get_contract(s, tenant, contract_id))


@router.patch("/contracts/{contract_id}", response_model=ContractOut, dependencies=[_managers])
async def update_contract(contract_id: uuid.UUID, body: ContractUpdate, db: Session, tenant: Tenant):
    changes = body.model_dump(exclude_unset=True)
    with service_errors():
        contract = await db.run_sync(lambda s: client_svc.update_contract(s, tenant, contract_id, changes))
    await db.commit()
    await db.refresh(contract)
    return contract


@router.delete("/contracts/{contract_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[_managers])
async def delete_contract(contract_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        await db.run_sync(lambda s: client_svc.delete_contract(s, tenant, contract_id))
    await db.commit()
