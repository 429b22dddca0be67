"""Billing rates and invoices."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import service_errors
from app.core.deps import get_tenant, require_role
from app.core.tenancy import TenantContext
from app.db.session import get_session
from app.schemas.billing import (
    BillingRateCreate,
    BillingRateOut,
    InvoiceGenerateIn,
    InvoiceOut,
    InvoiceStatusUpdate,
)
from app.services import billing as billing_svc

router = APIRouter(dependencies=[Depends(require_role("admin", "manager"))])

Session = Annotated[AsyncSession, Depends(get_session)]
Tenant = Annotated[TenantContext, Depends(get_tenant)]


# ─── Rates ───

@router.get("/rates", response_model=list[BillingRateOut])
async def list_rates(db: Session, tenant: Tenant):
    return await db.run_sync(lambda s: billing_svc.list_rates(s, tenant))


@router.post("/rates", response_model=BillingRateOut, status_code=status.HTTP_201_CREATED)
async def create_rate(body: BillingRateCreate, db: Session, tenant: Tenant):
    with service_errors():
        rate = await db.run_sync(lambda s: billing_svc.create_rate(s, tenant, body.model_dump()))
    await db.commit()
    await db.refresh(rate)
    return rate


# ─── Invoices ───

@router.get("/invoices", response_model=list[InvoiceOut])
async def list_invoices(
    db: Session,
    tenant: Tenant,
    client_id: uuid.UUID | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
):
    return await db.run_sync(
        lambda s: billing_svc.list_invoices(s, tenant, client_id=client_id, status=status_filter)
    )


@router.post("/invoices", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
async def generate_invoice(body: InvoiceGenerateIn, db: Session, tenant: Tenant):
    """Draft an invoice from the client's unbilled billable time in the period."""
    with service_errors():
        invoice = await db.run_sync(lambda s: billing_svc.generate_invoice(
            s, tenant, body.client_id, body.period_start, body.period_end,
            tax_rate=body.tax_rate, due_days=body.due_days, notes=body.notes,
        ))
    await db.commit()
    return invoice


@router.get("/invoices/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(invoice_id: uuid.UUID, db: Session, tenant: Tenant):
    with service_errors():
        return await db.run_sync(lambda s: billing_svc.get_invoice(s, tenant, invoice_id))


@router.patch("/invoices/{invoice_id}", response_model=InvoiceOut)
async def update_invoice_status(invoice_id: uuid.UUID, body: InvoiceStatusUpdate, db: Session, tenant: Tenant):
    with service_errors():
        invoice = await db.run_sync(lambda s: billing_svc.update_invoice_status(
            s, tenant, invoice_id, body.status, amount_paid=body.amount_paid,
        ))
    await db.commit()
    return invoice
