"""Time tracking, billing-rate resolution and invoice generation.

Money is Decimal throughout, rounded half-up to cents.
"""
import logging
import secrets
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.tenancy import TenantContext
from app.models.billing import BillingRate, Invoice, InvoiceItem, InvoiceStatus, TimeEntry
from app.models.client import Client
from app.models.ticket import Ticket
from app.rules.errors import NotFoundError
from app.services import audit as audit_service

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

# once here an invoice no longer moves
_FINAL_STATUSES = {InvoiceStatus.paid.value, InvoiceStatus.cancelled.value}


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


# ─── Time entries ───

def log_time(db: Session, tenant: TenantContext, ticket_id: uuid.UUID, values: dict) -> TimeEntry:
    ticket = db.execute(
        select(Ticket).where(Ticket.id == ticket_id, Ticket.organization_id == tenant.organization_id)
    ).scalars().first()
    if ticket is None:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    if values["minutes_spent"] <= 0:
        raise ValueError("minutes_spent must be positive")

    start = values.get("start_time") or datetime.now(timezone.utc)
    entry = TimeEntry(
        organization_id=tenant.organization_id,
        ticket_id=ticket.id,
        user_id=values.get("user_id") or tenant.actor_id,
        description=values.get("description") or "",
        minutes_spent=values["minutes_spent"],
        is_billable=values.get("is_billable", True),
        activity_type=values.get("activity_type") or "work",
        start_time=start,
        end_time=values.get("end_time") or start + timedelta(minutes=values["minutes_spent"]),
    )
    db.add(entry)
    ticket.time_spent_minutes = (ticket.time_spent_minutes or 0) + entry.minutes_spent
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "CREATE", "time_entry", entry.id,
        entity_name=ticket.ticket_number, new_values=audit_service.snapshot(entry),
    )
    return entry


def list_time_entries(db: Session, tenant: TenantContext, ticket_id: uuid.UUID) -> list[TimeEntry]:
    return list(db.execute(
        select(TimeEntry)
        .where(TimeEntry.organization_id == tenant.organization_id, TimeEntry.ticket_id == ticket_id)
        .order_by(TimeEntry.start_time)
    ).scalars().all())


# ─── Rates ───

def list_rates(db: Session, tenant: TenantContext) -> list[BillingRate]:
    return list(db.execute(
        select(BillingRate)
        .where(BillingRate.organization_id == tenant.organization_id)
        .order_by(BillingRate.service_type, BillingRate.effective_date.desc())
    ).scalars().all())


def create_rate(db: Session, tenant: TenantContext, values: dict) -> BillingRate:
    if values["hourly_rate"] < 0:
        raise ValueError("hourly_rate must be >= 0")
    if values.get("expiry_date") and values["expiry_date"] < values["effective_date"]:
        raise ValueError("expiry_date must not be before effective_date")
    rate = BillingRate(organization_id=tenant.organization_id, **values)
    db.add(rate)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "CREATE", "billing_rate", rate.id,
        entity_name=rate.rate_name, new_values=audit_service.snapshot(rate),
    )
    return rate


def _specificity(rate: BillingRate) -> int:
    if rate.user_id is not None and rate.client_id is not None:
        return 0
    if rate.client_id is not None:
        return 1
    if rate.user_id is not None:
        return 2
    return 3


def pick_rate(
    rates: list[BillingRate],
    user_id: uuid.UUID,
    client_id: uuid.UUID,
    service_type: str,
    on: date,
) -> BillingRate | None:
    """Most specific applicable rate: user+client, client, user, then org default.

    Ties go to the most recent effective_date.
    """
    candidates = [
        r for r in rates
        if r.is_active
        and r.service_type == service_type
        and r.effective_date <= on
        and (r.expiry_date is None or r.expiry_date >= on)
        and r.user_id in (None, user_id)
        and r.client_id in (None, client_id)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda r: (_specificity(r), -r.effective_date.toordinal()))


# ─── Invoices ───

def _candidate_rates(db: Session, tenant: TenantContext, client_id: uuid.UUID) -> list[BillingRate]:
    return list(db.execute(
        select(BillingRate).where(
            BillingRate.organization_id == tenant.organization_id,
            BillingRate.is_active.is_(True),
            or_(BillingRate.client_id.is_(None), BillingRate.client_id == client_id),
        )
    ).scalars().all())


def generate_invoice(
    db: Session,
    tenant: TenantContext,
    client_id: uuid.UUID,
    period_start: date,
    period_end: date,
    tax_rate: Decimal = Decimal("0"),
    due_days: int = 30,
    notes: str | None = None,
) -> Invoice:
    """Draft invoice from the client's unbilled billable time in [period_start, period_end]."""
    if period_end < period_start:
        raise ValueError("period_end must not be before period_start")
    client = db.execute(
        select(Client).where(Client.id == client_id, Client.organization_id == tenant.organization_id)
    ).scalars().first()
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")

    window_start = datetime.combine(period_start, time.min, tzinfo=timezone.utc)
    window_end = datetime.combine(period_end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    rows = db.execute(
        select(TimeEntry, Ticket)
        .join(Ticket, Ticket.id == TimeEntry.ticket_id)
        .where(
            TimeEntry.organization_id == tenant.organization_id,
            Ticket.client_id == client.id,
            TimeEntry.is_billable.is_(True),
            TimeEntry.invoice_id.is_(None),
            TimeEntry.start_time >= window_start,
            TimeEntry.start_time < window_end,
        )
        .order_by(TimeEntry.start_time)
        .with_for_update(of=TimeEntry)
    ).all()
    if not rows:
        raise ValueError("No unbilled billable time for this client in the period")

    rates = _candidate_rates(db, tenant, client.id)
    today = datetime.now(timezone.utc).date()
    invoice = Invoice(
        id=uuid.uuid4(),
        organization_id=tenant.organization_id,
        client_id=client.id,
        invoice_number=f"INV-{today:%Y%m}-{secrets.token_hex(3).upper()}",
        status=InvoiceStatus.draft.value,
        period_start=period_start,
        period_end=period_end,
        invoice_date=today,
        due_date=today + timedelta(days=due_days),
        notes=notes,
        created_by=tenant.actor_id,
    )

    subtotal = Decimal("0")
    items = []
    for entry, ticket in rows:
        rate = pick_rate(rates, entry.user_id, client.id, ticket.type, entry.start_time.date())
        if rate is not None:
            unit_rate = Decimal(rate.hourly_rate)
        elif client.hourly_rate is not None:
            unit_rate = Decimal(client.hourly_rate)
        else:
            raise ValueError(f"No billing rate applies to time entry {entry.id} ({ticket.type})")
        amount = money(Decimal(entry.minutes_spent) * unit_rate / 60)
        items.append(InvoiceItem(
            time_entry_id=entry.id,
            ticket_id=ticket.id,
            description=f"{ticket.ticket_number}: {entry.description or ticket.subject}",
            quantity=money(Decimal(entry.minutes_spent) / 60),
            unit_rate=money(unit_rate),
            amount=amount,
            item_type="time",
        ))
        subtotal += amount
        entry.invoice_id = invoice.id

    tax_rate = Decimal(tax_rate)
    invoice.subtotal = money(subtotal)
    invoice.tax_rate = tax_rate
    invoice.tax_amount = money(subtotal * tax_rate / 100)
    invoice.total_amount = invoice.subtotal + invoice.tax_amount
    invoice.amount_paid = Decimal("0.00")
    invoice.balance_due = invoice.total_amount
    invoice.items = items

    db.add(invoice)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "CREATE", "invoice", invoice.id,
        entity_name=invoice.invoice_number,
        new_values={"client_id": client.id, "total_amount": invoice.total_amount, "items": len(items)},
    )
    logger.info("Invoice %s generated: %d items, total %s", invoice.invoice_number, len(items), invoice.total_amount)
    return invoice


def list_invoices(
    db: Session, tenant: TenantContext, client_id: uuid.UUID | None = None, status: str | None = None
) -> list[Invoice]:
    stmt = select(Invoice).where(Invoice.organization_id == tenant.organization_id)
    if client_id:
        stmt = stmt.where(Invoice.client_id == client_id)
    if status:
        stmt = stmt.where(Invoice.status == status)
    return list(db.execute(stmt.order_by(Invoice.invoice_date.desc())).scalars().all())


def get_invoice(db: Session, tenant: TenantContext, invoice_id: uuid.UUID) -> Invoice:
    invoice = db.execute(
        select(Invoice).where(Invoice.id == invoice_id, Invoice.organization_id == tenant.organization_id)
    ).scalars().first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def update_invoice_status(
    db: Session,
    tenant: TenantContext,
    invoice_id: uuid.UUID,
    status: str,
    amount_paid: Decimal | None = None,
) -> Invoice:
    invoice = get_invoice(db, tenant, invoice_id)
    if invoice.status in _FINAL_STATUSES:
        raise ValueError(f"Invoice {invoice.invoice_number} is {invoice.status} and cannot change")
    before = {"status": invoice.status, "amount_paid": invoice.amount_paid}

    if status == InvoiceStatus.paid.value:
        invoice.amount_paid = money(amount_paid) if amount_paid is not None else invoice.total_amount
        invoice.paid_date = datetime.now(timezone.utc).date()
    elif amount_paid is not None:
        invoice.amount_paid = money(amount_paid)
    if status == InvoiceStatus.cancelled.value:
        # release the time so it can be billed again
        for entry in db.execute(select(TimeEntry).where(TimeEntry.invoice_id == invoice.id)).scalars().all():
            entry.invoice_id = None
    invoice.status = status
    invoice.balance_due = money(invoice.total_amount - invoice.amount_paid)
    db.flush()
    audit_service.log_crud_event(
        db, tenant, "UPDATE", "invoice", invoice.id,
        entity_name=invoice.invoice_number,
        old_values=before,
        new_values={"status": invoice.status, "amount_paid": invoice.amount_paid},
    )
    return invoice
