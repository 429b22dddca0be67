"""SMS endpoints: provider settings, templates, per-user preferences and the notification outbox."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import service_errors
from app.core.deps import get_current_user, get_tenant, require_role
from app.core.tenancy import TenantContext
from app.db.session import get_session
from app.models.user import User
from app.schemas.sms import (
    SmsNotificationOut,
    SmsPreferenceIn,
    SmsPreferenceOut,
    SmsSendIn,
    SmsSettingsOut,
    SmsSettingsUpdate,
    SmsTemplateIn,
    SmsTemplateOut,
)
from app.services import sms as sms_svc

router = APIRouter()

Session = Annotated[AsyncSession, Depends(get_session)]
Tenant = Annotated[TenantContext, Depends(get_tenant)]
_admins = Depends(require_role("admin"))
_managers = Depends(require_role("admin", "manager"))


def _settings_out(row) -> SmsSettingsOut:
    out = SmsSettingsOut.model_validate(row)
    out.has_auth_token = bool(row.auth_token)
    return out


# ─── Settings ───

@router.get("/settings", response_model=SmsSettingsOut, dependencies=[_admins])
async def get_settings(db: Session, tenant: Tenant):
    row = await db.run_sync(lambda s: sms_svc.get_settings_row(s, tenant))
    await db.commit()
    return _settings_out(row)


@router.put("/settings", response_model=SmsSettingsOut, dependencies=[_admins])
async def update_settings(body: SmsSettingsUpdate, db: Session, tenant: Tenant):
    changes = body.model_dump(exclude_unset=True)
    row = await db.run_sync(lambda s: sms_svc.update_settings(s, tenant, changes))
    await db.commit()
    return _settings_out(row)


# ─── Templates ───

@router.get("/templates", response_model=list[SmsTemplateOut])
async def list_templates(db: Session, tenant: Tenant, type: str | None = None):
    return await db.run_sync(lambda s: sms_svc.list_templates(s, tenant, type))


@router.post(
    "/templates", response_model=SmsTemplateOut, status_code=status.HTTP_201_CREATED, dependencies=[_managers]
)
async def create_template(body: SmsTemplateIn, db: Session, tenant: Tenant):
    template = await db.run_sync(lambda s: sms_svc.save_template(s, tenant, body.model_dump()))
    await db.commit()
    await db.refresh(template)
    return template


@router.put("/templates/{template_id}", response_model=SmsTemplateOut, dependencies=[_managers])
async def update_template(template_id: uuid.UUID, body: SmsTemplateIn, db: Session, tenant: Tenant):
    with service_errors():
        template = await db.run_sync(lambda s: sms_svc.save_template(s, tenant, body.model_dump(), template_id))
    await db.commit()
    await db.refresh(template)
    return template


# ─── Preferences (current user) ───

@router.get("/preferences", response_model=list[SmsPreferenceOut])
async def my_preferences(db: Session, user: Annotated[User, Depends(get_current_user)]):
    return await db.run_sync(lambda s: sms_svc.user_preferences(s, user.id))


@router.put("/preferences", response_model=SmsPreferenceOut)
async def save_preference(body: SmsPreferenceIn, db: Session, user: Annotated[User, Depends(get_current_user)]):
    pref = await db.run_sync(lambda s: sms_svc.save_user_preference(s, user.id, body.model_dump()))
    await db.commit()
    await db.refresh(pref)
    return pref


# ─── Outbox ───

@router.post("/send", response_model=SmsNotificationOut, dependencies=[_managers])
async def send(body: SmsSendIn, db: Session, tenant: Tenant):
    """Queue and attempt delivery once. Failures stay in the outbox for the retry sweep."""
    links = {"ticket_id": body.ticket_id, "client_id": body.client_id}

    def _send(s):
        if body.template_type is not None:
            return sms_svc.send_template(s, tenant, body.to_number, body.template_type, body.variables, **links)
        return sms_svc.send_sms(s, tenant, body.to_number, body.message, **links)

    with service_errors():
        notification = await db.run_sync(_send)
    await db.commit()
    return notification


@router.get("/notifications", response_model=list[SmsNotificationOut])
async def list_notifications(
    db: Session,
    tenant: Tenant,
    status_filter: str | None = Query(default=None, alias="status"),
    ticket_id: uuid.UUID | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
):
    items, _ = await db.run_sync(lambda s: sms_svc.list_notifications(
        s, tenant, status=status_filter, ticket_id=ticket_id, page=page, page_size=page_size,
    ))
    return items


@router.post("/notifications/{notification_id}/refresh", response_model=SmsNotificationOut)
async def refresh_status(notification_id: uuid.UUID, db: Session, tenant: Tenant):
    """Poll the provider for the delivery status of a sent message."""
    with service_errors():
        notification = await db.run_sync(lambda s: sms_svc.refresh_delivery_status(s, tenant, notification_id))
    await db.commit()
    return notification
