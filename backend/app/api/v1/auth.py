from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import get_current_user
from app.core.limiter import limiter
from app.core.security import create_access_token, create_refresh_token, read_token, verify_password
from app.core.tenancy import TenantContext
from app.db.session import get_session
from app.models.user import User
from app.schemas.auth import RefreshIn, Token, UserOut
from app.services import audit as audit_svc

router = APIRouter()


def _request_tenant(request: Request, user: User) -> TenantContext:
    return TenantContext(
        organization_id=user.organization_id,
        actor_id=user.id,
        actor_email=user.email,
        actor_role=user.role,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        session_id=request.headers.get("x-request-id"),
    )


@router.post("/login", response_model=Token)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    form: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_session),
):
    result = await db.execute(select(User).where(User.email == form.username, User.deleted_at.is_(None)))
    user = result.scalar_one_or_none()
    if not user or not verify_password(form.password, user.password_hash):
        if user is not None:
            # failed attempts against a known account are a security event
            tenant = _request_tenant(request, user)
            await db.run_sync(lambda s: audit_svc.log_security_event(
                s, tenant, "LOGIN_FAILED", f"Failed login for {user.email}",
            ))
            await db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")

    token = create_access_token(subject=str(user.id), role=user.role, organization_id=str(user.organization_id))
    refresh = create_refresh_token(subject=str(user.id))

    tenant = _request_tenant(request, user)
    await db.run_sync(lambda s: audit_svc.log_event(
        s, tenant, "LOGIN", "user", user.id,
        entity_name=user.email,
        description=f"Login from IP {tenant.ip_address or 'unknown'}",
    ))
    await db.commit()

    return {"access_token": token, "refresh_token": refresh, "token_type": "bearer"}


@router.post("/refresh", response_model=Token)
async def refresh(body: RefreshIn, db: AsyncSession = Depends(get_session)):
    invalid = HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    try:
        claims = read_token(body.refresh_token, "refresh")
    except JWTError:
        raise invalid
    user = (await db.execute(select(User).where(User.id == claims.user_id))).scalar_one_or_none()
    if user is None or not user.is_active or user.deleted_at is not None:
        raise invalid
    token = create_access_token(subject=str(user.id), role=user.role, organization_id=str(user.organization_id))
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return current_user
