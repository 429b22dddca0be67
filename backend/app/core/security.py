import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ─── Password ─────────────────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


# ─── JWT ──────────────────────────────────────────────────────────────────────
# Access tokens carry the user's role and organization; refresh tokens only the
# subject, so a role or org change takes effect at the next refresh.

@dataclass(frozen=True)
class TokenClaims:
    user_id: uuid.UUID
    token_type: str
    role: str | None = None
    organization_id: uuid.UUID | None = None


def _encode(claims: dict, lifetime: timedelta) -> str:
    claims["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_access_token(subject: str, role: str, organization_id: str) -> str:
    return _encode(
        {"sub": subject, "role": role, "org": organization_id, "type": "access"},
        timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(subject: str) -> str:
    return _encode(
        {"sub": subject, "type": "refresh"},
        timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_token(token: str) -> dict:
    """Raises JWTError on invalid/expired token."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def read_token(token: str, expected_type: str) -> TokenClaims:
    """Decode and check the token type; malformed subjects and org claims raise JWTError."""
    payload = decode_token(token)
    if payload.get("type") != expected_type:
        raise JWTError(f"expected a {expected_type} token")
    try:
        user_id = uuid.UUID(payload["sub"])
        org = uuid.UUID(payload["org"]) if payload.get("org") else None
    except (KeyError, TypeError, ValueError) as exc:
        raise JWTError("malformed token claims") from exc
    return TokenClaims(user_id=user_id, token_type=expected_type, role=payload.get("role"), organization_id=org)


__all__ = [
    "JWTError",
    "TokenClaims",
    "create_access_token",
    "create_refresh_token",
    "decode_token",
    "hash_password",
    "read_token",
    "verify_password",
]
