"""Rate limiter singleton; import from here to avoid circular deps."""
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.config import settings


def client_address(request: Request) -> str:
    """Left-most X-Forwarded-For hop when behind the proxy, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=client_address,
    storage_uri=settings.REDIS_URL if settings.APP_ENV == "production" else "memory://",
)
