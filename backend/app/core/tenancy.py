"""Explicit tenant scope passed into every service call."""
import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    organization_id: uuid.UUID
    actor_id: uuid.UUID | None = None
    actor_email: str | None = None
    actor_role: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None

    @classmethod
    def system(cls, organization_id: uuid.UUID) -> "TenantContext":
        """Context for scheduler-driven work (no human actor)."""
        return cls(organization_id=organization_id, actor_email="system")
