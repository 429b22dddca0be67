from fastapi import APIRouter

from app.api.v1 import audit, auth, billing, clients, dashboard, escalation, sla, sms, tickets

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(tickets.router, prefix="/tickets", tags=["tickets"])
api_router.include_router(sla.router, prefix="/sla", tags=["sla"])
api_router.include_router(escalation.router, tags=["escalation"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
api_router.include_router(sms.router, prefix="/sms", tags=["sms"])
api_router.include_router(clients.router, tags=["clients"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
