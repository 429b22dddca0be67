"""Seed default SLA definitions and escalation rules for an organization."""
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.tenancy import TenantContext
from app.db.session import AsyncSessionLocal
from app.models.escalation import EscalationRule
from app.models.organization import Organization
from app.models.sla import SlaDefinition
from app.rules.escalation_policy import parse_policy

logger = logging.getLogger(__name__)

DEFAULT_HOLIDAYS = ["2024-01-01", "2024-12-25"]

# (name, description, priority, ticket_type, response_hours, resolution_hours)
DEFAULT_SLA_DEFINITIONS = [
    ("Critical Incident Response", "SLA for critical incidents", "critical", "incident", 1, 4),
    ("High Priority Incident Response", "SLA for high priority incidents", "high", "incident", 2, 8),
    ("Medium Priority Incident Response", "SLA for medium priority incidents", "medium", "incident", 4, 24),
    ("Low Priority Incident Response", "SLA for low priority incidents", "low", "incident", 8, 48),
    ("Service Request Response", "SLA for standard service requests", "medium", "request", 4, 72),
]

DEFAULT_ESCALATION_RULES = [
    {
        "name": "Critical Incident Escalation",
        "description": "Escalate critical incidents after 2 hours without response",
        "trigger_type": "time_based", "trigger_hours": 2,
        "action_type": "notify_manager", "notification_recipients": ["manager@example.com"],
    },
    {
        "name": "High Priority Escalation",
        "description": "Reassign high priority tickets after 4 hours",
        "trigger_type": "time_based", "trigger_hours": 4,
        "action_type": "reassign_ticket", "target_role": "technician",
    },
    {
        "name": "Priority Increase on Long Wait",
        "description": "Increase priority of tickets waiting too long",
        "trigger_type": "time_based", "trigger_hours": 24,
        "action_type": "change_priority", "new_priority": "high",
    },
    {
        "name": "Stakeholder Notification",
        "description": "Notify stakeholders of critical incidents",
        "trigger_type": "priority_change", "trigger_priority": "critical",
        "action_type": "notify_stakeholders",
        "notification_recipients": ["stakeholder@example.com", "management@example.com"],
    },
]


def seed_sla_definitions(db: Session, tenant: TenantContext) -> int:
    created = 0
    for name, description, priority, ticket_type, response, resolution in DEFAULT_SLA_DEFINITIONS:
        existing = db.execute(
            select(SlaDefinition).where(
                SlaDefinition.organization_id == tenant.organization_id,
                SlaDefinition.priority == priority,
                SlaDefinition.ticket_type == ticket_type,
                SlaDefinition.is_active.is_(True),
            )
        ).scalars().first()
        if existing is not None:
            logger.info("SLA definition %s/%s already exists, skipping", priority, ticket_type)
            continue
        db.add(SlaDefinition(
            organization_id=tenant.organization_id,
            name=name,
            description=description,
            priority=priority,
            ticket_type=ticket_type,
            response_time_hours=response,
            resolution_time_hours=resolution,
            business_hours_start=9,
            business_hours_end=17,
            business_days=[1, 2, 3, 4, 5],
            holidays=list(DEFAULT_HOLIDAYS),
            is_active=True,
        ))
        created += 1
        logger.info("Seeded SLA definition: %s", name)
    return created


def seed_escalation_rules(db: Session, tenant: TenantContext) -> int:
    created = 0
    for template in DEFAULT_ESCALATION_RULES:
        existing = db.execute(
            select(EscalationRule).where(
                EscalationRule.organization_id == tenant.organization_id,
                EscalationRule.name == template["name"],
            )
        ).scalars().first()
        if existing is not None:
            logger.info("Escalation rule %s already exists, skipping", template["name"])
            continue
        rule = EscalationRule(
            organization_id=tenant.organization_id,
            name=template["name"],
            description=template["description"],
            is_active=True,
        )
        rule.apply_policy(parse_policy({k: v for k, v in template.items() if k not in ("name", "description")}))
        db.add(rule)
        created += 1
        logger.info("Seeded escalation rule: %s", template["name"])
    return created


def seed_organization_defaults(db: Session, tenant: TenantContext) -> dict:
    counts = {
        "sla_definitions": seed_sla_definitions(db, tenant),
        "escalation_rules": seed_escalation_rules(db, tenant),
    }
    db.flush()
    return counts


def _seed_all(db: Session) -> None:
    org_ids = db.execute(select(Organization.id).where(Organization.is_active.is_(True))).scalars().all()
    for org_id in org_ids:
        counts = seed_organization_defaults(db, TenantContext.system(org_id))
        logger.info("Org %s: %s", org_id, counts)


async def run_seed() -> None:
    async with AsyncSessionLocal() as db:
        await db.run_sync(_seed_all)
        await db.commit()
    logger.info("Seeding complete.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_seed())
