from app.models.organization import Organization
from app.models.user import User, ROLES
from app.models.client import Client, Contract, ClientStatus, ContractStatus, ContractType
from app.models.sla import SlaDefinition, SlaViolation
from app.models.ticket import (
    Ticket, TicketComment, TicketPriority, TicketSource, TicketStatus, TicketType, TERMINAL_STATUSES,
)
from app.models.escalation import EscalationRule, EscalationFiring
from app.models.audit import AuditLog, SEVERITIES
from app.models.sms import SmsSettings, SmsTemplate, SmsNotification, UserSmsPreference, SmsStatus, SmsTemplateType
from app.models.billing import TimeEntry, BillingRate, Invoice, InvoiceItem, ActivityType, InvoiceStatus

__all__ = [
    "Organization",
    "User", "ROLES",
    "Client", "Contract", "ClientStatus", "ContractStatus", "ContractType",
    "SlaDefinition", "SlaViolation",
    "Ticket", "TicketComment", "TicketPriority", "TicketSource", "TicketStatus", "TicketType", "TERMINAL_STATUSES",
    "EscalationRule", "EscalationFiring",
    "AuditLog", "SEVERITIES",
    "SmsSettings", "SmsTemplate", "SmsNotification", "UserSmsPreference", "SmsStatus", "SmsTemplateType",
    "TimeEntry", "BillingRate", "Invoice", "InvoiceItem", "ActivityType", "InvoiceStatus",
]
