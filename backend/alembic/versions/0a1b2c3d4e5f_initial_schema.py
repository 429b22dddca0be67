"""initial_schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-19 09:00:00.000000

Organizations, users, clients/contracts, tickets, SLA definitions and
violations, escalation rules and the firing ledger, audit log, SMS outbox,
time tracking and invoicing.

audit_logs is append-only at the DB level: UPDATE is revoked. DELETE stays
granted for the retention job.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0a1b2c3d4e5f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def _org() -> sa.Column:
    return sa.Column(
        'organization_id', postgresql.UUID(as_uuid=True),
        sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False,
    )


def _fk(name: str, target: str, ondelete: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto;')

    op.create_table(
        'organizations',
        _id(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organizations_slug', 'organizations', ['slug'], unique=True)

    op.create_table(
        'users',
        _id(),
        _org(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False, server_default=''),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_organization_id', 'users', ['organization_id'])
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'clients',
        _id(),
        _org(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('company_name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('hourly_rate', sa.Numeric(10, 2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_clients_organization_id', 'clients', ['organization_id'])
    op.create_index('ix_clients_email', 'clients', ['email'])

    op.create_table(
        'contracts',
        _id(),
        _org(),
        _fk('client_id', 'clients.id', 'CASCADE', nullable=False),
        sa.Column('contract_number', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('monthly_value', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('hourly_rate', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('included_hours', sa.Integer(), nullable=False, server_default='0'),
        _fk('created_by', 'users.id', 'SET NULL'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('contract_number'),
    )
    op.create_index('ix_contracts_organization_id', 'contracts', ['organization_id'])
    op.create_index('ix_contracts_client_id', 'contracts', ['client_id'])

    op.create_table(
        'sla_definitions',
        _id(),
        _org(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('priority', sa.String(20), nullable=False),
        sa.Column('ticket_type', sa.String(20), nullable=False),
        sa.Column('response_time_hours', sa.Integer(), nullable=False),
        sa.Column('resolution_time_hours', sa.Integer(), nullable=False),
        sa.Column('business_hours_start', sa.Integer(), nullable=False, server_default='9'),
        sa.Column('business_hours_end', sa.Integer(), nullable=False, server_default='17'),
        sa.Column('business_days', sa.JSON(), nullable=False),
        sa.Column('holidays', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sla_definitions_organization_id', 'sla_definitions', ['organization_id'])
    op.create_index(
        'uq_sla_definitions_active_scope', 'sla_definitions',
        ['organization_id', 'priority', 'ticket_type'],
        unique=True, postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'tickets',
        _id(),
        _org(),
        sa.Column('ticket_number', sa.String(50), nullable=False),
        _fk('client_id', 'clients.id', 'CASCADE', nullable=False),
        _fk('contract_id', 'contracts.id', 'SET NULL'),
        _fk('created_by', 'users.id', 'SET NULL'),
        _fk('assigned_to', 'users.id', 'SET NULL'),
        sa.Column('subject', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('priority', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(30), nullable=False, server_default='open'),
        sa.Column('type', sa.String(20), nullable=False, server_default='incident'),
        sa.Column('source', sa.String(20), nullable=False, server_default='portal'),
        _fk('sla_definition_id', 'sla_definitions.id', 'SET NULL'),
        sa.Column('response_due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('first_response_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status_changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('priority_changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_spent_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ticket_number'),
    )
    op.create_index('ix_tickets_organization_id', 'tickets', ['organization_id'])
    op.create_index('ix_tickets_client_id', 'tickets', ['client_id'])
    op.create_index('ix_tickets_assigned_to', 'tickets', ['assigned_to'])
    op.create_index('ix_tickets_priority', 'tickets', ['priority'])
    op.create_index('ix_tickets_status', 'tickets', ['status'])
    op.create_index('ix_tickets_due_date', 'tickets', ['due_date'])

    op.create_table(
        'ticket_comments',
        _id(),
        _fk('ticket_id', 'tickets.id', 'CASCADE', nullable=False),
        _fk('user_id', 'users.id', 'SET NULL'),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ticket_comments_ticket_id', 'ticket_comments', ['ticket_id'])

    op.create_table(
        'sla_violations',
        _id(),
        _org(),
        _fk('ticket_id', 'tickets.id', 'CASCADE', nullable=False),
        _fk('sla_definition_id', 'sla_definitions.id', 'SET NULL'),
        sa.Column('violation_type', sa.String(30), nullable=False),
        sa.Column('expected_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('actual_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sla_details', sa.JSON(), nullable=False),
        sa.Column('is_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sla_violations_organization_id', 'sla_violations', ['organization_id'])
    op.create_index('ix_sla_violations_ticket_id', 'sla_violations', ['ticket_id'])
    op.create_index(
        'uq_sla_violations_open', 'sla_violations',
        ['ticket_id', 'violation_type'],
        unique=True, postgresql_where=sa.text('NOT is_resolved'),
    )

    op.create_table(
        'escalation_rules',
        _id(),
        _org(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('trigger_type', sa.String(30), nullable=False),
        sa.Column('trigger_hours', sa.Float(), nullable=True),
        sa.Column('trigger_priority', sa.String(20), nullable=True),
        sa.Column('trigger_status', sa.String(30), nullable=True),
        sa.Column('action_type', sa.String(30), nullable=False),
        _fk('target_user_id', 'users.id', 'SET NULL'),
        sa.Column('target_role', sa.String(50), nullable=True),
        sa.Column('new_priority', sa.String(20), nullable=True),
        sa.Column('notification_recipients', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_escalation_rules_organization_id', 'escalation_rules', ['organization_id'])

    op.create_table(
        'escalation_firings',
        _id(),
        _org(),
        _fk('rule_id', 'escalation_rules.id', 'CASCADE', nullable=False),
        _fk('ticket_id', 'tickets.id', 'CASCADE', nullable=False),
        sa.Column('occurrence_key', sa.String(200), nullable=False),
        sa.Column('action_type', sa.String(30), nullable=False),
        sa.Column('outcome', sa.String(20), nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('fired_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rule_id', 'ticket_id', 'occurrence_key', name='uq_escalation_firing_occurrence'),
    )
    op.create_index('ix_escalation_firings_organization_id', 'escalation_firings', ['organization_id'])
    op.create_index('ix_escalation_firings_rule_id', 'escalation_firings', ['rule_id'])
    op.create_index('ix_escalation_firings_ticket_id', 'escalation_firings', ['ticket_id'])

    op.create_table(
        'audit_logs',
        _id(),
        _org(),
        _fk('actor_id', 'users.id', 'SET NULL'),
        sa.Column('actor_email', sa.String(255), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('entity_name', sa.String(255), nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(50), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('session_id', sa.String(255), nullable=True),
        sa.Column('severity', sa.String(20), nullable=False, server_default='low'),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_organization_id', 'audit_logs', ['organization_id'])
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_severity', 'audit_logs', ['severity'])
    op.create_index('ix_audit_logs_org_created', 'audit_logs', ['organization_id', 'created_at'])

    op.create_table(
        'sms_settings',
        _id(),
        _org(),
        sa.Column('provider', sa.String(20), nullable=False, server_default='twilio'),
        sa.Column('account_sid', sa.String(255), nullable=True),
        sa.Column('auth_token', sa.String(255), nullable=True),
        sa.Column('from_number', sa.String(20), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('provider_config', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', name='uq_sms_settings_org'),
    )
    op.create_index('ix_sms_settings_organization_id', 'sms_settings', ['organization_id'])

    op.create_table(
        'sms_templates',
        _id(),
        _org(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('template', sa.Text(), nullable=False),
        sa.Column('variables', sa.JSON(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sms_templates_organization_id', 'sms_templates', ['organization_id'])
    op.create_index('ix_sms_templates_type', 'sms_templates', ['type'])

    op.create_table(
        'sms_notifications',
        _id(),
        _org(),
        _fk('user_id', 'users.id', 'SET NULL'),
        _fk('client_id', 'clients.id', 'SET NULL'),
        _fk('ticket_id', 'tickets.id', 'SET NULL'),
        sa.Column('to_number', sa.String(20), nullable=False),
        sa.Column('from_number', sa.String(20), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('provider_message_id', sa.String(255), nullable=True),
        sa.Column('provider_response', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sms_notifications_organization_id', 'sms_notifications', ['organization_id'])
    op.create_index('ix_sms_notifications_ticket_id', 'sms_notifications', ['ticket_id'])
    op.create_index('ix_sms_notifications_status', 'sms_notifications', ['status'])
    op.create_index('ix_sms_notifications_next_retry_at', 'sms_notifications', ['next_retry_at'])

    op.create_table(
        'user_sms_preferences',
        _id(),
        _fk('user_id', 'users.id', 'CASCADE', nullable=False),
        sa.Column('phone_number', sa.String(20), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notification_types', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'phone_number', name='uq_user_sms_phone'),
    )
    op.create_index('ix_user_sms_preferences_user_id', 'user_sms_preferences', ['user_id'])

    op.create_table(
        'invoices',
        _id(),
        _org(),
        _fk('client_id', 'clients.id', 'CASCADE', nullable=False),
        sa.Column('invoice_number', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('amount_paid', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('balance_due', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('paid_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _fk('created_by', 'users.id', 'SET NULL'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number'),
    )
    op.create_index('ix_invoices_organization_id', 'invoices', ['organization_id'])
    op.create_index('ix_invoices_client_id', 'invoices', ['client_id'])

    op.create_table(
        'time_entries',
        _id(),
        _org(),
        _fk('ticket_id', 'tickets.id', 'CASCADE', nullable=False),
        _fk('user_id', 'users.id', 'CASCADE', nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('minutes_spent', sa.Integer(), nullable=False),
        sa.Column('is_billable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('activity_type', sa.String(20), nullable=False, server_default='work'),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        _fk('invoice_id', 'invoices.id', 'SET NULL'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_time_entries_organization_id', 'time_entries', ['organization_id'])
    op.create_index('ix_time_entries_ticket_id', 'time_entries', ['ticket_id'])
    op.create_index('ix_time_entries_user_id', 'time_entries', ['user_id'])
    op.create_index('ix_time_entries_invoice_id', 'time_entries', ['invoice_id'])

    op.create_table(
        'billing_rates',
        _id(),
        _org(),
        _fk('user_id', 'users.id', 'CASCADE'),
        _fk('client_id', 'clients.id', 'CASCADE'),
        sa.Column('rate_name', sa.String(100), nullable=False),
        sa.Column('hourly_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('service_type', sa.String(20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('effective_date', sa.Date(), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_billing_rates_organization_id', 'billing_rates', ['organization_id'])

    op.create_table(
        'invoice_items',
        _id(),
        _fk('invoice_id', 'invoices.id', 'CASCADE', nullable=False),
        _fk('time_entry_id', 'time_entries.id', 'SET NULL'),
        _fk('ticket_id', 'tickets.id', 'SET NULL'),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('quantity', sa.Numeric(10, 2), nullable=False),
        sa.Column('unit_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('item_type', sa.String(20), nullable=False, server_default='time'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])

    # append-only audit trail; retention still deletes
    op.execute("REVOKE UPDATE ON audit_logs FROM PUBLIC;")


def downgrade() -> None:
    op.execute("GRANT UPDATE ON audit_logs TO PUBLIC;")
    for table in (
        'invoice_items', 'billing_rates', 'time_entries', 'invoices',
        'user_sms_preferences', 'sms_notifications', 'sms_templates', 'sms_settings',
        'audit_logs', 'escalation_firings', 'escalation_rules', 'sla_violations',
        'ticket_comments', 'tickets', 'sla_definitions', 'contracts', 'clients', 'users', 'organizations',
    ):
        op.drop_table(table)
