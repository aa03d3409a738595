"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

userrole = postgresql.ENUM('admin', 'manager', 'agent', name='userrole', create_type=False)
ticketstatus = postgresql.ENUM(
    'ouvert', 'en_cours', 'en_attente', 'resolu', 'cloture', name='ticketstatus', create_type=False
)
ticketcategory = postgresql.ENUM(
    'incident', 'demande', 'changement', 'developpement', name='ticketcategory', create_type=False
)
ticketpriority = postgresql.ENUM('critical', 'high', 'medium', 'low', name='ticketpriority', create_type=False)
slaunit = postgresql.ENUM('minutes', 'hours', 'days', name='slaunit', create_type=False)
slastatus = postgresql.ENUM('on_time', 'at_risk', 'violated', name='slastatus', create_type=False)
delaystatus = postgresql.ENUM(
    'unjustified', 'pending', 'justified', 'rejected', name='delaystatus', create_type=False
)
justificationstatus = postgresql.ENUM(
    'pending', 'validated', 'rejected', name='justificationstatus', create_type=False
)

ENUMS = [
    userrole,
    ticketstatus,
    ticketcategory,
    ticketpriority,
    slaunit,
    slastatus,
    delaystatus,
    justificationstatus,
]


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('username', sa.String(), nullable=False, unique=True),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('full_name', sa.String(), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('role', userrole, nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'departments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False, unique=True),
        sa.Column('code', sa.String(), nullable=False, unique=True),
        sa.Column('is_it_department', sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'department_memberships',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('department_id', sa.Uuid(), sa.ForeignKey('departments.id'), nullable=False),
        sa.Column('is_lead', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'department_id', name='uq_department_memberships_user_department'),
    )

    op.create_table(
        'tickets',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('code', sa.String(), nullable=False, unique=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', ticketcategory, nullable=False),
        sa.Column('priority', ticketpriority, server_default='medium', nullable=False),
        sa.Column('status', ticketstatus, server_default='ouvert', nullable=False),
        sa.Column('created_by_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assigned_to_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('estimated_time', sa.Integer(), nullable=True),
        sa.Column('actual_time', sa.Integer(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validated_by_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_tickets_status', 'tickets', ['status'])
    op.create_index('ix_tickets_category', 'tickets', ['category'])
    op.create_index('ix_tickets_assigned_to_id', 'tickets', ['assigned_to_id'])
    op.create_index('ix_tickets_created_at', 'tickets', ['created_at'])

    op.create_table(
        'ticket_assignees',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('is_lead', sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('ticket_id', 'user_id', name='uq_ticket_assignees_ticket_user'),
    )

    op.create_table(
        'sla_definitions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), server_default='', nullable=False),
        sa.Column('ticket_category', ticketcategory, nullable=False),
        sa.Column('priority', ticketpriority, nullable=True),
        sa.Column('target_time', sa.Integer(), nullable=False),
        sa.Column('unit', slaunit, server_default='minutes', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_by_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_sla_definitions_category_priority', 'sla_definitions', ['ticket_category', 'priority'])

    op.create_table(
        'ticket_sla',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('sla_id', sa.Uuid(), sa.ForeignKey('sla_definitions.id'), nullable=False),
        sa.Column('target_minutes', sa.Integer(), nullable=False),
        sa.Column('target_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('elapsed_time', sa.Integer(), nullable=False),
        sa.Column('remaining_time', sa.Integer(), nullable=False),
        sa.Column('status', slastatus, server_default='on_time', nullable=False),
        sa.Column('violated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('evaluated_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_ticket_sla_status', 'ticket_sla', ['status'])
    op.create_index('ix_ticket_sla_sla_id', 'ticket_sla', ['sla_id'])

    op.create_table(
        'time_entries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('time_spent', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), server_default='', nullable=False),
        sa.Column('validated', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('validated_by_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_time_entries_ticket_id', 'time_entries', ['ticket_id'])
    op.create_index('ix_time_entries_user_id', 'time_entries', ['user_id'])
    op.create_index('ix_time_entries_date', 'time_entries', ['date'])

    op.create_table(
        'delays',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('estimated_time', sa.Integer(), nullable=False),
        sa.Column('actual_time', sa.Integer(), nullable=False),
        sa.Column('delay_time', sa.Integer(), nullable=False),
        sa.Column('delay_percentage', sa.Numeric(6, 2), nullable=False),
        sa.Column('status', delaystatus, server_default='unjustified', nullable=False),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_delays_ticket_id', 'delays', ['ticket_id'])
    op.create_index('ix_delays_user_id', 'delays', ['user_id'])
    op.create_index('ix_delays_status', 'delays', ['status'])

    op.create_table(
        'delay_justifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('delay_id', sa.Uuid(), sa.ForeignKey('delays.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('justification', sa.Text(), nullable=False),
        sa.Column('status', justificationstatus, server_default='pending', nullable=False),
        sa.Column('validated_by_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validation_comment', sa.Text(), server_default='', nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_delay_justifications_user_id', 'delay_justifications', ['user_id'])
    op.create_index('ix_delay_justifications_status', 'delay_justifications', ['status'])

    op.create_table(
        'ticket_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('actor_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('field_changed', sa.String(), nullable=True),
        sa.Column('old_value', sa.String(), nullable=True),
        sa.Column('new_value', sa.String(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_ticket_history_ticket_id', 'ticket_history', ['ticket_id'])
    op.create_index('ix_ticket_history_created_at', 'ticket_history', ['created_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('link_url', sa.String(), server_default='', nullable=False),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('is_read', sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_is_read', 'notifications', ['is_read'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('ticket_history')
    op.drop_table('delay_justifications')
    op.drop_table('delays')
    op.drop_table('time_entries')
    op.drop_table('ticket_sla')
    op.drop_table('sla_definitions')
    op.drop_table('ticket_assignees')
    op.drop_table('tickets')
    op.drop_table('department_memberships')
    op.drop_table('departments')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
