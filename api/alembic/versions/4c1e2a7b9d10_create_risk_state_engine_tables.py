"""create_risk_state_engine_tables

Revision ID: 4c1e2a7b9d10
Revises:
Create Date: 2025-07-01 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1e2a7b9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('organization_id'),
        sa.UniqueConstraint('name')
    )

    op.create_table(
        'users',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.organization_id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('email')
    )
    op.create_index(op.f('ix_users_organization_id'), 'users', ['organization_id'], unique=False)

    op.create_table(
        'audit_logs',
        sa.Column('log_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('log_id')
    )
    op.create_index(op.f('ix_audit_logs_log_id'), 'audit_logs', ['log_id'], unique=False)
    op.create_index(op.f('ix_audit_logs_organization_id'), 'audit_logs', ['organization_id'], unique=False)

    op.create_table(
        'controls',
        sa.Column('control_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('control_code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('control_type', sa.String(length=20), nullable=False,
                  comment='preventive | detective | corrective'),
        sa.Column('target', sa.String(length=20), nullable=False, comment='likelihood | impact'),
        sa.Column('design_score', sa.Integer(), nullable=False),
        sa.Column('implementation_score', sa.Integer(), nullable=False),
        sa.Column('monitoring_score', sa.Integer(), nullable=False),
        sa.Column('evaluation_score', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.organization_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('control_id'),
        sa.UniqueConstraint('organization_id', 'control_code', name='uq_controls_org_code')
    )
    op.create_index(op.f('ix_controls_organization_id'), 'controls', ['organization_id'], unique=False)

    op.create_table(
        'risks',
        sa.Column('risk_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('risk_code', sa.String(length=20), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('inherent_likelihood', sa.Integer(), nullable=False),
        sa.Column('inherent_impact', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.organization_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['owner_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('risk_id'),
        sa.UniqueConstraint('organization_id', 'risk_code', name='uq_risks_org_code')
    )
    op.create_index(op.f('ix_risks_organization_id'), 'risks', ['organization_id'], unique=False)
    op.create_index(op.f('ix_risks_status'), 'risks', ['status'], unique=False)

    op.create_table(
        'risk_control_links',
        sa.Column('link_id', sa.Integer(), nullable=False),
        sa.Column('risk_id', sa.Integer(), nullable=False),
        sa.Column('control_id', sa.Integer(), nullable=False),
        sa.Column('design_score', sa.Integer(), nullable=True),
        sa.Column('implementation_score', sa.Integer(), nullable=True),
        sa.Column('monitoring_score', sa.Integer(), nullable=True),
        sa.Column('evaluation_score', sa.Integer(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['risk_id'], ['risks.risk_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['control_id'], ['controls.control_id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('link_id'),
        sa.UniqueConstraint('risk_id', 'control_id', name='uq_risk_control_links_pair')
    )
    op.create_index(op.f('ix_risk_control_links_risk_id'), 'risk_control_links', ['risk_id'], unique=False)
    op.create_index(op.f('ix_risk_control_links_control_id'), 'risk_control_links', ['control_id'], unique=False)

    op.create_table(
        'treatment_alerts',
        sa.Column('alert_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('risk_id', sa.Integer(), nullable=False),
        sa.Column('likelihood_delta', sa.Integer(), nullable=False),
        sa.Column('impact_delta', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False,
                  comment='pending | accepted | rejected | applied | withdrawn'),
        sa.Column('source_event_ref', sa.String(length=255), nullable=True),
        sa.Column('rationale', sa.Text(), nullable=True),
        sa.Column('confidence', sa.Integer(), nullable=True),
        sa.Column('reviewed_by_id', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('applied_at', sa.DateTime(), nullable=True),
        sa.Column('withdrawn_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.organization_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['risk_id'], ['risks.risk_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['reviewed_by_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('alert_id')
    )
    op.create_index(op.f('ix_treatment_alerts_organization_id'), 'treatment_alerts', ['organization_id'], unique=False)
    op.create_index('ix_treatment_alerts_risk_status', 'treatment_alerts', ['risk_id', 'status'], unique=False)

    # Risk and alert kept by value: entries outlive deleted risks
    op.create_table(
        'treatment_log_entries',
        sa.Column('log_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('risk_id', sa.Integer(), nullable=False),
        sa.Column('alert_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=10), nullable=False, comment='APPLY | UNDO'),
        sa.Column('previous_likelihood', sa.Integer(), nullable=False),
        sa.Column('new_likelihood', sa.Integer(), nullable=False),
        sa.Column('previous_impact', sa.Integer(), nullable=False),
        sa.Column('new_impact', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_by_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['actor_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['deleted_by_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('log_id')
    )
    op.create_index(op.f('ix_treatment_log_entries_organization_id'), 'treatment_log_entries', ['organization_id'], unique=False)
    op.create_index(op.f('ix_treatment_log_entries_risk_id'), 'treatment_log_entries', ['risk_id'], unique=False)
    op.create_index(op.f('ix_treatment_log_entries_alert_id'), 'treatment_log_entries', ['alert_id'], unique=False)

    op.create_table(
        'periods',
        sa.Column('period_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='open | committed'),
        sa.Column('opened_at', sa.DateTime(), nullable=False),
        sa.Column('committed_at', sa.DateTime(), nullable=True),
        sa.Column('committed_by_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('risks_count', sa.Integer(), nullable=True),
        sa.Column('active_risks_count', sa.Integer(), nullable=True),
        sa.Column('closed_risks_count', sa.Integer(), nullable=True),
        sa.Column('controls_count', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.organization_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['committed_by_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('period_id')
    )
    # At most one open period per organization
    op.create_index(
        'uq_periods_one_open_per_org', 'periods', ['organization_id'], unique=True,
        postgresql_where=sa.text("status = 'open'"),
        sqlite_where=sa.text("status = 'open'"),
    )
    op.create_index('ix_periods_org_committed_at', 'periods', ['organization_id', 'committed_at'], unique=False)

    op.create_table(
        'risk_history',
        sa.Column('history_id', sa.Integer(), nullable=False),
        sa.Column('period_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('risk_id', sa.Integer(), nullable=False),
        sa.Column('committed_at', sa.DateTime(), nullable=False),
        sa.Column('risk_code', sa.String(length=20), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('inherent_likelihood', sa.Integer(), nullable=False),
        sa.Column('inherent_impact', sa.Integer(), nullable=False),
        sa.Column('working_likelihood', sa.Integer(), nullable=False),
        sa.Column('working_impact', sa.Integer(), nullable=False),
        sa.Column('residual_likelihood', sa.Integer(), nullable=False),
        sa.Column('residual_impact', sa.Integer(), nullable=False),
        sa.Column('residual_score', sa.Integer(), nullable=False),
        sa.Column('control_effectiveness', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['period_id'], ['periods.period_id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('history_id'),
        sa.UniqueConstraint('period_id', 'risk_id', name='uq_risk_history_period_risk')
    )
    op.create_index(op.f('ix_risk_history_period_id'), 'risk_history', ['period_id'], unique=False)
    op.create_index(op.f('ix_risk_history_organization_id'), 'risk_history', ['organization_id'], unique=False)
    op.create_index('ix_risk_history_risk_committed_at', 'risk_history', ['risk_id', 'committed_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_risk_history_risk_committed_at', table_name='risk_history')
    op.drop_index(op.f('ix_risk_history_organization_id'), table_name='risk_history')
    op.drop_index(op.f('ix_risk_history_period_id'), table_name='risk_history')
    op.drop_table('risk_history')
    op.drop_index('ix_periods_org_committed_at', table_name='periods')
    op.drop_index('uq_periods_one_open_per_org', table_name='periods')
    op.drop_table('periods')
    op.drop_index(op.f('ix_treatment_log_entries_alert_id'), table_name='treatment_log_entries')
    op.drop_index(op.f('ix_treatment_log_entries_risk_id'), table_name='treatment_log_entries')
    op.drop_index(op.f('ix_treatment_log_entries_organization_id'), table_name='treatment_log_entries')
    op.drop_table('treatment_log_entries')
    op.drop_index('ix_treatment_alerts_risk_status', table_name='treatment_alerts')
    op.drop_index(op.f('ix_treatment_alerts_organization_id'), table_name='treatment_alerts')
    op.drop_table('treatment_alerts')
    op.drop_index(op.f('ix_risk_control_links_control_id'), table_name='risk_control_links')
    op.drop_index(op.f('ix_risk_control_links_risk_id'), table_name='risk_control_links')
    op.drop_table('risk_control_links')
    op.drop_index(op.f('ix_risks_status'), table_name='risks')
    op.drop_index(op.f('ix_risks_organization_id'), table_name='risks')
    op.drop_table('risks')
    op.drop_index(op.f('ix_controls_organization_id'), table_name='controls')
    op.drop_table('controls')
    op.drop_index(op.f('ix_audit_logs_organization_id'), table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_log_id'), table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index(op.f('ix_users_organization_id'), table_name='users')
    op.drop_table('users')
    op.drop_table('organizations')
