"""create sync engine schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Adds:
- state_portal_configs: Per-jurisdiction portal endpoints and sealed credentials
- integration_connections: Employer links to payroll and ATS providers
- integration_synced_records: Write-once external id to internal id mappings
- integration_sync_logs: One row per sync job execution
- employees / hours_worked: Records written by the connectors
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # =========================================================================
    # Create state_portal_configs table
    # =========================================================================
    op.create_table(
        'state_portal_configs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('jurisdiction_code', sa.String(2), nullable=False),
        sa.Column('jurisdiction_name', sa.String(100), nullable=True),
        sa.Column('host', sa.String(255), nullable=True),
        sa.Column('port', sa.Integer(), nullable=True),
        sa.Column('credentials_encrypted', sa.JSON(), nullable=True),  # {"userId": <sealed>, "password": <sealed>}
        sa.Column('mfa_type', sa.String(30), nullable=True),  # totp, authenticator_app, sms, email, backup_code
        sa.Column('mfa_secret_encrypted', sa.String(500), nullable=True),
        sa.Column('backup_codes_encrypted', sa.JSON(), nullable=True),
        sa.Column('challenge_questions', sa.JSON(), nullable=True),
        sa.Column('layout', sa.String(40), nullable=False, server_default='csdc_fixed_width'),
        sa.Column('max_batch_size', sa.Integer(), nullable=True),
        sa.Column('submission_frequency', sa.String(20), nullable=False, server_default='weekly'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),  # active, maintenance, disabled
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('credentials_rotated_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_index('ix_state_portal_configs_jurisdiction_code', 'state_portal_configs', ['jurisdiction_code'], unique=True)
    op.create_index('idx_state_portal_configs_status', 'state_portal_configs', ['status'])

    # =========================================================================
    # Create integration_connections table
    # =========================================================================
    op.create_table(
        'integration_connections',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('employer_id', sa.String(64), nullable=False),
        sa.Column('provider_id', sa.String(100), nullable=False),
        sa.Column('provider_kind', sa.String(20), nullable=False),  # greenhouse, bamboohr, adp, gusto, quickbooks
        sa.Column('display_name', sa.String(255), nullable=True),

        # Sealed by the credential vault
        sa.Column('access_token', sa.String(2000), nullable=True),
        sa.Column('refresh_token', sa.String(2000), nullable=True),
        sa.Column('api_key', sa.String(1000), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('provider_metadata', sa.JSON(), nullable=True),
        sa.Column('field_mappings', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),

        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_status', sa.String(20), nullable=True),
        sa.Column('last_sync_error', sa.Text(), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_index('ix_integration_connections_employer_id', 'integration_connections', ['employer_id'])
    op.create_index('ix_integration_connections_provider_kind', 'integration_connections', ['provider_kind'])
    op.create_index('ix_integration_connections_status', 'integration_connections', ['status'])

    # =========================================================================
    # Create integration_synced_records table
    # =========================================================================
    op.create_table(
        'integration_synced_records',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('connection_id', sa.Integer(), sa.ForeignKey('integration_connections.id'), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('external_type', sa.String(50), nullable=False),  # employee, payroll
        sa.Column('internal_id', sa.Integer(), nullable=False),
        sa.Column('internal_type', sa.String(50), nullable=False),  # employee, hours_worked
        sa.Column('last_synced_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('connection_id', 'external_id', 'external_type', name='uq_synced_record_external'),
    )

    op.create_index('ix_integration_synced_records_connection_id', 'integration_synced_records', ['connection_id'])

    # =========================================================================
    # Create integration_sync_logs table
    # =========================================================================
    op.create_table(
        'integration_sync_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('connection_id', sa.Integer(), sa.ForeignKey('integration_connections.id'), nullable=False),
        sa.Column('employer_id', sa.String(64), nullable=True),
        sa.Column('provider_id', sa.String(100), nullable=True),
        sa.Column('job_id', sa.String(150), nullable=True),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),  # completed, failed
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_created', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_details', sa.JSON(), nullable=True),
    )

    op.create_index('ix_integration_sync_logs_connection_id', 'integration_sync_logs', ['connection_id'])
    op.create_index('ix_integration_sync_logs_employer_id', 'integration_sync_logs', ['employer_id'])
    op.create_index('ix_integration_sync_logs_status', 'integration_sync_logs', ['status'])
    op.create_index('ix_integration_sync_logs_started_at', 'integration_sync_logs', ['started_at'])
    op.create_index('idx_integration_sync_logs_conn_started', 'integration_sync_logs', ['connection_id', 'started_at'])

    # =========================================================================
    # Create employees and hours_worked tables
    # =========================================================================
    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('employer_id', sa.String(64), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('address', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(2), nullable=True),
        sa.Column('zip_code', sa.String(10), nullable=True),
        sa.Column('job_title', sa.String(150), nullable=True),
        sa.Column('department', sa.String(150), nullable=True),
        sa.Column('hire_date', sa.Date(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('screening_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('target_group', sa.String(100), nullable=True),
        sa.Column('certification_number', sa.String(50), nullable=True),
        sa.Column('credit_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_index('ix_employees_employer_id', 'employees', ['employer_id'])
    op.create_index('ix_employees_email', 'employees', ['email'])

    op.create_table(
        'hours_worked',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('employer_id', sa.String(64), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('hours', sa.Numeric(8, 2), nullable=False, server_default='0'),
        sa.Column('wages', sa.Numeric(12, 2), nullable=True),
        sa.Column('source', sa.String(20), nullable=False, server_default='manual'),  # manual, payroll_system
        sa.Column('source_reference', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('employee_id', 'period_start', 'period_end', name='uq_hours_worked_period'),
    )

    op.create_index('ix_hours_worked_employee_id', 'hours_worked', ['employee_id'])
    op.create_index('ix_hours_worked_employer_id', 'hours_worked', ['employer_id'])


def downgrade() -> None:
    op.drop_index('ix_hours_worked_employer_id', table_name='hours_worked')
    op.drop_index('ix_hours_worked_employee_id', table_name='hours_worked')
    op.drop_table('hours_worked')

    op.drop_index('ix_employees_email', table_name='employees')
    op.drop_index('ix_employees_employer_id', table_name='employees')
    op.drop_table('employees')

    op.drop_index('idx_integration_sync_logs_conn_started', table_name='integration_sync_logs')
    op.drop_index('ix_integration_sync_logs_started_at', table_name='integration_sync_logs')
    op.drop_index('ix_integration_sync_logs_status', table_name='integration_sync_logs')
    op.drop_index('ix_integration_sync_logs_employer_id', table_name='integration_sync_logs')
    op.drop_index('ix_integration_sync_logs_connection_id', table_name='integration_sync_logs')
    op.drop_table('integration_sync_logs')

    op.drop_index('ix_integration_synced_records_connection_id', table_name='integration_synced_records')
    op.drop_table('integration_synced_records')

    op.drop_index('ix_integration_connections_status', table_name='integration_connections')
    op.drop_index('ix_integration_connections_provider_kind', table_name='integration_connections')
    op.drop_index('ix_integration_connections_employer_id', table_name='integration_connections')
    op.drop_table('integration_connections')

    op.drop_index('idx_state_portal_configs_status', table_name='state_portal_configs')
    op.drop_index('ix_state_portal_configs_jurisdiction_code', table_name='state_portal_configs')
    op.drop_table('state_portal_configs')
