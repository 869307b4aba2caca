"""Initial database schema

Revision ID: 001
Revises: 
Create Date: 2026-10-18 09:00:00
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create provider and usage tables."""
    
    # Create providers table
    op.create_table(
        'providers',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('models', sa.JSON(), nullable=False),
        sa.Column('credential', sa.Text(), nullable=True),
        sa.Column('endpoint', sa.String(255), nullable=True),
        sa.Column('max_requests_per_minute', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('max_cost_per_day_usd', sa.Float(), nullable=False, server_default='10.0'),
        sa.Column('timeout_ms', sa.Integer(), nullable=False, server_default='30000'),
        sa.Column('retry_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('health_check_interval_ms', sa.Integer(), nullable=False, server_default='300000'),
        sa.Column('health_status', sa.String(20), nullable=False, server_default='unknown'),
        sa.Column('last_health_check_at', sa.DateTime(), nullable=True),
        sa.Column('last_health_error', sa.Text(), nullable=True),
        sa.Column('last_response_time_ms', sa.Integer(), nullable=True),
        sa.Column('total_requests', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cost_usd', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_providers_name', 'providers', ['name'], unique=True)
    op.create_index('ix_providers_type', 'providers', ['type'])
    op.create_index('ix_providers_health_status', 'providers', ['health_status'])
    op.create_index('idx_provider_enabled_priority', 'providers', ['enabled', 'priority'])
    
    # Create usage_records table (no foreign key: history outlives providers)
    op.create_table(
        'usage_records',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=True),
        sa.Column('provider_id', sa.String(36), nullable=False),
        sa.Column('provider_name', sa.String(100), nullable=True),
        sa.Column('provider_type', sa.String(20), nullable=False),
        sa.Column('model', sa.String(100), nullable=False),
        sa.Column('tokens_in', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tokens_out', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_usd', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('latency_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_kind', sa.String(50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_usage_records_user_id', 'usage_records', ['user_id'])
    op.create_index('ix_usage_records_success', 'usage_records', ['success'])
    op.create_index('ix_usage_records_created_at', 'usage_records', ['created_at'])
    op.create_index('idx_usage_provider_created', 'usage_records', ['provider_id', 'created_at'])
    op.create_index('idx_usage_user_created', 'usage_records', ['user_id', 'created_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('usage_records')
    op.drop_table('providers')
