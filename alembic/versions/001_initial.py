"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_STATUS_SQL = "status IN ('OPEN', 'ACKNOWLEDGED')"


def upgrade() -> None:
    # Price observations (written by ingestion, read by the engine)
    op.create_table(
        'price_data',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('collection_point_id', sa.String(length=64), nullable=True),
        sa.Column('point_name', sa.String(length=128), nullable=True),
        sa.Column('point_type', sa.String(length=32), nullable=True),
        sa.Column('region_code', sa.String(length=32), nullable=True),
        sa.Column('region_label', sa.String(length=128), nullable=True),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('sub_type', sa.String(length=32), nullable=True),
        sa.Column('review_status', sa.String(length=32), nullable=False),
        sa.Column('input_method', sa.String(length=32), nullable=False),
        sa.Column('commodity', sa.String(length=64), nullable=False),
        sa.Column('effective_date', sa.Date(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('day_change', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('province', sa.String(length=64), nullable=True),
        sa.Column('city', sa.String(length=64), nullable=True),
        sa.Column('district', sa.String(length=64), nullable=True),
        sa.Column('location', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_price_data_commodity_effective_date', 'price_data', ['commodity', 'effective_date'])
    op.create_index('ix_price_data_collection_point_id', 'price_data', ['collection_point_id'])
    op.create_index('ix_price_data_region_code', 'price_data', ['region_code'])

    # Alert rules
    op.create_table(
        'market_alert_rules',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('rule_type', sa.String(length=32), nullable=False),
        sa.Column('threshold', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('days', sa.Integer(), nullable=True),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('severity', sa.String(length=16), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('legacy_rule_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('legacy_rule_id')
    )
    op.create_index('ix_market_alert_rules_active_priority', 'market_alert_rules', ['is_active', 'priority'])

    # Alert instances
    op.create_table(
        'market_alert_instances',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('rule_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('severity', sa.String(length=16), nullable=False),
        sa.Column('dedupe_key', sa.String(length=256), nullable=False),
        sa.Column('point_id', sa.String(length=256), nullable=False),
        sa.Column('point_name', sa.String(length=128), nullable=False),
        sa.Column('point_type', sa.String(length=32), nullable=False),
        sa.Column('region_label', sa.String(length=128), nullable=True),
        sa.Column('commodity', sa.String(length=64), nullable=False),
        sa.Column('trigger_date', sa.Date(), nullable=False),
        sa.Column('first_triggered_at', sa.DateTime(), nullable=False),
        sa.Column('last_triggered_at', sa.DateTime(), nullable=False),
        sa.Column('trigger_value', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('threshold_value', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('closed_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['rule_id'], ['market_alert_rules.id'], ondelete='RESTRICT')
    )
    op.create_index('ix_market_alert_instances_rule_created', 'market_alert_instances', ['rule_id', 'created_at'])
    op.create_index(
        'ix_market_alert_instances_status_severity_date',
        'market_alert_instances',
        ['status', 'severity', 'trigger_date'],
    )
    op.create_index('ix_market_alert_instances_commodity_date', 'market_alert_instances', ['commodity', 'trigger_date'])
    op.create_index('ix_market_alert_instances_dedupe_key', 'market_alert_instances', ['dedupe_key'])
    # At most one OPEN/ACKNOWLEDGED instance per dedupe key
    op.create_index(
        'uq_market_alert_instances_active_dedupe',
        'market_alert_instances',
        ['dedupe_key'],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_SQL),
    )

    # Alert status audit log
    op.create_table(
        'market_alert_status_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('instance_id', sa.String(length=36), nullable=False),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('from_status', sa.String(length=16), nullable=True),
        sa.Column('to_status', sa.String(length=16), nullable=False),
        sa.Column('operator', sa.String(length=128), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('meta', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['instance_id'], ['market_alert_instances.id'], ondelete='CASCADE')
    )
    op.create_index(
        'ix_market_alert_status_logs_instance_created',
        'market_alert_status_logs',
        ['instance_id', 'created_at'],
    )
    op.create_index(
        'ix_market_alert_status_logs_action_created',
        'market_alert_status_logs',
        ['action', 'created_at'],
    )


def downgrade() -> None:
    op.drop_table('market_alert_status_logs')
    op.drop_table('market_alert_instances')
    op.drop_table('market_alert_rules')
    op.drop_table('price_data')
