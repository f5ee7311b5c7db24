"""bot detection log and adaptive rate limit tables

Revision ID: 0001_bot_detection_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_bot_detection_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'bot_detection_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=False),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('path', sa.String(length=2048), nullable=True),
        sa.Column('bot_score', sa.Integer(), nullable=False),
        sa.Column('detection_reasons', sa.JSON(), nullable=False),
        sa.Column('is_bot', sa.Boolean(), nullable=False),
        sa.Column('is_blocked', sa.Boolean(), nullable=False),
        sa.Column('behavioral_data', sa.JSON(), nullable=True),
        sa.Column('block_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('bot_detection_logs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_bot_detection_logs_ip_address'), ['ip_address'], unique=False)
        batch_op.create_index(batch_op.f('ix_bot_detection_logs_created_at'), ['created_at'], unique=False)
        batch_op.create_index(
            'ix_bot_detection_logs_ip_blocked_expires',
            ['ip_address', 'is_blocked', 'block_expires_at'],
            unique=False,
        )

    op.create_table(
        'advanced_rate_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('identifier', sa.String(length=255), nullable=False),
        sa.Column('identifier_type', sa.String(length=32), nullable=False),
        sa.Column('request_count', sa.Integer(), nullable=False),
        sa.Column('window_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_blocked', sa.Boolean(), nullable=False),
        sa.Column('block_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consecutive_violations', sa.Integer(), nullable=False),
        sa.Column('total_violations', sa.Integer(), nullable=False),
        sa.Column('last_endpoint', sa.String(length=2048), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identifier', 'identifier_type', name='uq_advanced_rate_limits_identifier_type'),
    )
    with op.batch_alter_table('advanced_rate_limits', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_advanced_rate_limits_identifier'), ['identifier'], unique=False)
        batch_op.create_index(batch_op.f('ix_advanced_rate_limits_block_expires_at'), ['block_expires_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_advanced_rate_limits_updated_at'), ['updated_at'], unique=False)


def downgrade():
    with op.batch_alter_table('advanced_rate_limits', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_advanced_rate_limits_updated_at'))
        batch_op.drop_index(batch_op.f('ix_advanced_rate_limits_block_expires_at'))
        batch_op.drop_index(batch_op.f('ix_advanced_rate_limits_identifier'))
    op.drop_table('advanced_rate_limits')

    with op.batch_alter_table('bot_detection_logs', schema=None) as batch_op:
        batch_op.drop_index('ix_bot_detection_logs_ip_blocked_expires')
        batch_op.drop_index(batch_op.f('ix_bot_detection_logs_created_at'))
        batch_op.drop_index(batch_op.f('ix_bot_detection_logs_ip_address'))
    op.drop_table('bot_detection_logs')
