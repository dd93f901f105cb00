"""create user, event and weekly_score tables

Revision ID: 5c2d7e91a0b4
Revises:
Create Date: 2026-02-10 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2d7e91a0b4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('timezone', sa.String(length=64), nullable=False, server_default='UTC'),
            sa.Column('api_token', sa.String(length=128), nullable=False),
            sa.Column('created_at', sa.BigInteger(), nullable=False),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)
        op.create_index('ix_user_api_token', 'user', ['api_token'], unique=True)

    if 'event' not in existing_tables:
        op.create_table(
            'event',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id', ondelete='CASCADE'), nullable=False),
            sa.Column('client_id', sa.String(length=64), nullable=False),
            sa.Column('event_type', sa.String(length=10), nullable=False),
            sa.Column('timestamp', sa.BigInteger(), nullable=False),
            sa.Column('source', sa.String(length=20), nullable=False),
            sa.Column('created_at', sa.BigInteger(), nullable=False),
            sa.UniqueConstraint('user_id', 'client_id', name='uq_event_user_client'),
            sa.CheckConstraint("event_type IN ('lock', 'unlock')", name='ck_event_type'),
        )
        op.create_index('ix_event_user_timestamp', 'event', ['user_id', 'timestamp'])
        op.create_index('ix_event_user_created_at', 'event', ['user_id', 'created_at'])

    if 'weekly_score' not in existing_tables:
        op.create_table(
            'weekly_score',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id', ondelete='CASCADE'), nullable=False),
            sa.Column('week_start', sa.Date(), nullable=False),
            sa.Column('total_points', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('streak_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('longest_streak', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('calculated_at', sa.BigInteger(), nullable=False),
            sa.UniqueConstraint('user_id', 'week_start', name='uq_weekly_score_user_week'),
        )
        op.create_index('ix_weekly_score_week_start', 'weekly_score', ['week_start'])


def downgrade():
    op.drop_index('ix_weekly_score_week_start', table_name='weekly_score')
    op.drop_table('weekly_score')
    op.drop_index('ix_event_user_created_at', table_name='event')
    op.drop_index('ix_event_user_timestamp', table_name='event')
    op.drop_table('event')
    op.drop_index('ix_user_api_token', table_name='user')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
