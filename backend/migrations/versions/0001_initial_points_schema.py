"""Initial points schema: accounts, sessions, ledger, promotions, events

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17

This migration creates:
1. accounts, session_tokens, reset_requests (identity and sessions)
2. promotions, events (with organizer and guest links)
3. transactions plus transaction_promotions and promotion_consumptions
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. ACCOUNTS AND SESSIONS
    # ==========================================================================
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('utorid', sa.String(length=8), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=50), nullable=True),
        sa.Column('birthday', sa.Date(), nullable=True),
        sa.Column('avatar_url', sa.String(length=512), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='regular'),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('suspicious', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('password_hash', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('reset_token', sa.String(length=64), nullable=True),
        sa.Column('reset_expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('utorid', name='uq_accounts_utorid'),
        sa.UniqueConstraint('email', name='uq_accounts_email'),
        sa.UniqueConstraint('reset_token'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('accounts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_accounts_utorid'), ['utorid'], unique=False)
        batch_op.create_index(batch_op.f('ix_accounts_role'), ['role'], unique=False)

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_session_tokens_account_id'), ['account_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)

    op.create_table('reset_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('account_id', sa.Integer(), nullable=True),
        sa.Column('requested_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('reset_requests', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_reset_requests_ip_address'), ['ip_address'], unique=False)
        batch_op.create_index(batch_op.f('ix_reset_requests_requested_at'), ['requested_at'], unique=False)

    # ==========================================================================
    # 2. PROMOTIONS AND EVENTS
    # ==========================================================================
    op.create_table('promotions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('min_spending', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('rate', sa.Numeric(precision=10, scale=4), nullable=True),
        sa.Column('points', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint("type IN ('automatic', 'onetime')", name='ck_promotions_type'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('promotions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_promotions_type'), ['type'], unique=False)
        batch_op.create_index(batch_op.f('ix_promotions_start_time'), ['start_time'], unique=False)
        batch_op.create_index(batch_op.f('ix_promotions_end_time'), ['end_time'], unique=False)

    op.create_table('events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('location', sa.String(length=255), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('points_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_remain', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_awarded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('published', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('points_remain >= 0', name='ck_events_points_remain'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_events_name'), ['name'], unique=False)
        batch_op.create_index(batch_op.f('ix_events_start_time'), ['start_time'], unique=False)
        batch_op.create_index(batch_op.f('ix_events_end_time'), ['end_time'], unique=False)
        batch_op.create_index(batch_op.f('ix_events_published'), ['published'], unique=False)

    for table, constraint in (('event_organizers', 'uq_event_organizers'), ('event_guests', 'uq_event_guests')):
        columns = [
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('event_id', sa.Integer(), nullable=False),
            sa.Column('account_id', sa.Integer(), nullable=False),
        ]
        if table == 'event_guests':
            columns.append(sa.Column('joined_at', sa.DateTime(), nullable=False))
        op.create_table(table,
            *columns,
            sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
            sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('event_id', 'account_id', name=constraint),
            sqlite_autoincrement=True
        )
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.create_index(batch_op.f(f'ix_{table}_event_id'), ['event_id'], unique=False)
            batch_op.create_index(batch_op.f(f'ix_{table}_account_id'), ['account_id'], unique=False)

    # ==========================================================================
    # 3. LEDGER
    # ==========================================================================
    op.create_table('transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('spent', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('redeemed', sa.Integer(), nullable=True),
        sa.Column('related_id', sa.Integer(), nullable=True),
        sa.Column('event_id', sa.Integer(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('processed_by_id', sa.Integer(), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('suspicious', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('remark', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint(
            "type IN ('purchase', 'transfer', 'redemption', 'adjustment', 'event')",
            name='ck_transactions_type',
        ),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['related_id'], ['transactions.id'], ),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.ForeignKeyConstraint(['created_by_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['processed_by_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transactions', schema=None) as batch_op:
        batch_op.create_index('ix_transactions_account_type', ['account_id', 'type'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_account_id'), ['account_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_type'), ['type'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_related_id'), ['related_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_event_id'), ['event_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_created_by_id'), ['created_by_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_suspicious'), ['suspicious'], unique=False)

    op.create_table('transaction_promotions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('promotion_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.ForeignKeyConstraint(['promotion_id'], ['promotions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', 'promotion_id', name='uq_transaction_promotions'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transaction_promotions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_transaction_promotions_transaction_id'), ['transaction_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transaction_promotions_promotion_id'), ['promotion_id'], unique=False)

    op.create_table('promotion_consumptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('promotion_id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('consumed_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['promotion_id'], ['promotions.id'], ),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'promotion_id', name='uq_promotion_consumptions'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('promotion_consumptions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_promotion_consumptions_account_id'), ['account_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_promotion_consumptions_promotion_id'), ['promotion_id'], unique=False)


def downgrade():
    for table in (
        'promotion_consumptions',
        'transaction_promotions',
        'transactions',
        'event_guests',
        'event_organizers',
        'events',
        'promotions',
        'reset_requests',
        'session_tokens',
        'accounts',
    ):
        op.drop_table(table)
