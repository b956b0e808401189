"""Add processing_records and worker_state tables

Revision ID: eb_001
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'eb_001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'processing_records',
        sa.Column('event_id', sa.String(100), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('symbol', sa.String(20), nullable=False),
        sa.Column('token_amount', sa.String(80), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('quantity', sa.String(40), nullable=True),
        sa.Column('client_order_id', sa.String(128), nullable=True),
        sa.Column('brokerage_order_id', sa.String(64), nullable=True),
        sa.Column('settlement_tx_hash', sa.String(66), nullable=True),
        sa.Column('settlement_nonce', sa.BigInteger(), nullable=True),
        sa.Column('prior_settlement_tx_hashes', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('settlement_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('error_type', sa.String(50), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('event_id', name='pk_processing_records'),
    )
    op.create_index('ix_processing_records_status', 'processing_records', ['status'])
    op.create_index('ix_processing_records_block_log', 'processing_records', ['block_number', 'log_index'])

    op.create_table(
        'worker_state',
        sa.Column('key', sa.String(100), nullable=False),
        sa.Column('value', sa.Text(), nullable=False, server_default=''),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('key', name='pk_worker_state'),
    )


def downgrade() -> None:
    op.drop_table('worker_state')
    op.drop_index('ix_processing_records_block_log', table_name='processing_records')
    op.drop_index('ix_processing_records_status', table_name='processing_records')
    op.drop_table('processing_records')
