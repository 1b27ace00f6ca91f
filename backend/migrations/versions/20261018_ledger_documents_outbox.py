"""ledger documents and side-effect outbox

Revision ID: dl001_ledger_documents
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the two tables the service needs:
- ledger_documents: schemaless JSON documents of the inventory, orders,
  payments and customers collections, with an optional natural key unique
  per collection (inventory: day, payments: orderId)
- outbox_events: order side effects recorded before dispatch
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'dl001_ledger_documents'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # ledger_documents: one row per document of a logical collection
    # ============================================================================
    op.create_table(
        'ledger_documents',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('collection', sa.String(length=32), nullable=False),
        sa.Column('natural_key', sa.String(length=128), nullable=True),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('collection', 'natural_key', name='uq_ledger_documents_collection_key'),
    )
    op.create_index('ix_ledger_documents_collection', 'ledger_documents', ['collection'])
    op.create_index('ix_ledger_documents_collection_created', 'ledger_documents', ['collection', 'created_at'])

    # ============================================================================
    # outbox_events: PENDING -> DONE | FAILED
    # ============================================================================
    op.create_table(
        'outbox_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_outbox_events_event_type', 'outbox_events', ['event_type'])
    op.create_index('ix_outbox_events_order_id', 'outbox_events', ['order_id'])
    op.create_index('ix_outbox_events_status_created', 'outbox_events', ['status', 'created_at'])


def downgrade():
    op.drop_index('ix_outbox_events_status_created', table_name='outbox_events')
    op.drop_index('ix_outbox_events_order_id', table_name='outbox_events')
    op.drop_index('ix_outbox_events_event_type', table_name='outbox_events')
    op.drop_table('outbox_events')

    op.drop_index('ix_ledger_documents_collection_created', table_name='ledger_documents')
    op.drop_index('ix_ledger_documents_collection', table_name='ledger_documents')
    op.drop_table('ledger_documents')
