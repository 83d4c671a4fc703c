"""Create content pipeline tables

Revision ID: 1f3a9c2e7b10
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '1f3a9c2e7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

source_kind = sa.Enum('LINK', 'VIDEO', 'SOCIAL', 'OTHER', name='sourcekind')
item_status = sa.Enum('INBOX', 'COMPLETED', 'ARCHIVED', name='itemstatus')
processing_state = sa.Enum('SCRAPED', 'PROCESSING', 'READY', name='processingstate')
group_strategy = sa.Enum('PRE_SUMMARIZE', 'DIRECT', name='groupstrategy')
group_status = sa.Enum('PROCESSING', 'COMPLETED', name='groupstatus')


def upgrade() -> None:
    op.create_table(
        'content_items',
        sa.Column('owner_id', sa.String(128), nullable=False),
        sa.Column('item_id', sa.String(64), nullable=False),
        sa.Column('source_url', sa.String(), nullable=False),
        sa.Column('source_kind', source_kind, nullable=False),
        sa.Column('raw_title', sa.String(), nullable=True),
        sa.Column('raw_body', sa.Text(), nullable=True),
        sa.Column('raw_description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(64), nullable=True),
        sa.Column('status', item_status, nullable=False),
        sa.Column('processing_state', processing_state, nullable=False),
        sa.Column('processing_started_at', sa.DateTime(), nullable=True),
        sa.Column('group_id', sa.String(64), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('key_points', sa.JSON(), nullable=True),
        sa.Column('question', sa.Text(), nullable=True),
        sa.Column('used_fallback', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('priority_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('times_reviewed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_grouped', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('source_item_ids', sa.JSON(), nullable=True),
        sa.Column('source_urls', sa.JSON(), nullable=True),
        sa.Column('individual_summaries', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('owner_id', 'item_id')
    )
    op.create_index('ix_content_items_owner_status', 'content_items', ['owner_id', 'status'], unique=False)
    op.create_index('ix_content_items_owner_state', 'content_items', ['owner_id', 'processing_state'], unique=False)

    op.create_table(
        'processing_groups',
        sa.Column('group_id', sa.String(64), nullable=False),
        sa.Column('owner_id', sa.String(128), nullable=False),
        sa.Column('category', sa.String(64), nullable=False),
        sa.Column('item_ids', sa.JSON(), nullable=False),
        sa.Column('strategy', group_strategy, nullable=False),
        sa.Column('status', group_status, nullable=False),
        sa.Column('synthesis', sa.JSON(none_as_null=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('group_id')
    )
    op.create_index('ix_processing_groups_owner_id', 'processing_groups', ['owner_id'], unique=False)

    op.create_table(
        'dedup_records',
        sa.Column('owner_id', sa.String(128), nullable=False),
        sa.Column('fingerprint', sa.String(64), nullable=False),
        sa.Column('source_feed_id', sa.String(128), nullable=True),
        sa.Column('source_url', sa.String(), nullable=True),
        sa.Column('resulting_item_id', sa.String(64), nullable=True),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('owner_id', 'fingerprint')
    )
    op.create_index('ix_dedup_records_expires_at', 'dedup_records', ['expires_at'], unique=False)

    op.create_table(
        'processing_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('owner_id', sa.String(128), nullable=False),
        sa.Column('ref_id', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('phase', sa.String(), nullable=False),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('detail', sa.String(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_processing_events_ref', 'processing_events', ['owner_id', 'ref_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_processing_events_ref', table_name='processing_events')
    op.drop_table('processing_events')
    op.drop_index('ix_dedup_records_expires_at', table_name='dedup_records')
    op.drop_table('dedup_records')
    op.drop_index('ix_processing_groups_owner_id', table_name='processing_groups')
    op.drop_table('processing_groups')
    op.drop_index('ix_content_items_owner_state', table_name='content_items')
    op.drop_index('ix_content_items_owner_status', table_name='content_items')
    op.drop_table('content_items')
    for enum_type in (group_status, group_strategy, processing_state, item_status, source_kind):
        enum_type.drop(op.get_bind(), checkfirst=True)
