from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'product_stats',
        sa.Column('entity_id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('view_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('purchase_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('revenue', sa.Float, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, index=True),
        sa.Column('updated_at', sa.DateTime),
    )
    op.create_index('ix_product_stats_product_id', 'product_stats', ['product_id'], unique=True)
    op.create_table(
        'product_stats_idx',
        sa.Column('product_id', sa.Integer, primary_key=True, autoincrement=False),
        sa.Column('view_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('purchase_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('revenue', sa.Float, nullable=False, server_default='0'),
        sa.Column('conversion_rate', sa.Float, nullable=False, server_default='0', index=True),
        sa.Column('average_order_value', sa.Float, nullable=False, server_default='0'),
        sa.Column('popularity_tier', sa.String(16), nullable=False, server_default='low', index=True),
        sa.Column('indexed_at', sa.DateTime),
    )
    op.create_index('ix_stats_idx_tier_views', 'product_stats_idx', ['popularity_tier', 'view_count'])
    op.create_table(
        'indexer_changelog',
        sa.Column('version', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('index_name', sa.String(64), nullable=False, index=True),
        sa.Column('natural_id', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime),
    )
    op.create_index('ux_changelog_index_natural', 'indexer_changelog', ['index_name', 'natural_id'], unique=True)
    op.create_table(
        'indexer_state',
        sa.Column('index_name', sa.String(64), primary_key=True),
        sa.Column('mode', sa.String(16), nullable=False, server_default='immediate'),
        sa.Column('status', sa.String(16), nullable=False, server_default='new', index=True),
        sa.Column('last_full_reindex_at', sa.DateTime, nullable=True),
        sa.Column('last_changelog_run_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime),
    )


def downgrade():
    op.drop_table('indexer_state')
    op.drop_index('ux_changelog_index_natural', table_name='indexer_changelog')
    op.drop_table('indexer_changelog')
    op.drop_index('ix_stats_idx_tier_views', table_name='product_stats_idx')
    op.drop_table('product_stats_idx')
    op.drop_index('ix_product_stats_product_id', table_name='product_stats')
    op.drop_table('product_stats')
