"""initial stock ledger schema

Revision ID: sl001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the perishable-stock ledger schema:
- products: catalog rows whose current_stock mirrors the ledger
- monthly_stock: one row per (theater, product, year, month), optimistic version
- stock_entries: one row per ledger day inside a month
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'sl001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: concession catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('theater_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low_stock_alert', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_theater_id', 'products', ['theater_id'])
    op.create_index('ix_products_theater_name', 'products', ['theater_id', 'name'])

    # ============================================================================
    # monthly_stock: month aggregate header
    # ============================================================================
    op.create_table(
        'monthly_stock',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('theater_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('carry_forward', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_stock_added', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_used_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_expired_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_expired_old_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_damage_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closing_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('theater_id', 'product_id', 'year', 'month', name='uq_monthly_stock_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_monthly_stock_theater_id', 'monthly_stock', ['theater_id'])
    op.create_index('ix_monthly_stock_product_id', 'monthly_stock', ['product_id'])
    op.create_index('ix_monthly_stock_theater_period', 'monthly_stock', ['theater_id', 'year', 'month'])

    # ============================================================================
    # stock_entries: one ledger day
    # ============================================================================
    op.create_table(
        'stock_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('monthly_stock_id', sa.Integer(), nullable=False),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('carry_forward', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_added', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('used_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expired_old_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expired_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('damage_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reported_used_stock', sa.Integer(), nullable=True),
        sa.Column('reported_damage_stock', sa.Integer(), nullable=True),
        sa.Column('reported_expired_old_stock', sa.Integer(), nullable=True),
        sa.Column('expiry_deductions', sa.JSON(), nullable=False),
        sa.Column('expire_date', sa.Date(), nullable=True),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['monthly_stock_id'], ['monthly_stock.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('monthly_stock_id', 'entry_date', name='uq_stock_entries_month_day'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_entries_monthly_stock_id', 'stock_entries', ['monthly_stock_id'])


def downgrade():
    op.drop_index('ix_stock_entries_monthly_stock_id', table_name='stock_entries')
    op.drop_table('stock_entries')

    op.drop_index('ix_monthly_stock_theater_period', table_name='monthly_stock')
    op.drop_index('ix_monthly_stock_product_id', table_name='monthly_stock')
    op.drop_index('ix_monthly_stock_theater_id', table_name='monthly_stock')
    op.drop_table('monthly_stock')

    op.drop_index('ix_products_theater_name', table_name='products')
    op.drop_index('ix_products_theater_id', table_name='products')
    op.drop_table('products')
