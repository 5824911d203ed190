"""Initial stock ledger schema

Revision ID: 20261017_stock_ledger
Revises:
Create Date: 2026-10-17

This migration adds:
1. Reference data: stock_locations, brands, phone_models (with SRP)
2. stock_events (append-only ledger, source of truth)
3. stock_entries (daily unit and aggregate rows derived from the ledger)
4. admin_audit_events (unit deletion, full reset, bulk import)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_stock_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    ]


def upgrade():
    # ==========================================================================
    # 1. REFERENCE DATA
    # ==========================================================================
    op.create_table('stock_locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )

    op.create_table('brands',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )

    op.create_table('phone_models',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.Integer(), nullable=False),
        sa.Column('model', sa.String(length=120), nullable=False),
        sa.Column('storage_capacity', sa.String(length=32), nullable=True),
        sa.Column('color', sa.String(length=64), nullable=True),
        sa.Column('srp', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('brand_id', 'model', 'storage_capacity', 'color', name='uq_phone_models_brand_model_storage_color'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_phone_models_brand_id', 'phone_models', ['brand_id'])

    # ==========================================================================
    # 2. STOCK EVENTS (LEDGER)
    # ==========================================================================
    op.create_table('stock_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('occurred_on', sa.Date(), nullable=False),
        sa.Column('imei', sa.String(length=32), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('phone_model_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('qty', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['location_id'], ['stock_locations.id']),
        sa.ForeignKeyConstraint(['phone_model_id'], ['phone_models.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_events_imei_created', 'stock_events', ['imei', 'created_at'])
    op.create_index('ix_stock_events_key_day', 'stock_events', ['imei', 'location_id', 'phone_model_id', 'occurred_on'])
    op.create_index('ix_stock_events_occurred_on', 'stock_events', ['occurred_on'])
    op.create_index('ix_stock_events_location_id', 'stock_events', ['location_id'])
    op.create_index('ix_stock_events_phone_model_id', 'stock_events', ['phone_model_id'])
    op.create_index('ix_stock_events_kind', 'stock_events', ['kind'])

    # ==========================================================================
    # 3. STOCK ENTRIES (DERIVED DAILY ROWS)
    # ==========================================================================
    op.create_table('stock_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('phone_model_id', sa.Integer(), nullable=False),
        sa.Column('imei', sa.String(length=32), nullable=True),
        sa.Column('morning_stock', sa.Integer(), nullable=False),
        sa.Column('incoming', sa.Integer(), nullable=False),
        sa.Column('add_stock', sa.Integer(), nullable=False),
        sa.Column('sold', sa.Integer(), nullable=False),
        sa.Column('returns', sa.Integer(), nullable=False),
        sa.Column('adjustment', sa.Integer(), nullable=False),
        sa.Column('night_stock', sa.Integer(), nullable=False),
        sa.Column('cost_price', sa.Integer(), nullable=True),
        sa.Column('selling_price', sa.Integer(), nullable=True),
        sa.Column('profit_loss', sa.Integer(), nullable=True),
        sa.Column('sale_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_inconsistent', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['location_id'], ['stock_locations.id']),
        sa.ForeignKeyConstraint(['phone_model_id'], ['phone_models.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('date', 'location_id', 'phone_model_id', 'imei', name='uq_stock_entries_key'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_entries_unit_key', 'stock_entries', ['imei', 'location_id', 'phone_model_id', 'date'])
    op.create_index('ix_stock_entries_date_location', 'stock_entries', ['date', 'location_id'])
    op.create_index('ix_stock_entries_location_id', 'stock_entries', ['location_id'])
    op.create_index('ix_stock_entries_phone_model_id', 'stock_entries', ['phone_model_id'])

    # ==========================================================================
    # 4. ADMIN AUDIT EVENTS
    # ==========================================================================
    op.create_table('admin_audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('actor', sa.String(length=120), nullable=True),
        sa.Column('imei', sa.String(length=32), nullable=True),
        sa.Column('detail', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_admin_audit_events_action', 'admin_audit_events', ['action'])
    op.create_index('ix_admin_audit_events_imei', 'admin_audit_events', ['imei'])


def downgrade():
    op.drop_index('ix_admin_audit_events_imei', table_name='admin_audit_events')
    op.drop_index('ix_admin_audit_events_action', table_name='admin_audit_events')
    op.drop_table('admin_audit_events')

    op.drop_index('ix_stock_entries_phone_model_id', table_name='stock_entries')
    op.drop_index('ix_stock_entries_location_id', table_name='stock_entries')
    op.drop_index('ix_stock_entries_date_location', table_name='stock_entries')
    op.drop_index('ix_stock_entries_unit_key', table_name='stock_entries')
    op.drop_table('stock_entries')

    op.drop_index('ix_stock_events_kind', table_name='stock_events')
    op.drop_index('ix_stock_events_phone_model_id', table_name='stock_events')
    op.drop_index('ix_stock_events_location_id', table_name='stock_events')
    op.drop_index('ix_stock_events_occurred_on', table_name='stock_events')
    op.drop_index('ix_stock_events_key_day', table_name='stock_events')
    op.drop_index('ix_stock_events_imei_created', table_name='stock_events')
    op.drop_table('stock_events')

    op.drop_index('ix_phone_models_brand_id', table_name='phone_models')
    op.drop_table('phone_models')
    op.drop_table('brands')
    op.drop_table('stock_locations')
