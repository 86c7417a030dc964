"""Billing schema: invoices, line items, payments and rate tables

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision=18, scale=6), nullable=nullable)


def upgrade() -> None:
    # Create invoices table
    op.create_table('invoices',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('number', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('issue_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payment_terms_days', sa.Integer(), nullable=False),
        sa.Column('decimal_places', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('discount_type', sa.String(length=16), nullable=True),
        _money('discount_value', nullable=True),
        _money('subtotal'),
        _money('tax_total'),
        _money('discount_amount'),
        _money('total'),
        _money('amount_paid'),
        _money('balance_due'),
        sa.Column('customer', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('rate_table', sa.JSON(), nullable=True),
        sa.Column('package_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('number', name='uq_invoice_number')
    )
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_package_id', 'invoices', ['package_id'])
    op.create_index('ix_invoices_status_due', 'invoices', ['status', 'due_date'])

    # Create invoice_line_items table
    op.create_table('invoice_line_items',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('invoice_id', sa.String(length=32), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        _money('quantity'),
        _money('unit_price'),
        _money('tax_rate_percent'),
        _money('amount'),
        _money('tax_amount'),
        _money('total'),
        sa.Column('package_id', sa.String(length=64), nullable=True),
        sa.Column('tracking_number', sa.String(length=64), nullable=True),
        sa.Column('service_type', sa.String(length=32), nullable=True),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_invoice_line_items_invoice_id', 'invoice_line_items', ['invoice_id'])

    # Create invoice_payments table
    op.create_table('invoice_payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('invoice_id', sa.String(length=32), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        _money('amount'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id', 'position', name='uq_invoice_payment_position')
    )
    op.create_index('ix_invoice_payments_invoice_id', 'invoice_payments', ['invoice_id'])

    # Create rate_tables table
    op.create_table('rate_tables',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('rates', sa.JSON(), nullable=False),
        sa.Column('updated_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_rate_tables_created_at', 'rate_tables', ['created_at'])


def downgrade() -> None:
    op.drop_table('rate_tables')
    op.drop_table('invoice_payments')
    op.drop_table('invoice_line_items')
    op.drop_table('invoices')
