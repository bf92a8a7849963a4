"""Initial migration - create payment intent, provider transaction, reconciliation and invoice tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(18, 4)


def upgrade() -> None:
    op.create_table(
        'registration_intents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('payment_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'invoices',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('invoice_number', sa.String(30), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('purpose', sa.String(50), nullable=True),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('subtotal', MONEY, nullable=False),
        sa.Column('tax_total', MONEY, nullable=False),
        sa.Column('discount_total', MONEY, nullable=False),
        sa.Column('total', MONEY, nullable=False),
        sa.Column('amount_paid', MONEY, nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('institution_id', sa.String(36), nullable=True),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'invoice_lines',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('invoice_id', sa.String(36), sa.ForeignKey('invoices.id'), nullable=False),
        sa.Column('description', sa.String(200), nullable=False),
        sa.Column('item_code', sa.String(50), nullable=True),
        sa.Column('quantity', MONEY, nullable=False),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('line_subtotal', MONEY, nullable=False),
        sa.Column('tax_amount', MONEY, nullable=False),
        sa.Column('discount_amount', MONEY, nullable=False),
        sa.Column('line_total', MONEY, nullable=False),
        sa.Column('content_product_id', sa.String(36), nullable=True),
        sa.Column('legal_document_id', sa.String(36), nullable=True),
    )
    op.create_index('ix_invoice_lines_invoice_id', 'invoice_lines', ['invoice_id'])

    op.create_table(
        'invoice_sequences',
        sa.Column('year', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'payment_intents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('purpose', sa.String(50), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('institution_id', sa.String(36), nullable=True),
        sa.Column('registration_intent_id', sa.String(36), sa.ForeignKey('registration_intents.id'), nullable=True),
        sa.Column('content_product_id', sa.String(36), nullable=True),
        sa.Column('content_product_price_id', sa.String(36), nullable=True),
        sa.Column('legal_document_id', sa.String(36), nullable=True),
        sa.Column('duration_in_months', sa.Integer(), nullable=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('provider_reference', sa.String(120), nullable=True),
        sa.Column('checkout_request_id', sa.String(120), nullable=True),
        sa.Column('merchant_request_id', sa.String(120), nullable=True),
        sa.Column('mpesa_receipt_number', sa.String(60), nullable=True),
        sa.Column('provider_transaction_id', sa.String(100), nullable=True),
        sa.Column('provider_paid_at', sa.DateTime(), nullable=True),
        sa.Column('provider_channel', sa.String(50), nullable=True),
        sa.Column('provider_result_code', sa.String(50), nullable=True),
        sa.Column('provider_result_desc', sa.Text(), nullable=True),
        sa.Column('manual_reference', sa.String(120), nullable=True),
        sa.Column('is_finalized', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approved_by_user_id', sa.String(36), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('invoice_id', sa.String(36), sa.ForeignKey('invoices.id'), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('provider', 'provider_reference', name='uq_payment_intents_provider_reference'),
        sa.UniqueConstraint('provider', 'provider_transaction_id', name='uq_payment_intents_provider_transaction_id'),
    )
    op.create_index('ix_payment_intents_checkout_request_id', 'payment_intents', ['checkout_request_id'])
    op.create_index('ix_payment_intents_status_finalized', 'payment_intents', ['status', 'is_finalized'])
    op.create_index('ix_payment_intents_created_at', 'payment_intents', ['created_at'])

    op.create_table(
        'payment_provider_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('provider_transaction_id', sa.String(100), nullable=False),
        sa.Column('reference', sa.String(120), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('channel', sa.String(50), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('raw_json', sa.Text(), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('provider', 'provider_transaction_id', name='uq_provider_transactions_provider_txid'),
    )
    op.create_index('ix_provider_transactions_reference', 'payment_provider_transactions', ['provider', 'reference'])

    op.create_table(
        'payment_reconciliation_runs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(20), nullable=True),
        sa.Column('from_utc', sa.DateTime(), nullable=False),
        sa.Column('to_utc', sa.DateTime(), nullable=False),
        sa.Column('performed_by_user_id', sa.String(36), nullable=True),
        sa.Column('mode', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'payment_reconciliation_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('run_id', sa.String(36), sa.ForeignKey('payment_reconciliation_runs.id'), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('reference', sa.String(120), nullable=True),
        sa.Column('payment_intent_id', sa.String(36), sa.ForeignKey('payment_intents.id'), nullable=True),
        sa.Column('provider_transaction_ref_id', sa.String(36), sa.ForeignKey('payment_provider_transactions.id'), nullable=True),
        sa.Column('invoice_id', sa.String(36), sa.ForeignKey('invoices.id'), nullable=True),
        sa.Column('status', sa.String(40), nullable=False),
        sa.Column('reason', sa.String(50), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_payment_reconciliation_items_run_id', 'payment_reconciliation_items', ['run_id'])
    op.create_index('ix_reconciliation_items_created_at', 'payment_reconciliation_items', ['created_at'])
    op.create_index('ix_reconciliation_items_status', 'payment_reconciliation_items', ['status'])

    op.create_table(
        'content_product_prices',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('content_product_id', sa.String(36), nullable=False),
        sa.Column('billing_period', sa.String(20), nullable=False),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('effective_from_utc', sa.DateTime(), nullable=True),
        sa.Column('effective_to_utc', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_content_product_prices_content_product_id', 'content_product_prices', ['content_product_id'])

    op.create_table(
        'user_product_subscriptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('content_product_id', sa.String(36), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('is_trial', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('granted_by_user_id', sa.String(36), nullable=True),
        sa.UniqueConstraint('user_id', 'content_product_id', name='uq_user_product_subscriptions_user_product'),
    )

    op.create_table(
        'user_legal_document_purchases',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('legal_document_id', sa.String(36), nullable=False),
        sa.Column('purchased_at', sa.DateTime(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('payment_reference', sa.String(120), nullable=True),
        sa.UniqueConstraint('user_id', 'legal_document_id', name='uq_legal_document_purchases_user_document'),
    )


def downgrade() -> None:
    op.drop_table('user_legal_document_purchases')
    op.drop_table('user_product_subscriptions')
    op.drop_index('ix_content_product_prices_content_product_id', table_name='content_product_prices')
    op.drop_table('content_product_prices')

    op.drop_index('ix_reconciliation_items_status', table_name='payment_reconciliation_items')
    op.drop_index('ix_reconciliation_items_created_at', table_name='payment_reconciliation_items')
    op.drop_index('ix_payment_reconciliation_items_run_id', table_name='payment_reconciliation_items')
    op.drop_table('payment_reconciliation_items')
    op.drop_table('payment_reconciliation_runs')

    op.drop_index('ix_provider_transactions_reference', table_name='payment_provider_transactions')
    op.drop_table('payment_provider_transactions')

    op.drop_index('ix_payment_intents_created_at', table_name='payment_intents')
    op.drop_index('ix_payment_intents_status_finalized', table_name='payment_intents')
    op.drop_index('ix_payment_intents_checkout_request_id', table_name='payment_intents')
    op.drop_table('payment_intents')

    op.drop_table('invoice_sequences')
    op.drop_index('ix_invoice_lines_invoice_id', table_name='invoice_lines')
    op.drop_table('invoice_lines')
    op.drop_table('invoices')
    op.drop_table('registration_intents')
