"""add_payments_tables

Revision ID: 3c5e9a1f42b7
Revises:
Create Date: 2025-10-06 09:30:12.418302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3c5e9a1f42b7'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # payments：账本表，users / delivery_requests 由其他模块维护
    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=32), nullable=False, comment='主键ID（UUID hex）'),
        sa.Column('request_id', sa.String(length=64), nullable=False, comment='配送请求ID'),
        sa.Column('provider_intent_id', sa.String(length=255), nullable=False, comment='渠道句柄'),
        sa.Column('customer_id', sa.String(length=255), nullable=False, comment='付款方（打款行为收款方）渠道ID'),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False, comment='金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD', comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='状态'),
        sa.Column('type', sa.String(length=20), nullable=False, server_default='delivery_payment', comment='类型: delivery_payment/refund/payout'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('captured_at', sa.DateTime(timezone=True), nullable=True, comment='扣款时间'),
        sa.Column('transferred_at', sa.DateTime(timezone=True), nullable=True, comment='打款时间'),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True, comment='退款时间'),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True, comment='失败时间'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('pending_operation', sa.String(length=32), nullable=True, comment='在途操作'),
        sa.Column('pending_idempotency_key', sa.String(length=128), nullable=True, comment='在途操作的幂等键'),
        sa.Column('pending_since', sa.DateTime(timezone=True), nullable=True, comment='在途开始时间'),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True, server_default=sa.text("'{}'::jsonb"), comment='扩展元数据（JSON）'),
        sa.ForeignKeyConstraint(['request_id'], ['delivery_requests.id'], name='fk_payments_request_id_delivery_requests'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.UniqueConstraint('provider_intent_id', name='uq_payments_provider_intent_id'),
        sa.CheckConstraint('amount > 0', name='ck_payments_amount_positive'),
        comment='支付账本表，记录授权、扣款、退款与打款'
    )
    op.create_index('ix_payments_request_id', 'payments', ['request_id'], unique=False)
    op.create_index('ix_payments_customer_id', 'payments', ['customer_id'], unique=False)
    op.create_index('ix_payments_status', 'payments', ['status'], unique=False)
    op.create_index('ix_payments_created_at', 'payments', ['created_at'], unique=False, postgresql_using='btree')
    op.create_index('ix_payments_pending_operation', 'payments', ['pending_operation'], unique=False)

    op.create_table(
        'payment_methods',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('provider_method_id', sa.String(length=255), nullable=False, comment='渠道支付方式ID'),
        sa.Column('type', sa.String(length=32), nullable=False, server_default='card'),
        sa.Column('brand', sa.String(length=32), nullable=True),
        sa.Column('last_four', sa.String(length=4), nullable=True),
        sa.Column('exp_month', sa.Integer(), nullable=True),
        sa.Column('exp_year', sa.Integer(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_payment_methods_user_id_users', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_payment_methods'),
        sa.UniqueConstraint('user_id', 'provider_method_id', name='uq_payment_methods_user_provider_method'),
        comment='用户保存的支付方式'
    )
    op.create_index('ix_payment_methods_user_id', 'payment_methods', ['user_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payment_methods_user_id', table_name='payment_methods')
    op.drop_table('payment_methods')

    op.drop_index('ix_payments_pending_operation', table_name='payments')
    op.drop_index('ix_payments_created_at', table_name='payments', postgresql_using='btree')
    op.drop_index('ix_payments_status', table_name='payments')
    op.drop_index('ix_payments_customer_id', table_name='payments')
    op.drop_index('ix_payments_request_id', table_name='payments')
    op.drop_table('payments')
