"""Initial loyalty engine schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create organizations, customers, orders, tiers, rewards, segments and action plans."""
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('birthday', sa.Date(), nullable=True),
        sa.Column('source', sa.String(50), nullable=True),
        sa.Column('email_opt_in', sa.Boolean(), nullable=True),
        sa.Column('sms_opt_in', sa.Boolean(), nullable=True),
        sa.Column('status', sa.String(20), nullable=True),
        sa.Column('loyalty_member', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('loyalty_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('loyalty_tier', sa.String(20), nullable=True),
        sa.Column('loyalty_used', sa.Integer(), nullable=True),
        sa.Column('special_points', sa.Integer(), nullable=True),
        sa.Column('total_spent', sa.Numeric(12, 2), nullable=True),
        sa.Column('order_count', sa.Integer(), nullable=True),
        sa.Column('last_order_at', sa.DateTime(), nullable=True),
        sa.Column('rfm_recency', sa.Integer(), nullable=True),
        sa.Column('rfm_frequency', sa.Integer(), nullable=True),
        sa.Column('rfm_monetary', sa.Integer(), nullable=True),
        sa.Column('rfm_score', sa.String(3), nullable=True),
        sa.Column('engagement_score', sa.Integer(), nullable=True),
        sa.Column('churn_risk', sa.String(10), nullable=True),
        sa.Column('predicted_ltv', sa.Integer(), nullable=True),
        sa.Column('segment_tags', sa.JSON(), nullable=True),
        sa.Column('metrics_updated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_customers_organization_id', 'customers', ['organization_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(50), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('status', sa.String(30), nullable=True),
        sa.Column('financial_status', sa.String(30), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])

    op.create_table(
        'customer_activities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('activity_type', sa.String(30), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_customer_activities_customer_id', 'customer_activities', ['customer_id'])

    op.create_table(
        'loyalty_tiers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('tier', sa.String(20), nullable=False),
        sa.Column('name', sa.String(50), nullable=True),
        sa.Column('min_points', sa.Integer(), nullable=False),
        sa.Column('points_per_dollar', sa.Numeric(5, 2), nullable=True),
        sa.Column('benefits', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'tier', name='uq_org_loyalty_tier')
    )

    op.create_table(
        'reward_redemptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('tier', sa.String(20), nullable=True),
        sa.Column('reward_name', sa.String(255), nullable=True),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('points_spent', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(20), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('notified_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code')
    )
    op.create_index('ix_reward_redemptions_customer_id', 'reward_redemptions', ['customer_id'])

    op.create_table(
        'segments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('segment_type', sa.String(50), nullable=False),
        sa.Column('is_ai_powered', sa.Boolean(), nullable=True),
        sa.Column('auto_update', sa.Boolean(), nullable=True),
        sa.Column('conditions', sa.JSON(), nullable=True),
        sa.Column('customer_count', sa.Integer(), nullable=True),
        sa.Column('avg_lifetime_value', sa.Float(), nullable=True),
        sa.Column('avg_engagement', sa.Float(), nullable=True),
        sa.Column('insight', sa.JSON(), nullable=True),
        sa.Column('last_calculated', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'segment_type', name='uq_org_segment_type')
    )

    op.create_table(
        'segment_customers',
        sa.Column('segment_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['segment_id'], ['segments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('segment_id', 'customer_id')
    )

    op.create_table(
        'action_plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('segment_id', sa.Integer(), nullable=False),
        sa.Column('template_key', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(20), nullable=True),
        sa.Column('actions', sa.JSON(), nullable=True),
        sa.Column('metrics', sa.JSON(), nullable=True),
        sa.Column('generated_at', sa.DateTime(), nullable=True),
        sa.Column('refreshed_at', sa.DateTime(), nullable=True),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['segment_id'], ['segments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'template_key', 'segment_id', name='uq_action_plan_identity')
    )


def downgrade():
    """Drop the loyalty engine schema."""
    op.drop_table('action_plans')
    op.drop_table('segment_customers')
    op.drop_table('segments')
    op.drop_index('ix_reward_redemptions_customer_id', table_name='reward_redemptions')
    op.drop_table('reward_redemptions')
    op.drop_table('loyalty_tiers')
    op.drop_index('ix_customer_activities_customer_id', table_name='customer_activities')
    op.drop_table('customer_activities')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_customers_organization_id', table_name='customers')
    op.drop_table('customers')
    op.drop_table('organizations')
