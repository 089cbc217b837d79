"""
Database models for the loyalty engine.
Customers, orders, loyalty tiers, rewards, segments and action plans.
"""
from .organization import Organization
from .customer import Customer, Order, CustomerActivity
from .loyalty import (
    LoyaltyTierLevel,
    RewardRedemptionStatus,
    TIER_ORDER,
    tier_rank,
    LoyaltyTier,
    RewardRedemption,
)
from .segment import Segment, segment_customers
from .action_plan import ActionPlan, ActionPlanStatus, ActionStatus

__all__ = [
    'Organization',
    'Customer',
    'Order',
    'CustomerActivity',
    # Loyalty
    'LoyaltyTierLevel',
    'RewardRedemptionStatus',
    'TIER_ORDER',
    'tier_rank',
    'LoyaltyTier',
    'RewardRedemption',
    # Segmentation
    'Segment',
    'segment_customers',
    'ActionPlan',
    'ActionPlanStatus',
    'ActionStatus',
]
