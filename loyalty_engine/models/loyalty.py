"""
Loyalty tier and reward redemption models.

The tier ladder is fixed (BRONZE..DIAMOND). Organizations may store their
own thresholds and benefits in loyalty_tiers; with no rows the built-in
defaults apply (see services.tier_service).
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from ..extensions import db


# ==================== Enums ====================

class LoyaltyTierLevel(str, Enum):
    """Loyalty tier levels, lowest first."""
    BRONZE = 'BRONZE'
    SILVER = 'SILVER'
    GOLD = 'GOLD'
    PLATINUM = 'PLATINUM'
    DIAMOND = 'DIAMOND'


TIER_ORDER = [level.value for level in LoyaltyTierLevel]


def tier_rank(tier: str) -> int:
    """Position of a tier in the ladder; unknown tiers rank below BRONZE."""
    try:
        return TIER_ORDER.index((tier or '').upper())
    except ValueError:
        return -1


class RewardRedemptionStatus(str, Enum):
    """Status of a reward redemption."""
    ACTIVE = 'active'         # Issued, not yet used
    USED = 'used'             # Applied at checkout
    CANCELLED = 'cancelled'   # Cancelled by admin


# ==================== Models ====================

class LoyaltyTier(db.Model):
    """
    Organization-defined tier threshold.

    Ordered by min_points ascending the thresholds must be strictly
    increasing and BRONZE must sit at 0. An invalid table is ignored in
    favour of the defaults.
    """
    __tablename__ = 'loyalty_tiers'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)

    tier = db.Column(db.String(20), nullable=False)  # LoyaltyTierLevel value
    name = db.Column(db.String(50))
    min_points = db.Column(db.Integer, nullable=False, default=0)
    points_per_dollar = db.Column(db.Numeric(5, 2), default=Decimal('1'))
    benefits = db.Column(db.JSON, default=list)  # ["10% discount", "Free shipping"]

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'tier', name='uq_org_loyalty_tier'),
    )

    def __repr__(self):
        return f'<LoyaltyTier {self.tier} >= {self.min_points}>'

    def to_dict(self):
        return {
            'id': self.id,
            'tier': self.tier,
            'name': self.name or self.tier.title(),
            'min_points': self.min_points,
            'points_per_dollar': float(self.points_per_dollar or 0),
            'benefits': self.benefits or []
        }


class RewardRedemption(db.Model):
    """
    Issued reward code.

    Codes starting with TIER- celebrate a tier promotion. They cost no
    points and never expire (expires_at stays NULL).
    """
    __tablename__ = 'reward_redemptions'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)

    code = db.Column(db.String(50), unique=True, nullable=False)
    tier = db.Column(db.String(20))  # Tier the reward was issued for
    reward_name = db.Column(db.String(255))

    discount_percent = db.Column(db.Numeric(5, 2))
    discount_amount = db.Column(db.Numeric(10, 2))
    points_spent = db.Column(db.Integer, default=0)

    status = db.Column(db.String(20), default=RewardRedemptionStatus.ACTIVE.value)
    expires_at = db.Column(db.DateTime)
    notified_at = db.Column(db.DateTime)  # Handed to the notification collaborator

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<RewardRedemption {self.code}>'

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'customer_id': self.customer_id,
            'tier': self.tier,
            'reward_name': self.reward_name,
            'discount_percent': float(self.discount_percent) if self.discount_percent is not None else None,
            'discount_amount': float(self.discount_amount) if self.discount_amount is not None else None,
            'points_spent': self.points_spent,
            'status': self.status,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
