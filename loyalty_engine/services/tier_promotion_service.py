"""
Tier Promotion Service (Redemption/Expiry Manager).

When a customer moves UP the tier ladder they receive a congratulatory
discount code:
- code format TIER-<TIER>-<8 hex chars>
- no points are spent
- the code never expires (expires_at is NULL)

Downward moves update the tier silently and issue nothing.

Before issuing, an active TIER- code for the same customer and tier is
looked up and reused. This closes the window where two overlapping passes
both detect the same promotion and issue two codes.
"""
import re
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple
from flask import current_app

from ..extensions import db
from ..models.customer import Customer
from ..models.loyalty import RewardRedemption, RewardRedemptionStatus, tier_rank
from .tier_service import TierService

TIER_CODE_PREFIX = 'TIER-'

# Fallback discounts when a tier's benefits don't spell one out
DEFAULT_TIER_DISCOUNTS = {
    'BRONZE': (0, 0),
    'SILVER': (5, 0),
    'GOLD': (10, 0),
    'PLATINUM': (15, 0),
    'DIAMOND': (20, 0),
}

_PERCENT_PATTERN = re.compile(r'(\d+(?:\.\d+)?)%\s*discount', re.IGNORECASE)
_AMOUNT_PATTERN = re.compile(r'\$(\d+(?:\.\d+)?)\s*off', re.IGNORECASE)


def extract_discount(tier: str, benefits) -> Tuple[Decimal, Decimal]:
    """
    Discount (percent, fixed amount) advertised in a tier's benefit strings.

    Recognises "10% discount" and "$5 off". Falls back to the default
    discount for the tier when no benefit matches.
    """
    default_percent, default_amount = DEFAULT_TIER_DISCOUNTS.get(tier, (0, 0))
    percent = None
    amount = None

    for benefit in benefits or []:
        if not isinstance(benefit, str):
            continue
        if percent is None:
            match = _PERCENT_PATTERN.search(benefit)
            if match:
                percent = Decimal(match.group(1))
        if amount is None:
            match = _AMOUNT_PATTERN.search(benefit)
            if match:
                amount = Decimal(match.group(1))

    return (
        percent if percent is not None else Decimal(default_percent),
        amount if amount is not None else Decimal(default_amount),
    )


def format_discount_label(percent: Decimal, amount: Decimal) -> str:
    """Human-readable discount, e.g. '15% Off + $10 Off'."""
    parts = []
    if percent and percent > 0:
        parts.append(f'{percent.normalize():f}% Off')
    if amount and amount > 0:
        parts.append(f'${amount.normalize():f} Off')
    return ' + '.join(parts) or 'Special Offer'


def generate_tier_code(tier: str) -> str:
    return f'{TIER_CODE_PREFIX}{tier}-{secrets.token_hex(4).upper()}'


class TierPromotionService:
    """
    Issues tier-promotion rewards and keeps their expiry policy intact.

    Usage:
        service = TierPromotionService(organization_id)
        result = service.check_and_promote(customer)
    """

    def __init__(self, organization_id: int, tier_service: TierService = None):
        self.organization_id = organization_id
        self.tier_service = tier_service or TierService(organization_id)

    # ==================== Tier Change Handling ====================

    def on_tier_change(
        self,
        customer: Customer,
        old_tier: str,
        new_tier: str,
        commit: bool = True
    ) -> Optional[RewardRedemption]:
        """
        Issue a promotion reward for an upward tier transition.

        Returns:
            The issued (or already existing) reward, or None when the
            transition is not upward
        """
        if tier_rank(new_tier) <= tier_rank(old_tier or 'BRONZE'):
            return None

        existing = self._find_active_tier_reward(customer.id, new_tier)
        if existing:
            current_app.logger.info(
                f'Tier reward {existing.code} already issued to customer {customer.id} for {new_tier}, reusing'
            )
            return existing

        threshold = self.tier_service.load_tier_table().get(new_tier)
        percent, amount = extract_discount(new_tier, threshold.benefits if threshold else [])
        label = format_discount_label(percent, amount)

        reward = RewardRedemption(
            organization_id=self.organization_id,
            customer_id=customer.id,
            code=generate_tier_code(new_tier),
            tier=new_tier,
            reward_name=f'{new_tier} Tier Promotion - {label}',
            discount_percent=percent if percent > 0 else None,
            discount_amount=amount if amount > 0 else None,
            points_spent=0,
            status=RewardRedemptionStatus.ACTIVE.value,
            expires_at=None
        )
        db.session.add(reward)

        if commit:
            try:
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.info(
            f'Tier promotion reward {reward.code} ({label}) issued to customer {customer.id}'
        )
        return reward

    def check_and_promote(
        self,
        customer: Customer,
        points: int = None,
        dry_run: bool = False,
        commit: bool = True
    ) -> Dict[str, Any]:
        """
        Re-resolve a customer's tier from their points and apply the change.

        Args:
            customer: Customer to check
            points: Point balance to resolve (defaults to stored points)
            dry_run: Report what would happen without writing

        Returns:
            Dict with promoted flag, previous/new tier and issued code
        """
        previous_tier = customer.loyalty_tier or 'BRONZE'
        balance = customer.loyalty_points if points is None else points
        resolved = self.tier_service.resolve_tier(balance or 0)

        result = {
            'customer_id': customer.id,
            'points': balance or 0,
            'previous_tier': previous_tier,
            'new_tier': resolved,
            'promoted': tier_rank(resolved) > tier_rank(previous_tier),
            'changed': resolved != previous_tier,
            'code': None
        }

        if dry_run or not result['changed']:
            return result

        customer.loyalty_tier = resolved

        if result['promoted']:
            reward = self.on_tier_change(customer, previous_tier, resolved, commit=False)
            result['code'] = reward.code if reward else None
            current_app.logger.info(
                f'Customer {customer.id} promoted from {previous_tier} to {resolved}'
            )
        else:
            current_app.logger.info(
                f'Customer {customer.id} tier moved from {previous_tier} to {resolved}'
            )

        if commit:
            try:
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        return result

    def retroactive_promote(self, dry_run: bool = False) -> Dict[str, Any]:
        """
        Promote every loyalty member whose stored points already qualify them
        for a higher tier.
        """
        customers = Customer.query.filter_by(
            organization_id=self.organization_id,
            loyalty_member=True
        ).order_by(Customer.loyalty_points.desc()).all()

        results = {
            'dry_run': dry_run,
            'total_scanned': len(customers),
            'promoted': 0,
            'unchanged': 0,
            'failed': 0,
            'promotions': []
        }

        for customer in customers:
            try:
                outcome = self.check_and_promote(customer, dry_run=dry_run)
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(f'Retroactive promotion failed for customer {customer.id}: {e}')
                results['failed'] += 1
                continue

            if outcome['promoted']:
                results['promoted'] += 1
                results['promotions'].append({
                    'customer_id': customer.id,
                    'name': customer.full_name,
                    'email': customer.email,
                    'points': outcome['points'],
                    'previous_tier': outcome['previous_tier'],
                    'new_tier': outcome['new_tier'],
                    'code': outcome['code']
                })
            else:
                results['unchanged'] += 1

        return results

    # ==================== Expiry Policy ====================

    @staticmethod
    def repair_tier_code_expiry() -> int:
        """
        Clear expires_at on every TIER- code, across all organizations.

        Idempotent: once every tier code has a NULL expiry, returns 0.

        Returns:
            Number of rows changed
        """
        updated = RewardRedemption.query.filter(
            RewardRedemption.code.startswith(TIER_CODE_PREFIX),
            RewardRedemption.expires_at.isnot(None)
        ).update({RewardRedemption.expires_at: None}, synchronize_session='fetch')
        db.session.commit()

        current_app.logger.info(f'Updated {updated} tier promotion codes to never expire')
        return updated

    # ==================== Notification Hand-off ====================

    def pending_notifications(self) -> List[RewardRedemption]:
        """Tier codes not yet handed to the notification collaborator."""
        return RewardRedemption.query.filter(
            RewardRedemption.organization_id == self.organization_id,
            RewardRedemption.code.startswith(TIER_CODE_PREFIX),
            RewardRedemption.notified_at.is_(None)
        ).order_by(RewardRedemption.created_at.asc()).all()

    def mark_notified(self, redemption_ids: List[int]) -> int:
        if not redemption_ids:
            return 0
        updated = RewardRedemption.query.filter(
            RewardRedemption.organization_id == self.organization_id,
            RewardRedemption.id.in_(redemption_ids),
            RewardRedemption.notified_at.is_(None)
        ).update({RewardRedemption.notified_at: datetime.utcnow()}, synchronize_session='fetch')
        db.session.commit()
        return updated

    # ==================== Helpers ====================

    def _find_active_tier_reward(self, customer_id: int, tier: str) -> Optional[RewardRedemption]:
        return RewardRedemption.query.filter(
            RewardRedemption.customer_id == customer_id,
            RewardRedemption.tier == tier,
            RewardRedemption.code.startswith(TIER_CODE_PREFIX),
            RewardRedemption.status == RewardRedemptionStatus.ACTIVE.value
        ).first()
