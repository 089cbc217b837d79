"""
Tests for tier promotion rewards and the expiry policy.
"""
import re
from datetime import datetime, timedelta
from decimal import Decimal


CODE_PATTERN = re.compile(r'^TIER-[A-Z]+-[0-9A-F]{8}$')


def tier_rewards(customer_id):
    from loyalty_engine.models import RewardRedemption

    return RewardRedemption.query.filter(
        RewardRedemption.customer_id == customer_id,
        RewardRedemption.code.startswith('TIER-')
    ).all()


class TestDiscountHelpers:
    """Tests for benefit parsing and labels."""

    def test_extract_percent_and_amount(self):
        """Test both discount forms are read from benefits."""
        from loyalty_engine.services.tier_promotion_service import extract_discount

        percent, amount = extract_discount('GOLD', ['12% discount', '$5 off next order'])

        assert percent == Decimal('12')
        assert amount == Decimal('5')

    def test_extract_falls_back_to_tier_default(self):
        """Test the default tier discount applies without a matching benefit."""
        from loyalty_engine.services.tier_promotion_service import extract_discount

        assert extract_discount('PLATINUM', ['Free shipping']) == (Decimal('15'), Decimal('0'))

    def test_label(self):
        """Test label formatting."""
        from loyalty_engine.services.tier_promotion_service import format_discount_label

        assert format_discount_label(Decimal('15'), Decimal('10')) == '15% Off + $10 Off'
        assert format_discount_label(Decimal('0'), Decimal('0')) == 'Special Offer'

    def test_code_format(self):
        """Test generated codes follow TIER-<TIER>-<8 hex>."""
        from loyalty_engine.services.tier_promotion_service import generate_tier_code

        assert CODE_PATTERN.match(generate_tier_code('GOLD'))
        assert generate_tier_code('GOLD') != generate_tier_code('GOLD')


class TestOnTierChange:
    """Tests for reward issuance on tier transitions."""

    def test_upward_move_issues_non_expiring_code(self, app, sample_customer):
        """Test BRONZE -> GOLD issues one TIER code without expiry."""
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        service = TierPromotionService(sample_customer.organization_id)
        reward = service.on_tier_change(sample_customer, 'BRONZE', 'GOLD')

        assert reward is not None
        assert CODE_PATTERN.match(reward.code)
        assert reward.code.startswith('TIER-GOLD-')
        assert reward.expires_at is None
        assert reward.points_spent == 0
        assert reward.discount_percent == Decimal('10')

    def test_downward_move_issues_nothing(self, app, sample_customer):
        """Test a downward transition issues no reward."""
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        service = TierPromotionService(sample_customer.organization_id)

        assert service.on_tier_change(sample_customer, 'GOLD', 'SILVER') is None
        assert service.on_tier_change(sample_customer, 'GOLD', 'GOLD') is None
        assert tier_rewards(sample_customer.id) == []

    def test_existing_active_reward_reused(self, app, sample_customer):
        """Test a second detection of the same promotion reuses the code."""
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        service = TierPromotionService(sample_customer.organization_id)
        first = service.on_tier_change(sample_customer, 'BRONZE', 'SILVER')
        second = service.on_tier_change(sample_customer, 'BRONZE', 'SILVER')

        assert first.id == second.id
        assert len(tier_rewards(sample_customer.id)) == 1


class TestCheckAndPromote:
    """Tests for check_and_promote."""

    def test_promotion_updates_tier_and_issues_code(self, app, sample_customer):
        """Test crossing a threshold promotes and issues a reward."""
        from loyalty_engine.extensions import db
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        sample_customer.loyalty_points = 1600
        db.session.commit()

        result = TierPromotionService(sample_customer.organization_id).check_and_promote(sample_customer)

        assert result['promoted'] is True
        assert result['previous_tier'] == 'BRONZE'
        assert result['new_tier'] == 'GOLD'
        assert result['code'].startswith('TIER-GOLD-')
        assert sample_customer.loyalty_tier == 'GOLD'

    def test_downward_move_is_silent(self, app, sample_customer):
        """Test a tier above the points is lowered without a reward."""
        from loyalty_engine.extensions import db
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        sample_customer.loyalty_points = 600
        sample_customer.loyalty_tier = 'GOLD'
        db.session.commit()

        result = TierPromotionService(sample_customer.organization_id).check_and_promote(sample_customer)

        assert result['promoted'] is False
        assert result['changed'] is True
        assert result['code'] is None
        assert sample_customer.loyalty_tier == 'SILVER'
        assert tier_rewards(sample_customer.id) == []

    def test_dry_run_changes_nothing(self, app, sample_customer):
        """Test dry run reports without writing."""
        from loyalty_engine.extensions import db
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        sample_customer.loyalty_points = 5200
        db.session.commit()

        result = TierPromotionService(sample_customer.organization_id).check_and_promote(
            sample_customer, dry_run=True
        )

        assert result['new_tier'] == 'DIAMOND'
        assert result['promoted'] is True
        assert sample_customer.loyalty_tier == 'BRONZE'
        assert tier_rewards(sample_customer.id) == []


class TestRetroactivePromote:
    """Tests for retroactive_promote."""

    def test_promotes_qualified_members(self, app, sample_organization, make_customer):
        """Test members already over a threshold are promoted once."""
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        gold = make_customer(email='gold@example.com', loyalty_points=1700)
        bronze = make_customer(email='bronze@example.com', loyalty_points=100)
        make_customer(email='guest@example.com', loyalty_points=9000, loyalty_member=False)

        service = TierPromotionService(sample_organization.id)
        result = service.retroactive_promote()

        assert result['total_scanned'] == 2
        assert result['promoted'] == 1
        assert result['unchanged'] == 1
        assert result['promotions'][0]['customer_id'] == gold.id
        assert gold.loyalty_tier == 'GOLD'
        assert bronze.loyalty_tier == 'BRONZE'

        again = service.retroactive_promote()
        assert again['promoted'] == 0
        assert len(tier_rewards(gold.id)) == 1


class TestRepairTierCodeExpiry:
    """Tests for the one-time expiry repair."""

    def _reward(self, customer, code, expires_at):
        from loyalty_engine.extensions import db
        from loyalty_engine.models import RewardRedemption

        reward = RewardRedemption(
            organization_id=customer.organization_id,
            customer_id=customer.id,
            code=code,
            expires_at=expires_at
        )
        db.session.add(reward)
        db.session.commit()
        return reward

    def test_repair_clears_tier_expiry_only(self, app, sample_customer):
        """Test TIER codes lose their expiry and other codes keep it."""
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        later = datetime.utcnow() + timedelta(days=30)
        tier_code = self._reward(sample_customer, 'TIER-GOLD-ABCDEF01', later)
        other_code = self._reward(sample_customer, 'REWARD-12345678', later)

        updated = TierPromotionService.repair_tier_code_expiry()

        assert updated == 1
        assert tier_code.expires_at is None
        assert other_code.expires_at is not None

    def test_repair_is_idempotent(self, app, sample_customer):
        """Test a second repair changes nothing."""
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        self._reward(sample_customer, 'TIER-SILVER-0000AAAA', datetime.utcnow())

        assert TierPromotionService.repair_tier_code_expiry() == 1
        assert TierPromotionService.repair_tier_code_expiry() == 0


class TestNotificationHandoff:
    """Tests for pending notifications."""

    def test_pending_and_mark_notified(self, app, sample_customer):
        """Test issued codes are pending until marked notified."""
        from loyalty_engine.services.tier_promotion_service import TierPromotionService

        service = TierPromotionService(sample_customer.organization_id)
        reward = service.on_tier_change(sample_customer, 'BRONZE', 'SILVER')

        assert [r.id for r in service.pending_notifications()] == [reward.id]
        assert service.mark_notified([reward.id]) == 1
        assert service.pending_notifications() == []
        assert service.mark_notified([reward.id]) == 0
