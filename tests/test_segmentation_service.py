"""
Tests for customer metric recalculation (RFM, engagement, churn, LTV, tags).
"""
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest


NOW = datetime(2026, 6, 15, 12, 0, 0)


def stats(total, count, last_days_ago=None, first_days_ago=None):
    from loyalty_engine.services.segmentation_service import OrderStats

    return OrderStats(
        total_spent=Decimal(str(total)),
        order_count=count,
        first_order_at=NOW - timedelta(days=first_days_ago) if first_days_ago is not None else None,
        last_order_at=NOW - timedelta(days=last_days_ago) if last_days_ago is not None else None,
    )


class TestRFM:
    """Tests for calculate_rfm."""

    def test_recent_frequent_big_spender(self):
        """Test top scores for a recent, frequent, high spender."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        rfm = SegmentationService(1, now=NOW).calculate_rfm(stats(1500, 25, last_days_ago=3))

        assert (rfm.recency, rfm.frequency, rfm.monetary) == (5, 5, 5)
        assert rfm.score == '555'

    def test_no_orders(self):
        """Test a customer without orders scores 1 on every axis."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        rfm = SegmentationService(1, now=NOW).calculate_rfm(stats(0, 0))

        assert rfm.score == '111'

    @pytest.mark.parametrize('days,expected', [(30, 5), (31, 4), (90, 4), (180, 3), (365, 2), (366, 1)])
    def test_recency_bands(self, days, expected):
        """Test recency band edges."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        rfm = SegmentationService(1, now=NOW).calculate_rfm(stats(10, 1, last_days_ago=days))
        assert rfm.recency == expected

    @pytest.mark.parametrize('spent,expected', [(49, 1), (50, 2), (200, 3), (500, 4), (1000, 5)])
    def test_monetary_bands(self, spent, expected):
        """Test monetary band edges."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        rfm = SegmentationService(1, now=NOW).calculate_rfm(stats(spent, 1, last_days_ago=1))
        assert rfm.monetary == expected


class TestEngagementAndChurn:
    """Tests for engagement score and churn risk."""

    def test_engagement_components(self):
        """Test email, purchase and loyalty contributions add up."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        customer = SimpleNamespace(loyalty_member=True, loyalty_points=600)
        activity = ['EMAIL_OPENED'] * 3 + ['EMAIL_CLICKED'] + ['PURCHASE'] * 2

        # 6 + 5 + 12 + (10 + 5 + 5)
        assert SegmentationService.calculate_engagement_score(customer, activity) == 43

    def test_engagement_capped(self):
        """Test each channel and the total are capped."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        customer = SimpleNamespace(loyalty_member=True, loyalty_points=1000)
        activity = (
            ['EMAIL_OPENED'] * 50 + ['EMAIL_CLICKED'] * 50 + ['SMS_RECEIVED'] * 50
            + ['PURCHASE'] * 50 + ['CHAT_STARTED'] * 50
        )

        assert SegmentationService.calculate_engagement_score(customer, activity) == 100

    @pytest.mark.parametrize('days,engagement,expected', [
        (200, 10, 'HIGH'),
        (200, 30, 'MEDIUM'),
        (100, 30, 'MEDIUM'),
        (100, 50, 'LOW'),
        (10, 0, 'LOW'),
        (None, 0, 'HIGH'),
    ])
    def test_churn_risk(self, days, engagement, expected):
        """Test churn risk from recency and engagement."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        assert SegmentationService.assess_churn_risk(days, engagement) == expected


class TestLifetimeValue:
    """Tests for predict_enhanced_ltv."""

    def test_no_orders_zero_ltv(self):
        """Test customers without orders have zero LTV."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        customer = SimpleNamespace(created_at=NOW - timedelta(days=365), loyalty_member=False, loyalty_tier=None)
        assert SegmentationService(1, now=NOW).predict_enhanced_ltv(customer, stats(0, 0), 0) == 0

    def test_two_year_projection(self):
        """Test the projection from order rate and recency."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        customer = SimpleNamespace(created_at=NOW - timedelta(days=365), loyalty_member=False, loyalty_tier=None)
        ltv = SegmentationService(1, now=NOW).predict_enhanced_ltv(
            customer, stats(200, 2, last_days_ago=10), 0
        )

        # 100 avg * 2/yr * 2 yrs * (1.5 - 10/365)
        assert ltv == 589

    def test_ltv_never_below_spend(self):
        """Test a stale customer's LTV floors at what they spent."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        customer = SimpleNamespace(created_at=NOW - timedelta(days=3650), loyalty_member=False, loyalty_tier=None)
        ltv = SegmentationService(1, now=NOW).predict_enhanced_ltv(
            customer, stats(900, 1, last_days_ago=3000), 0
        )

        assert ltv == 900

    def test_loyalty_multiplier(self):
        """Test higher tiers raise the projection."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        service = SegmentationService(1, now=NOW)
        base = SimpleNamespace(created_at=NOW - timedelta(days=365), loyalty_member=False, loyalty_tier=None)
        diamond = SimpleNamespace(created_at=NOW - timedelta(days=365), loyalty_member=True, loyalty_tier='DIAMOND')
        order_stats = stats(200, 2, last_days_ago=10)

        assert service.predict_enhanced_ltv(diamond, order_stats, 0) > service.predict_enhanced_ltv(base, order_stats, 0)


class TestSegmentTags:
    """Tests for generate_segment_tags."""

    def test_champion_tags(self):
        """Test a recent, frequent, high spender is tagged CHAMPION."""
        from loyalty_engine.services.segmentation_service import SegmentationService, RFMScores

        customer = SimpleNamespace(loyalty_member=True, loyalty_tier='PLATINUM')
        tags = SegmentationService.generate_segment_tags(
            customer, stats(1200, 12, last_days_ago=5), RFMScores(5, 4, 5), 75, 'LOW'
        )

        for tag in ('HIGH_VALUE', 'HIGHLY_ENGAGED', 'FREQUENT_BUYER', 'RECENT_CUSTOMER',
                    'CHAMPION', 'LOYALTY_MEMBER', 'VIP'):
            assert tag in tags
        assert 'NEW_CUSTOMER' not in tags

    def test_dormant_at_risk_tags(self):
        """Test a lapsed customer is tagged DORMANT and AT_RISK."""
        from loyalty_engine.services.segmentation_service import SegmentationService, RFMScores

        customer = SimpleNamespace(loyalty_member=False, loyalty_tier=None)
        tags = SegmentationService.generate_segment_tags(
            customer, stats(30, 1, last_days_ago=400), RFMScores(1, 1, 1), 5, 'HIGH'
        )

        assert set(tags) >= {'LOW_VALUE', 'DISENGAGED', 'OCCASIONAL_BUYER', 'DORMANT', 'AT_RISK', 'NEW_CUSTOMER'}


class TestCustomerMetrics:
    """Tests against stored customers."""

    def test_metrics_use_qualifying_orders_only(self, app, sample_customer, make_order):
        """Test refunded orders do not count toward spend or frequency."""
        from loyalty_engine.services.segmentation_service import order_stats

        make_order(sample_customer, '120.00', days_ago=20)
        make_order(sample_customer, '45.00', financial_status='refunded', days_ago=15)
        make_order(sample_customer, '30.00', days_ago=5)

        result = order_stats(sample_customer)

        assert result.total_spent == Decimal('150.00')
        assert result.order_count == 2

    def test_update_customer_metrics_persists(self, app, sample_customer, make_order):
        """Test metrics are written to the customer."""
        from loyalty_engine.extensions import db
        from loyalty_engine.models import CustomerActivity
        from loyalty_engine.services.segmentation_service import SegmentationService

        make_order(sample_customer, '600.00', days_ago=5)
        db.session.add(CustomerActivity(customer_id=sample_customer.id, activity_type='PURCHASE'))
        db.session.commit()

        metrics = SegmentationService(sample_customer.organization_id).update_customer_metrics(sample_customer.id)

        assert metrics['rfm_score'] == '514'
        assert metrics['engagement_score'] == 16
        assert metrics['churn_risk'] == 'LOW'
        assert sample_customer.rfm_score == '514'
        assert sample_customer.metrics_updated_at is not None
        assert 'MEDIUM_VALUE' in sample_customer.segment_tags

    def test_update_unknown_customer(self, app, sample_organization):
        """Test an unknown customer raises CustomerNotFoundError."""
        from loyalty_engine.services.segmentation_service import SegmentationService
        from loyalty_engine.utils.exceptions import CustomerNotFoundError

        with pytest.raises(CustomerNotFoundError):
            SegmentationService(sample_organization.id).update_customer_metrics(9999)

    def test_recalculate_all_counts_failures(self, app, sample_organization, make_customer):
        """Test a failing customer is counted and the rest are processed."""
        from loyalty_engine.services.segmentation_service import SegmentationService

        ok = make_customer(email='ok@example.com')
        broken = make_customer(email='broken@example.com')

        service = SegmentationService(sample_organization.id)
        original = service.update_customer_metrics

        def flaky(customer_id):
            if customer_id == broken.id:
                raise RuntimeError('boom')
            return original(customer_id)

        with patch.object(service, 'update_customer_metrics', side_effect=flaky):
            result = service.recalculate_all_customers()

        assert result == {'processed': 1, 'failed': 1}
        assert ok.metrics_updated_at is not None

    def test_assign_to_segments_creates_ai_segments(self, app, sample_organization, make_customer, make_order):
        """Test AI segments are created and filled from tags."""
        from loyalty_engine.models import Segment
        from loyalty_engine.services.segmentation_service import SegmentationService, AI_SEGMENT_MAPPINGS

        newbie = make_customer(email='new@example.com')
        make_order(newbie, '20.00', days_ago=2)

        service = SegmentationService(sample_organization.id)
        service.recalculate_all_customers()
        result = service.assign_to_segments()

        assert result['evaluated'] == len(AI_SEGMENT_MAPPINGS)
        new_segment = Segment.query.filter_by(organization_id=sample_organization.id, segment_type='NEW').one()
        assert new_segment.customer_count == 1
        assert [c.id for c in new_segment.customers] == [newbie.id]

        # Second call creates no more segments
        assert service.ensure_ai_segments() == 0
