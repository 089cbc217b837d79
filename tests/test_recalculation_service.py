"""
Tests for the compound recalculation pass.

Tests cover:
- Stage ordering with and without promotions
- Idempotent re-runs
- Whole-pass data store failures
- Per-organization failure isolation
- Single-customer loyalty sync
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError


BASE_STAGES = ['IDLE', 'ACCRUING', 'TIER_RESOLVING', 'SEGMENTING', 'PLAN_GENERATING', 'IDLE']


class TestRunForOrganization:
    """Tests for RecalculationService.run_for_organization."""

    def test_pass_without_promotion(self, app, sample_customer, make_order):
        """Test points accrue and no REWARDING stage runs below SILVER."""
        from loyalty_engine.services.recalculation_service import RecalculationService

        make_order(sample_customer, '120.00')
        make_order(sample_customer, '45.00', financial_status='refunded')
        make_order(sample_customer, '30.00')

        summary = RecalculationService().run_for_organization(sample_customer.organization_id)

        assert summary['stages'] == BASE_STAGES
        assert summary['processed'] == 1
        assert summary['failed'] == 0
        assert summary['promotions'] == 0
        assert summary['organization_name'] == 'Test Shop'
        assert sample_customer.loyalty_points == 150
        assert sample_customer.loyalty_tier == 'BRONZE'
        assert sample_customer.rfm_score is not None

    def test_pass_with_promotion(self, app, sample_customer, make_order):
        """Test a GOLD-level history promotes, rewards and generates plans."""
        from loyalty_engine.models import RewardRedemption
        from loyalty_engine.services.recalculation_service import RecalculationService

        make_order(sample_customer, '1600.00')

        summary = RecalculationService().run_for_organization(sample_customer.organization_id)

        assert summary['stages'] == [
            'IDLE', 'ACCRUING', 'TIER_RESOLVING', 'REWARDING', 'SEGMENTING', 'PLAN_GENERATING', 'IDLE'
        ]
        assert summary['promotions'] == 1
        assert summary['points_updated'] == 1
        assert sample_customer.loyalty_tier == 'GOLD'

        # High Value and New Customers segments each get a plan
        assert summary['plans_generated'] == 2
        assert summary['plans_updated'] == 0

        reward = RewardRedemption.query.filter_by(customer_id=sample_customer.id).one()
        assert reward.code.startswith('TIER-GOLD-')
        assert reward.expires_at is None

    def test_second_pass_is_stable(self, app, sample_customer, make_order):
        """Test re-running refreshes plans and issues nothing new."""
        from loyalty_engine.models import RewardRedemption
        from loyalty_engine.services.recalculation_service import RecalculationService

        make_order(sample_customer, '1600.00')
        service = RecalculationService()
        service.run_for_organization(sample_customer.organization_id)

        summary = service.run_for_organization(sample_customer.organization_id)

        assert summary['stages'] == BASE_STAGES
        assert summary['promotions'] == 0
        assert summary['points_updated'] == 0
        assert summary['plans_generated'] == 0
        assert summary['plans_updated'] == 2
        assert sample_customer.loyalty_points == 1600
        assert RewardRedemption.query.filter_by(customer_id=sample_customer.id).count() == 1

    def test_unknown_organization(self, app):
        """Test an unknown organization raises OrganizationNotFoundError."""
        from loyalty_engine.services.recalculation_service import RecalculationService
        from loyalty_engine.utils.exceptions import OrganizationNotFoundError

        with pytest.raises(OrganizationNotFoundError):
            RecalculationService().run_for_organization(424242)

    def test_data_store_failure(self, app, sample_organization):
        """Test losing the database mid-pass raises DataStoreError."""
        from loyalty_engine.services.recalculation_service import RecalculationService
        from loyalty_engine.utils.exceptions import DataStoreError

        error = OperationalError('SELECT 1', {}, Exception('connection refused'))
        with patch(
            'loyalty_engine.services.recalculation_service.PointsService.recompute_for_organization',
            side_effect=error
        ):
            with pytest.raises(DataStoreError) as exc_info:
                RecalculationService().run_for_organization(sample_organization.id)

        assert exc_info.value.status_code == 500
        assert exc_info.value.code == 'DATABASE_ERROR'


class TestRunForAllOrganizations:
    """Tests for RecalculationService.run_for_all_organizations."""

    def test_one_failing_organization_isolated(self, app, sample_customer, make_order):
        """Test a failing organization is reported and others still run."""
        from loyalty_engine.extensions import db
        from loyalty_engine.models import Organization
        from loyalty_engine.services.recalculation_service import RecalculationService

        make_order(sample_customer, '200.00')
        broken = Organization(name='Broken Shop', slug='broken-shop', is_active=True)
        closed = Organization(name='Closed Shop', slug='closed-shop', is_active=False)
        db.session.add_all([broken, closed])
        db.session.commit()
        broken_id = broken.id

        original = RecalculationService.run_for_organization

        def flaky(self, organization_id):
            if organization_id == broken_id:
                raise RuntimeError('segment store unavailable')
            return original(self, organization_id)

        with patch.object(RecalculationService, 'run_for_organization', autospec=True, side_effect=flaky):
            result = RecalculationService().run_for_all_organizations()

        assert result['organizations_processed'] == 2
        assert result['total_customers_processed'] == 1
        by_id = {r['organization_id']: r for r in result['results']}
        assert by_id[sample_customer.organization_id]['success'] is True
        assert by_id[broken_id] == {
            'organization_id': broken_id,
            'organization_name': 'Broken Shop',
            'success': False,
            'error': 'segment store unavailable'
        }
        assert sample_customer.loyalty_points == 200


class TestSyncCustomerLoyalty:
    """Tests for sync_customer_loyalty."""

    def test_sync_credits_history_and_promotes(self, app, sample_customer, make_order):
        """Test a single sync accrues points and issues the tier reward."""
        from loyalty_engine.services.recalculation_service import sync_customer_loyalty

        make_order(sample_customer, '520.00')

        outcome = sync_customer_loyalty(sample_customer)

        assert outcome['points'] == 520
        assert outcome['previous_tier'] == 'BRONZE'
        assert outcome['new_tier'] == 'SILVER'
        assert outcome['promoted'] is True
        assert outcome['code'].startswith('TIER-SILVER-')
        assert sample_customer.loyalty_tier == 'SILVER'

    def test_sync_rolls_back_on_failure(self, app, sample_customer, make_order):
        """Test a failed sync leaves the customer untouched."""
        from loyalty_engine.services.recalculation_service import sync_customer_loyalty

        make_order(sample_customer, '520.00')

        with patch(
            'loyalty_engine.services.recalculation_service.TierPromotionService.check_and_promote',
            side_effect=RuntimeError('boom')
        ):
            with pytest.raises(RuntimeError):
                sync_customer_loyalty(sample_customer)

        assert sample_customer.loyalty_points == 0
