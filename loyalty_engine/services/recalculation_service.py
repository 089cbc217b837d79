"""
Compound recalculation pass.

Runs the loyalty and segmentation stages for an organization in a fixed
order:

    IDLE -> ACCRUING -> TIER_RESOLVING -> (REWARDING) -> SEGMENTING
         -> PLAN_GENERATING -> IDLE

Accrual resolves each member's tier in the same commit as their points.
TIER_RESOLVING then re-checks the whole membership from stored points, which
catches members whose accrual failed. REWARDING is recorded only when at
least one customer moved up a tier in either stage.

Per-customer and per-segment failures are counted by each stage and never
abort the pass. Losing the data store for the whole pass raises
DataStoreError.
"""
from datetime import datetime
from typing import Dict, Any
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.customer import Customer
from ..models.organization import Organization
from ..utils.exceptions import DataStoreError, OrganizationNotFoundError
from .points_service import PointsService
from .tier_service import TierService
from .tier_promotion_service import TierPromotionService
from .segmentation_service import SegmentationService
from .action_plan_service import ActionPlanService


class PassStage:
    IDLE = 'IDLE'
    ACCRUING = 'ACCRUING'
    TIER_RESOLVING = 'TIER_RESOLVING'
    REWARDING = 'REWARDING'
    SEGMENTING = 'SEGMENTING'
    PLAN_GENERATING = 'PLAN_GENERATING'


def sync_customer_loyalty(customer: Customer) -> Dict[str, Any]:
    """
    Accrue points, resolve the tier and issue a promotion reward for one
    customer, in a single commit.

    Used right after signup so an existing order history is credited at once.
    """
    points = PointsService(customer.organization_id)
    promotions = TierPromotionService(customer.organization_id)

    try:
        total = points.recompute_points(customer, commit=False)
        outcome = promotions.check_and_promote(customer, points=total, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return {
        'points': total,
        'previous_tier': outcome['previous_tier'],
        'new_tier': outcome['new_tier'],
        'promoted': outcome['promoted'],
        'code': outcome['code']
    }


class RecalculationService:
    """
    Entry point for cron, CLI and the manual dashboard trigger.

    Usage:
        summary = RecalculationService().run_for_organization(organization_id)
        summary = RecalculationService().run_for_all_organizations()
    """

    def __init__(self, now: datetime = None):
        self.now = now

    def run_for_organization(self, organization_id: int) -> Dict[str, Any]:
        """
        Full pass for one organization.

        Returns:
            Counts per stage plus the stage sequence that ran

        Raises:
            OrganizationNotFoundError: unknown organization
            DataStoreError: the data store failed for the pass as a whole
        """
        stages = [PassStage.IDLE]

        try:
            organization = db.session.get(Organization, organization_id)
            if organization is None:
                raise OrganizationNotFoundError(organization_id)

            stages.append(PassStage.ACCRUING)
            accrual = PointsService(organization_id).recompute_for_organization()

            stages.append(PassStage.TIER_RESOLVING)
            promotion_service = TierPromotionService(organization_id, TierService(organization_id))
            tiers = promotion_service.retroactive_promote()
            promoted = accrual['promoted'] + tiers['promoted']
            if promoted:
                stages.append(PassStage.REWARDING)

            stages.append(PassStage.SEGMENTING)
            segmentation = SegmentationService(organization_id, now=self.now or datetime.utcnow())
            metrics = segmentation.recalculate_all_customers()
            evaluation = segmentation.assign_to_segments()

            stages.append(PassStage.PLAN_GENERATING)
            plans = ActionPlanService(organization_id).generate_for_organization()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f'Recalculation for organization {organization_id} lost the data store: {e}')
            raise DataStoreError(f'Recalculation for organization {organization_id}', e)

        stages.append(PassStage.IDLE)

        summary = {
            'organization_id': organization_id,
            'organization_name': organization.name,
            'processed': metrics['processed'],
            'failed': metrics['failed'] + accrual['failed'] + tiers['failed'],
            'points_updated': accrual['updated'],
            'promotions': promoted,
            'segments_evaluated': evaluation['evaluated'],
            'plans_generated': plans['generated'],
            'plans_updated': plans['updated'],
            'stages': stages
        }

        current_app.logger.info(
            f"Recalculation for organization {organization_id}: {summary['processed']} processed, "
            f"{summary['failed']} failed, {summary['promotions']} promoted, "
            f"{summary['plans_generated']} plans generated, {summary['plans_updated']} updated"
        )
        return summary

    def run_for_all_organizations(self) -> Dict[str, Any]:
        """
        Full pass for every active organization.

        One organization failing is recorded and the loop moves on.
        """
        try:
            organizations = Organization.query.filter_by(is_active=True).order_by(Organization.id).all()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise DataStoreError('Loading organizations', e)

        results = []
        for organization_id, organization_name in [(o.id, o.name) for o in organizations]:
            try:
                summary = self.run_for_organization(organization_id)
                summary['success'] = True
                results.append(summary)
            except Exception as e:
                current_app.logger.error(f'Recalculation failed for organization {organization_id}: {e}')
                results.append({
                    'organization_id': organization_id,
                    'organization_name': organization_name,
                    'success': False,
                    'error': str(e)
                })

        return {
            'organizations_processed': len(organizations),
            'total_customers_processed': sum(r.get('processed', 0) for r in results),
            'total_failed': sum(r.get('failed', 0) for r in results),
            'results': results,
            'timestamp': datetime.utcnow().isoformat()
        }
