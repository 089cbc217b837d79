"""
Business logic services for the loyalty engine.
"""
from .points_service import PointsService
from .tier_service import TierService, TierTable
from .tier_promotion_service import TierPromotionService
from .segmentation_service import SegmentationService
from .smart_segmentation_service import SmartSegmentationService
from .action_plan_service import ActionPlanService
from .recalculation_service import RecalculationService, sync_customer_loyalty

__all__ = [
    'PointsService',
    'TierService',
    'TierTable',
    'TierPromotionService',
    'SegmentationService',
    'SmartSegmentationService',
    'ActionPlanService',
    'RecalculationService',
    'sync_customer_loyalty',
]
