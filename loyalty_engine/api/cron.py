"""
Cron endpoint for the external scheduler.

GET /api/cron/ai-segmentation
    Authorization: Bearer <CRON_SECRET>

Runs the full recalculation pass for every active organization. Daily at
2 AM UTC in the default deployment.
"""
from flask import Blueprint, jsonify, current_app

from ..middleware.auth import require_cron_secret
from ..services.recalculation_service import RecalculationService
from ..utils.errors import ErrorCode, error_response
from ..utils.exceptions import DataStoreError

cron_bp = Blueprint('cron', __name__)


@cron_bp.route('/ai-segmentation', methods=['GET'])
@require_cron_secret
def ai_segmentation():
    try:
        result = RecalculationService().run_for_all_organizations()
    except DataStoreError as e:
        return error_response(e.message, ErrorCode.RECALCULATION_FAILED, 500)

    current_app.logger.info(
        f"Cron recalculation: {result['organizations_processed']} organizations, "
        f"{result['total_customers_processed']} customers, {result['total_failed']} failed"
    )
    return jsonify({
        'organizationsProcessed': result['organizations_processed'],
        'totalCustomersProcessed': result['total_customers_processed'],
        'totalFailed': result['total_failed'],
        'results': result['results'],
        'timestamp': result['timestamp']
    })
