"""
Customer Segments API.

Endpoints:
- POST /api/segments/recalculate        full recalculation pass for the organization
- GET  /api/segments                    list segments
- POST /api/segments                    create a static (manually curated) segment
- GET  /api/segments/<id>               segment detail with member ids
- PUT  /api/segments/<id>/members       replace a static segment's members
- GET  /api/segments/smart/templates    smart segment catalog
- POST /api/segments/smart/initialize   create the catalog for the organization
- POST /api/segments/smart/evaluate     re-evaluate every segment
- POST /api/segments/customers/<id>/metrics  refresh one customer's metrics
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..models.segment import Segment
from ..middleware.auth import require_organization
from ..services.recalculation_service import RecalculationService
from ..services.segmentation_service import SegmentationService
from ..services.smart_segmentation_service import SmartSegmentationService, SMART_SEGMENT_TEMPLATES
from ..utils.errors import ErrorCode, error_response, bad_request, not_found
from ..utils.exceptions import DataStoreError

segments_bp = Blueprint('segments', __name__)


# ==================== Recalculation ====================

@segments_bp.route('/recalculate', methods=['POST'])
@require_organization
def recalculate():
    """
    Manually trigger the recalculation pass.

    Normally runs daily from the scheduler; this lets admins run it
    on demand from the dashboard.
    """
    try:
        summary = RecalculationService().run_for_organization(g.organization_id)
    except DataStoreError as e:
        return error_response(e.message, ErrorCode.RECALCULATION_FAILED, 500)

    return jsonify({
        'processed': summary['processed'],
        'failed': summary['failed'],
        'plansGenerated': summary['plans_generated'],
        'plansUpdated': summary['plans_updated'],
        'promotions': summary['promotions'],
        'message': (
            f"Successfully recalculated segmentation for {summary['processed']} customers. "
            f"Generated {summary['plans_generated']} new action plans, "
            f"updated {summary['plans_updated']}."
        )
    })


# ==================== Segments ====================

@segments_bp.route('', methods=['GET'])
@require_organization
def list_segments():
    segments = Segment.query.filter_by(
        organization_id=g.organization_id
    ).order_by(Segment.customer_count.desc(), Segment.id.asc()).all()

    return jsonify({
        'segments': [s.to_dict() for s in segments],
        'total': len(segments)
    })


@segments_bp.route('', methods=['POST'])
@require_organization
def create_segment():
    """
    Create a static segment.

    Request body:
        name: Segment name (required)
        description: Optional description
        customerIds: Initial members
    """
    data = request.get_json(silent=True) or {}
    if not data.get('name'):
        return bad_request('name is required', ErrorCode.MISSING_FIELD)

    segment = SmartSegmentationService(g.organization_id).create_static_segment(
        name=data['name'],
        description=data.get('description'),
        customer_ids=data.get('customerIds') or []
    )
    current_app.logger.info(f'Static segment {segment.id} created for organization {g.organization_id}')
    return jsonify(segment.to_dict(include_members=True)), 201


@segments_bp.route('/<int:segment_id>', methods=['GET'])
@require_organization
def get_segment(segment_id):
    segment = Segment.query.filter_by(id=segment_id, organization_id=g.organization_id).first()
    if not segment:
        return not_found('Segment not found', ErrorCode.SEGMENT_NOT_FOUND)
    return jsonify(segment.to_dict(include_members=True))


@segments_bp.route('/<int:segment_id>/members', methods=['PUT'])
@require_organization
def set_segment_members(segment_id):
    data = request.get_json(silent=True) or {}
    customer_ids = data.get('customerIds')
    if not isinstance(customer_ids, list):
        return bad_request('customerIds must be a list', ErrorCode.VALIDATION_ERROR)

    segment = SmartSegmentationService(g.organization_id).set_static_members(segment_id, customer_ids)
    return jsonify(segment.to_dict(include_members=True))


# ==================== Smart Segments ====================

@segments_bp.route('/smart/templates', methods=['GET'])
@require_organization
def smart_templates():
    return jsonify({'templates': SMART_SEGMENT_TEMPLATES})


@segments_bp.route('/smart/initialize', methods=['POST'])
@require_organization
def initialize_smart_segments():
    result = SmartSegmentationService(g.organization_id).initialize_templates()
    return jsonify({
        **result,
        'message': f"Created {result['created']} smart segments ({result['existing']} already existed)"
    })


@segments_bp.route('/smart/evaluate', methods=['POST'])
@require_organization
def evaluate_smart_segments():
    result = SmartSegmentationService(g.organization_id).evaluate_all_segments()
    return jsonify({
        'evaluated': result['evaluated'],
        'totalCustomersSegmented': result['total_customers_segmented'],
        'failed': result['failed'],
        'results': result['results']
    })


# ==================== Customer Metrics ====================

@segments_bp.route('/customers/<int:customer_id>/metrics', methods=['POST'])
@require_organization
def refresh_customer_metrics(customer_id):
    """Recompute one customer's RFM, engagement, churn risk and LTV."""
    metrics = SegmentationService(g.organization_id).update_customer_metrics(customer_id)
    return jsonify({'customer_id': customer_id, 'metrics': metrics})
