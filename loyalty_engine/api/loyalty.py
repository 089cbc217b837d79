"""
Loyalty Program API.

Tier table management, accrual backfill, tier promotion and reward code
maintenance, plus the public signup endpoint.

Admin-only endpoints (backfill, retroactive promotion, expiry repair)
require X-Admin-Key in addition to the organization.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.auth import require_organization, require_admin_key
from ..models.customer import Customer
from ..services.enrollment_service import enroll_customer
from ..services.points_service import PointsService
from ..services.tier_service import TierService, validate_tier_table
from ..services.tier_promotion_service import TierPromotionService
from ..utils.errors import ErrorCode, bad_request, not_found

loyalty_bp = Blueprint('loyalty', __name__)


def _dry_run() -> bool:
    """dryRun flag from the JSON body or query string."""
    data = request.get_json(silent=True) or {}
    if 'dryRun' in data:
        return bool(data['dryRun'])
    return request.args.get('dryRun', 'false').lower() == 'true'


# ==================== Tiers ====================

@loyalty_bp.route('/tiers', methods=['GET'])
@require_organization
def get_tiers():
    """Configured tier rows plus the table actually used for resolution."""
    service = TierService(g.organization_id)
    rows = service.list_tiers()
    table = service.load_tier_table()

    return jsonify({
        'tiers': [row.to_dict() for row in rows],
        'effective': table.to_list(),
        'source': table.source,
        'problems': validate_tier_table(rows) if rows else []
    })


@loyalty_bp.route('/tiers', methods=['POST'])
@require_organization
def create_tier():
    data = request.get_json(silent=True) or {}
    row = TierService(g.organization_id).create_tier(data)
    return jsonify(row.to_dict()), 201


@loyalty_bp.route('/tiers', methods=['PATCH'])
@require_organization
def update_tier():
    """
    Update one tier.

    Request body:
        tier: Tier level to update (required)
        name, min_points, points_per_dollar, benefits: fields to change
    """
    data = request.get_json(silent=True) or {}
    if not data.get('tier'):
        return bad_request('tier is required', ErrorCode.MISSING_FIELD)

    fields = {k: v for k, v in data.items() if k != 'tier'}
    row = TierService(g.organization_id).update_tier(data['tier'], fields)
    return jsonify(row.to_dict())


@loyalty_bp.route('/tiers/initialize', methods=['POST'])
@require_organization
def initialize_tiers():
    result = TierService(g.organization_id).initialize_tiers()
    return jsonify(result)


@loyalty_bp.route('/tiers/retroactive-promote', methods=['POST'])
@require_organization
@require_admin_key
def retroactive_promote():
    """Promote every member whose stored points already qualify for a higher tier."""
    result = TierPromotionService(g.organization_id).retroactive_promote(dry_run=_dry_run())
    return jsonify(result)


@loyalty_bp.route('/customers/<int:customer_id>/progress', methods=['GET'])
@require_organization
def tier_progress(customer_id):
    customer = Customer.query.filter_by(id=customer_id, organization_id=g.organization_id).first()
    if not customer:
        return not_found('Customer not found')

    progress = TierService(g.organization_id).next_tier_progress(customer.loyalty_points or 0)
    progress['stored_tier'] = customer.loyalty_tier
    return jsonify(progress)


# ==================== Points ====================

@loyalty_bp.route('/points/recompute', methods=['POST'])
@require_organization
@require_admin_key
def recompute_points():
    """Backfill: recompute every member's points from their order history."""
    result = PointsService(g.organization_id).recompute_for_organization(dry_run=_dry_run())
    return jsonify(result)


# ==================== Rewards ====================

@loyalty_bp.route('/rewards/repair-expiry', methods=['POST'])
@require_admin_key
def repair_reward_expiry():
    """Clear expires_at on every tier promotion code."""
    updated = TierPromotionService.repair_tier_code_expiry()
    return jsonify({
        'updated': updated,
        'message': f'Updated {updated} tier promotion codes to never expire'
    })


@loyalty_bp.route('/rewards/pending-notifications', methods=['GET'])
@require_organization
def pending_notifications():
    rewards = TierPromotionService(g.organization_id).pending_notifications()
    return jsonify({
        'rewards': [r.to_dict() for r in rewards],
        'total': len(rewards)
    })


@loyalty_bp.route('/rewards/mark-notified', methods=['POST'])
@require_organization
def mark_notified():
    data = request.get_json(silent=True) or {}
    ids = data.get('ids')
    if not isinstance(ids, list):
        return bad_request('ids must be a list', ErrorCode.VALIDATION_ERROR)

    updated = TierPromotionService(g.organization_id).mark_notified(ids)
    return jsonify({'updated': updated})


# ==================== Signup (public) ====================

@loyalty_bp.route('/signup', methods=['POST'])
def signup():
    """
    Enroll a customer in the loyalty program.

    Request body:
        orgSlug: Organization slug (required)
        firstName, lastName, email, phone, birthday
    """
    data = request.get_json(silent=True) or {}
    result = enroll_customer(data)
    status = 200 if result['existing_customer'] else 201
    return jsonify(result), status
