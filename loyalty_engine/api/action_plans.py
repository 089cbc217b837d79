"""
Action Plans API.

- GET    /api/action-plans          list plans for the organization
- POST   /api/action-plans          generate/refresh plans from current segments
- GET    /api/action-plans/<id>     plan with its segment
- PATCH  /api/action-plans/<id>     update plan status or one action's status
- DELETE /api/action-plans/<id>     delete a plan
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.auth import require_organization
from ..models.action_plan import ActionPlanStatus
from ..services.action_plan_service import ActionPlanService
from ..utils.errors import ErrorCode, bad_request

action_plans_bp = Blueprint('action_plans', __name__)


@action_plans_bp.route('', methods=['GET'])
@require_organization
def list_plans():
    plans = ActionPlanService(g.organization_id).get_plans_for_organization()
    return jsonify({
        'plans': [p.to_dict() for p in plans],
        'total': len(plans)
    })


@action_plans_bp.route('', methods=['POST'])
@require_organization
def generate_plans():
    result = ActionPlanService(g.organization_id).generate_for_organization()
    return jsonify({
        **result,
        'message': f"Generated {result['generated']} new plans, updated {result['updated']} existing plans"
    })


@action_plans_bp.route('/<int:plan_id>', methods=['GET'])
@require_organization
def get_plan(plan_id):
    plan = ActionPlanService(g.organization_id).get_plan(plan_id)
    return jsonify(plan.to_dict(include_segment=True))


@action_plans_bp.route('/<int:plan_id>', methods=['PATCH'])
@require_organization
def update_plan(plan_id):
    """
    Update a plan.

    Request body (one of):
        actionId + actionStatus (+ campaignId): update a single action
        status: ACTIVE or PAUSED
    """
    data = request.get_json(silent=True) or {}
    service = ActionPlanService(g.organization_id)

    if data.get('actionId') and data.get('actionStatus'):
        plan = service.update_action_status(
            plan_id,
            data['actionId'],
            data['actionStatus'],
            data.get('campaignId')
        )
        return jsonify({'message': 'Action updated', 'plan': plan.to_dict()})

    status = data.get('status')
    if status == ActionPlanStatus.ACTIVE.value:
        plan = service.activate_plan(plan_id)
    elif status == ActionPlanStatus.PAUSED.value:
        plan = service.pause_plan(plan_id)
    elif status:
        return bad_request('status must be ACTIVE or PAUSED', ErrorCode.VALIDATION_ERROR)
    else:
        return bad_request('No valid update provided')

    return jsonify({'message': f'Plan {status.lower()}', 'plan': plan.to_dict()})


@action_plans_bp.route('/<int:plan_id>', methods=['DELETE'])
@require_organization
def delete_plan(plan_id):
    ActionPlanService(g.organization_id).delete_plan(plan_id)
    return jsonify({'message': 'Plan deleted'})
