"""
Action Plan Generator.

Turns current segment state into recommended marketing plans. Each plan is
identified by (organization_id, template_key, segment_id): regeneration
refreshes the existing row in place and never inserts a duplicate.

Plan status (DRAFT/ACTIVE/PAUSED) and each action's progress survive a
refresh; only the recommendation payload and metrics snapshot are rewritten.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from flask import current_app

from ..extensions import db
from ..models.action_plan import ActionPlan, ActionPlanStatus, ActionStatus
from ..models.segment import Segment
from ..utils.exceptions import NotFoundError, ValidationError


PLAN_TEMPLATES = {
    'win_back': {
        'name': 'Win-Back Campaign',
        'description': 'Re-engage customers who have stopped buying before they churn for good.',
        'priority': 1,
        'actions': [
            {'id': 'win_back-email', 'type': 'EMAIL', 'channel': 'email',
             'title': 'Send a "we miss you" email', 'description': 'Personal note with a time-limited comeback offer.'},
            {'id': 'win_back-discount', 'type': 'DISCOUNT', 'channel': 'email',
             'title': 'Offer a 15% comeback discount', 'description': 'Single-use code valid for 14 days.'},
            {'id': 'win_back-sms', 'type': 'SMS', 'channel': 'sms',
             'title': 'SMS reminder before the offer expires', 'description': 'Only to customers opted in to SMS.'},
        ],
    },
    'vip_appreciation': {
        'name': 'VIP Appreciation',
        'description': 'Reward the most valuable customers and keep them close.',
        'priority': 1,
        'actions': [
            {'id': 'vip_appreciation-early-access', 'type': 'EXCLUSIVE', 'channel': 'email',
             'title': 'Early access to new products', 'description': 'Invite VIPs 48 hours before public launch.'},
            {'id': 'vip_appreciation-gift', 'type': 'GIFT', 'channel': 'email',
             'title': 'Thank-you gift with next order', 'description': 'Surprise gift added to the next purchase.'},
            {'id': 'vip_appreciation-bonus-points', 'type': 'LOYALTY', 'channel': 'email',
             'title': 'Double points weekend', 'description': 'Temporary 2x points for this segment.'},
        ],
    },
    'onboarding_nurture': {
        'name': 'New Customer Onboarding',
        'description': 'Turn first-time buyers into repeat customers.',
        'priority': 2,
        'actions': [
            {'id': 'onboarding_nurture-welcome', 'type': 'EMAIL', 'channel': 'email',
             'title': 'Welcome series', 'description': 'Three-email series introducing the brand and loyalty program.'},
            {'id': 'onboarding_nurture-second-order', 'type': 'DISCOUNT', 'channel': 'email',
             'title': 'Second-purchase incentive', 'description': '10% off the second order within 30 days.'},
            {'id': 'onboarding_nurture-loyalty-invite', 'type': 'LOYALTY', 'channel': 'email',
             'title': 'Invite to join the loyalty program', 'description': 'Highlight points earned on the first order.'},
        ],
    },
    'loyalty_upsell': {
        'name': 'Loyalty Tier Upsell',
        'description': 'Show active customers how close they are to the next tier.',
        'priority': 2,
        'actions': [
            {'id': 'loyalty_upsell-progress', 'type': 'LOYALTY', 'channel': 'email',
             'title': 'Tier progress update', 'description': 'Points needed for the next tier and its benefits.'},
            {'id': 'loyalty_upsell-recommendations', 'type': 'EMAIL', 'channel': 'email',
             'title': 'Personalized recommendations', 'description': 'Products based on purchase history.'},
        ],
    },
    'bundle_offers': {
        'name': 'Bundle Offers',
        'description': 'Raise average order value for frequent, price-sensitive buyers.',
        'priority': 3,
        'actions': [
            {'id': 'bundle_offers-bundle', 'type': 'DISCOUNT', 'channel': 'email',
             'title': 'Bundle deal', 'description': 'Discount when buying complementary products together.'},
            {'id': 'bundle_offers-threshold', 'type': 'DISCOUNT', 'channel': 'email',
             'title': 'Free shipping threshold', 'description': 'Free shipping above a basket value just over the average.'},
        ],
    },
    'referral_program': {
        'name': 'Referral Program',
        'description': 'Turn engaged, loyal customers into advocates.',
        'priority': 2,
        'actions': [
            {'id': 'referral_program-invite', 'type': 'REFERRAL', 'channel': 'email',
             'title': 'Give $10, get $10 referral invite', 'description': 'Share link with reward for both sides.'},
            {'id': 'referral_program-reviews', 'type': 'EMAIL', 'channel': 'email',
             'title': 'Ask for a review', 'description': 'Request a product review with bonus points.'},
        ],
    },
    'email_campaign': {
        'name': 'Email Engagement Campaign',
        'description': 'Use the email channel where it performs best.',
        'priority': 3,
        'actions': [
            {'id': 'email_campaign-newsletter', 'type': 'EMAIL', 'channel': 'email',
             'title': 'Curated newsletter', 'description': 'Monthly content plus new arrivals.'},
            {'id': 'email_campaign-flash-sale', 'type': 'DISCOUNT', 'channel': 'email',
             'title': 'Email-only flash sale', 'description': '24-hour sale announced only by email.'},
        ],
    },
    'sms_campaign': {
        'name': 'SMS Campaign',
        'description': 'Short, timely offers for customers who respond to SMS.',
        'priority': 3,
        'actions': [
            {'id': 'sms_campaign-flash', 'type': 'SMS', 'channel': 'sms',
             'title': 'SMS flash offer', 'description': 'Time-limited offer sent by text.'},
            {'id': 'sms_campaign-restock', 'type': 'SMS', 'channel': 'sms',
             'title': 'Back-in-stock alerts', 'description': 'Notify when favourite products return.'},
        ],
    },
    'birthday_rewards': {
        'name': 'Birthday Rewards',
        'description': 'Celebrate customers during their birthday month.',
        'priority': 2,
        'actions': [
            {'id': 'birthday_rewards-greeting', 'type': 'EMAIL', 'channel': 'email',
             'title': 'Birthday greeting with gift', 'description': 'Personal greeting with a birthday discount.'},
            {'id': 'birthday_rewards-bonus-points', 'type': 'LOYALTY', 'channel': 'email',
             'title': 'Birthday bonus points', 'description': 'One-time points bonus for loyalty members.'},
        ],
    },
}

# Segment type -> plan template
SEGMENT_PLAN_TEMPLATES = {
    'AT_RISK': 'win_back',
    'WIN_BACK': 'win_back',
    'DORMANT_HIGH_VALUE': 'win_back',
    'CHAMPION': 'vip_appreciation',
    'HIGH_VALUE': 'vip_appreciation',
    'VIP_WHALES': 'vip_appreciation',
    'NEW': 'onboarding_nurture',
    'FIRST_TIME': 'onboarding_nurture',
    'RISING_STARS': 'loyalty_upsell',
    'FREQUENT': 'loyalty_upsell',
    'BARGAIN_HUNTERS': 'bundle_offers',
    'LOYAL_ADVOCATES': 'referral_program',
    'ENGAGED': 'referral_program',
    'EMAIL_ENGAGED': 'email_campaign',
    'SMS_RESPONSIVE': 'sms_campaign',
    'BIRTHDAY_MONTH': 'birthday_rewards',
}

PLAN_STATUSES = {s.value for s in ActionPlanStatus}
ACTION_STATUSES = {s.value for s in ActionStatus}


def build_actions(template: Dict[str, Any], previous: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    """Template actions, carrying over status and campaignId from a previous version."""
    carried = {a.get('id'): a for a in previous or [] if a.get('id')}

    actions = []
    for action in template['actions']:
        old = carried.get(action['id'], {})
        actions.append({
            **action,
            'status': old.get('status', ActionStatus.PENDING.value),
            'campaignId': old.get('campaignId'),
        })
    return actions


def segment_metrics(segment: Segment) -> Dict[str, Any]:
    return {
        'customer_count': segment.customer_count or 0,
        'avg_lifetime_value': segment.avg_lifetime_value or 0,
        'avg_engagement': segment.avg_engagement or 0,
        'segment_type': segment.segment_type,
        'segment_name': segment.name,
        'last_calculated': segment.last_calculated.isoformat() if segment.last_calculated else None,
    }


class ActionPlanService:
    """
    Plan generation and plan lifecycle for one organization.

    Usage:
        service = ActionPlanService(organization_id)
        counts = service.generate_for_organization()   # {'generated': n, 'updated': m}
    """

    def __init__(self, organization_id: int):
        self.organization_id = organization_id

    # ==================== Generation ====================

    def generate_for_organization(self) -> Dict[str, int]:
        """
        Create or refresh one plan per (template, segment).

        Only segments with members and a mapped template produce plans. Must
        run after segments were evaluated in the same pass.
        """
        segments = Segment.query.filter(
            Segment.organization_id == self.organization_id,
            Segment.customer_count > 0
        ).order_by(Segment.id).all()

        existing = {
            (plan.template_key, plan.segment_id): plan
            for plan in ActionPlan.query.filter_by(organization_id=self.organization_id).all()
        }

        generated = 0
        updated = 0
        now = datetime.utcnow()

        for segment in segments:
            template_key = SEGMENT_PLAN_TEMPLATES.get(segment.segment_type)
            if not template_key:
                continue
            template = PLAN_TEMPLATES[template_key]

            plan = existing.get((template_key, segment.id))
            if plan is None:
                plan = ActionPlan(
                    organization_id=self.organization_id,
                    segment_id=segment.id,
                    template_key=template_key,
                    status=ActionPlanStatus.DRAFT.value,
                    generated_at=now
                )
                db.session.add(plan)
                existing[(template_key, segment.id)] = plan
                generated += 1
            else:
                updated += 1

            plan.name = f"{template['name']}: {segment.name}"
            plan.description = (
                f"{template['description']} Targets {segment.customer_count} customers "
                f"in {segment.name}."
            )
            plan.priority = template['priority']
            plan.actions = build_actions(template, plan.actions)
            plan.metrics = segment_metrics(segment)
            plan.refreshed_at = now

        db.session.commit()

        current_app.logger.info(
            f'Action plans for organization {self.organization_id}: '
            f'{generated} generated, {updated} updated'
        )
        return {'generated': generated, 'updated': updated}

    # ==================== Queries ====================

    def get_plans_for_organization(self) -> List[ActionPlan]:
        return ActionPlan.query.filter_by(
            organization_id=self.organization_id
        ).order_by(ActionPlan.priority.asc(), ActionPlan.id.asc()).all()

    def get_plan(self, plan_id: int) -> ActionPlan:
        plan = ActionPlan.query.filter_by(id=plan_id, organization_id=self.organization_id).first()
        if not plan:
            raise NotFoundError('Action plan', plan_id)
        return plan

    # ==================== Lifecycle ====================

    def update_action_status(
        self,
        plan_id: int,
        action_id: str,
        status: str,
        campaign_id: str = None
    ) -> ActionPlan:
        if status not in ACTION_STATUSES:
            raise ValidationError(f"actionStatus must be one of {', '.join(sorted(ACTION_STATUSES))}", 'actionStatus')

        plan = self.get_plan(plan_id)
        actions = [dict(a) for a in plan.actions or []]

        for action in actions:
            if action.get('id') == action_id:
                action['status'] = status
                if campaign_id is not None:
                    action['campaignId'] = campaign_id
                break
        else:
            raise NotFoundError('Action', action_id)

        # Reassign so the JSON column is flagged dirty
        plan.actions = actions
        db.session.commit()
        return plan

    def activate_plan(self, plan_id: int) -> ActionPlan:
        plan = self.get_plan(plan_id)
        plan.status = ActionPlanStatus.ACTIVE.value
        plan.activated_at = datetime.utcnow()
        db.session.commit()
        return plan

    def pause_plan(self, plan_id: int) -> ActionPlan:
        plan = self.get_plan(plan_id)
        plan.status = ActionPlanStatus.PAUSED.value
        db.session.commit()
        return plan

    def delete_plan(self, plan_id: int) -> None:
        plan = self.get_plan(plan_id)
        db.session.delete(plan)
        db.session.commit()
