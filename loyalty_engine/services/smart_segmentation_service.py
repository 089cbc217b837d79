"""
Smart Segmentation Service.

Rule-based segments built from a fixed catalog of templates, evaluated
against a per-customer profile. Every evaluation rewrites membership,
customer_count and the averages in full.

Condition format (stored in Segment.conditions):
    {
        "rules": [{"field": "totalSpent", "operator": "gte", "value": "500"}],
        "matchType": "all",         # or "any"
        "useAiAnalysis": true,
        "priority": 1
    }

Tag-based AI segments store {"tags": [...]} instead and match customers
carrying any of the tags. Static segments (auto_update False) keep their
manually assigned members; only their counts are refreshed.
"""
from datetime import datetime
from statistics import median
from typing import Dict, Any, List, Optional, Tuple
from flask import current_app

from ..extensions import db
from ..models.customer import Customer
from ..models.loyalty import tier_rank
from ..models.segment import Segment
from ..utils.exceptions import NotFoundError, ValidationError
from .segmentation_service import order_stats, days_since


# ==================== Templates ====================

SMART_SEGMENT_TEMPLATES = [
    {
        'name': 'VIP Whales',
        'segment_type': 'VIP_WHALES',
        'description': 'Top spenders with high engagement and loyalty status',
        'conditions': [
            {'field': 'totalSpent', 'operator': 'gte', 'value': '500'},
            {'field': 'engagementScore', 'operator': 'gte', 'value': '60'},
            {'field': 'loyaltyMember', 'operator': 'eq', 'value': 'true'},
        ],
        'match_type': 'all',
        'use_ai_analysis': True,
        'auto_update': True,
        'priority': 1,
    },
    {
        'name': 'Rising Stars',
        'segment_type': 'RISING_STARS',
        'description': 'New customers showing strong purchase velocity and engagement growth',
        'conditions': [
            {'field': 'orderCount', 'operator': 'gte', 'value': '2'},
            {'field': 'daysSinceLastOrder', 'operator': 'lte', 'value': '30'},
            {'field': 'engagementScore', 'operator': 'gte', 'value': '40'},
        ],
        'match_type': 'all',
        'use_ai_analysis': True,
        'auto_update': True,
        'priority': 2,
    },
    {
        'name': 'Win-Back Targets',
        'segment_type': 'WIN_BACK',
        'description': 'Previously active customers who have stopped purchasing, high churn risk',
        'conditions': [
            {'field': 'orderCount', 'operator': 'gte', 'value': '2'},
            {'field': 'daysSinceLastOrder', 'operator': 'gte', 'value': '90'},
            {'field': 'churnRisk', 'operator': 'eq', 'value': 'HIGH'},
        ],
        'match_type': 'all',
        'use_ai_analysis': True,
        'auto_update': True,
        'priority': 3,
    },
    {
        'name': 'Bargain Hunters',
        'segment_type': 'BARGAIN_HUNTERS',
        'description': 'Frequent buyers with below-average order values',
        'conditions': [
            {'field': 'orderCount', 'operator': 'gte', 'value': '3'},
            {'field': 'totalSpent', 'operator': 'lte', 'value': '150'},
        ],
        'match_type': 'all',
        'use_ai_analysis': False,
        'auto_update': True,
        'priority': 5,
    },
    {
        'name': 'Loyal Advocates',
        'segment_type': 'LOYAL_ADVOCATES',
        'description': 'Long-term customers with loyalty tier Gold+ and consistent engagement',
        'conditions': [
            {'field': 'loyaltyTier', 'operator': 'gte', 'value': 'GOLD'},
            {'field': 'engagementScore', 'operator': 'gte', 'value': '50'},
            {'field': 'orderCount', 'operator': 'gte', 'value': '5'},
        ],
        'match_type': 'all',
        'use_ai_analysis': True,
        'auto_update': True,
        'priority': 2,
    },
    {
        'name': 'First-Time Buyers',
        'segment_type': 'FIRST_TIME',
        'description': 'Customers with exactly one purchase, critical nurture window',
        'conditions': [
            {'field': 'orderCount', 'operator': 'eq', 'value': '1'},
            {'field': 'daysSinceLastOrder', 'operator': 'lte', 'value': '60'},
        ],
        'match_type': 'all',
        'use_ai_analysis': False,
        'auto_update': True,
        'priority': 4,
    },
    {
        'name': 'Email Enthusiasts',
        'segment_type': 'EMAIL_ENGAGED',
        'description': 'Customers who consistently open and click emails',
        'conditions': [
            {'field': 'emailOptIn', 'operator': 'eq', 'value': 'true'},
            {'field': 'engagementScore', 'operator': 'gte', 'value': '50'},
        ],
        'match_type': 'all',
        'use_ai_analysis': False,
        'auto_update': True,
        'priority': 4,
    },
    {
        'name': 'SMS Responsive',
        'segment_type': 'SMS_RESPONSIVE',
        'description': 'Customers who engage via SMS',
        'conditions': [
            {'field': 'smsOptIn', 'operator': 'eq', 'value': 'true'},
            {'field': 'engagementScore', 'operator': 'gte', 'value': '30'},
        ],
        'match_type': 'all',
        'use_ai_analysis': False,
        'auto_update': True,
        'priority': 4,
    },
    {
        'name': 'Dormant High-Value',
        'segment_type': 'DORMANT_HIGH_VALUE',
        'description': 'Previously high-spending customers who have gone quiet',
        'conditions': [
            {'field': 'totalSpent', 'operator': 'gte', 'value': '300'},
            {'field': 'daysSinceLastOrder', 'operator': 'gte', 'value': '120'},
            {'field': 'engagementScore', 'operator': 'lte', 'value': '30'},
        ],
        'match_type': 'all',
        'use_ai_analysis': True,
        'auto_update': True,
        'priority': 2,
    },
    {
        'name': 'Birthday This Month',
        'segment_type': 'BIRTHDAY_MONTH',
        'description': 'Customers with a birthday in the current month',
        'conditions': [
            {'field': 'birthdayMonth', 'operator': 'eq', 'value': 'current'},
        ],
        'match_type': 'all',
        'use_ai_analysis': False,
        'auto_update': True,
        'priority': 3,
    },
]

BOOLEAN_FIELDS = {'loyaltyMember', 'smsOptIn', 'emailOptIn'}
STRING_FIELDS = {'loyaltyTier', 'churnRisk', 'source', 'rfmScore', 'status'}
NUMERIC_FIELDS = {
    'totalSpent', 'orderCount', 'avgOrderValue', 'engagementScore', 'loyaltyPoints',
    'predictedLtv', 'rfmRecency', 'rfmFrequency', 'rfmMonetary',
    'daysSinceLastOrder', 'daysSinceFirstOrder',
}
NUMERIC_OPERATORS = {
    'gt': lambda a, b: a > b,
    'gte': lambda a, b: a >= b,
    'lt': lambda a, b: a < b,
    'lte': lambda a, b: a <= b,
    'eq': lambda a, b: a == b,
    'neq': lambda a, b: a != b,
}


# ==================== Profiles & Conditions ====================

def build_profile(customer: Customer, now: datetime) -> Dict[str, Any]:
    """Flatten a customer and their order aggregates into condition fields."""
    stats = order_stats(customer)
    total_spent = float(stats.total_spent)

    return {
        'id': customer.id,
        'status': (customer.status or 'active').lower(),
        'totalSpent': total_spent,
        'orderCount': stats.order_count,
        'avgOrderValue': total_spent / stats.order_count if stats.order_count else 0.0,
        'daysSinceLastOrder': days_since(stats.last_order_at, now),
        'daysSinceFirstOrder': days_since(customer.created_at, now),
        'engagementScore': customer.engagement_score or 0,
        'predictedLtv': customer.predicted_ltv or 0,
        'rfmScore': customer.rfm_score,
        'rfmRecency': customer.rfm_recency,
        'rfmFrequency': customer.rfm_frequency,
        'rfmMonetary': customer.rfm_monetary,
        'churnRisk': customer.churn_risk or 'LOW',
        'loyaltyMember': bool(customer.loyalty_member),
        'loyaltyTier': customer.loyalty_tier if customer.loyalty_member else None,
        'loyaltyPoints': customer.loyalty_points or 0,
        'emailOptIn': bool(customer.email_opt_in),
        'smsOptIn': bool(customer.sms_opt_in),
        'source': customer.source,
        'birthday': customer.birthday,
        'segmentTags': list(customer.segment_tags or []),
    }


def evaluate_condition(profile: Dict[str, Any], condition: Dict[str, Any], now: datetime) -> Optional[bool]:
    """
    Evaluate one rule against a profile.

    Returns:
        True/False, or None when the rule is incomplete or names an unknown
        field (such rules are ignored)
    """
    field = condition.get('field')
    operator = condition.get('operator') or 'eq'
    value = condition.get('value')
    if not field or value is None or value == '':
        return None
    value = str(value)

    if field == 'birthdayMonth':
        birthday = profile.get('birthday')
        if birthday is None:
            return False
        try:
            month = now.month if value == 'current' else int(value)
        except ValueError:
            return None
        return birthday.month == month

    if field in BOOLEAN_FIELDS:
        return bool(profile.get(field)) == (value.lower() == 'true')

    if field in STRING_FIELDS:
        actual = profile.get(field)
        if field == 'loyaltyTier' and operator in ('gte', 'gt'):
            if actual is None or tier_rank(value) < 0:
                return False
            if operator == 'gte':
                return tier_rank(actual) >= tier_rank(value)
            return tier_rank(actual) > tier_rank(value)
        if operator == 'neq':
            return actual != value
        if operator == 'contains':
            return actual is not None and value.lower() in str(actual).lower()
        return actual == value

    if field in NUMERIC_FIELDS:
        actual = profile.get(field)
        if actual is None:
            return False
        try:
            expected = float(value)
        except ValueError:
            return None
        compare = NUMERIC_OPERATORS.get(operator, NUMERIC_OPERATORS['gte'])
        return compare(float(actual), expected)

    return None


def matches_rules(profile: Dict[str, Any], rules: List[Dict[str, Any]], match_type: str, now: datetime) -> bool:
    """Active customers matching all (or any) of the usable rules."""
    if profile.get('status') != 'active':
        return False

    results = [r for r in (evaluate_condition(profile, rule, now) for rule in rules or []) if r is not None]
    if not results:
        return True
    if match_type == 'any':
        return any(results)
    return all(results)


def matches_tags(profile: Dict[str, Any], tags: List[str]) -> bool:
    customer_tags = set(profile.get('segmentTags') or [])
    return any(tag in customer_tags for tag in tags or [])


def aggregate_customer_stats(profiles: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Cohort statistics used by the rule-based insight."""
    n = len(profiles) or 1
    spends = sorted(p['totalSpent'] for p in profiles)

    churn = {'HIGH': 0, 'MEDIUM': 0, 'LOW': 0}
    for p in profiles:
        churn[p.get('churnRisk') or 'LOW'] = churn.get(p.get('churnRisk') or 'LOW', 0) + 1

    churn_high = round(churn['HIGH'] / n * 100)
    churn_medium = round(churn['MEDIUM'] / n * 100)

    return {
        'avg_spend': sum(spends) / n,
        'median_spend': median(spends) if spends else 0,
        'avg_orders': sum(p['orderCount'] for p in profiles) / n,
        'avg_engagement': sum(p['engagementScore'] for p in profiles) / n,
        'avg_ltv': sum(p['predictedLtv'] for p in profiles) / n,
        'churn_high': churn_high,
        'churn_medium': churn_medium,
        'churn_low': 100 - churn_high - churn_medium,
    }


def generate_insight(segment_name: str, profiles: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Rule-based cohort summary with recommended actions."""
    stats = aggregate_customer_stats(profiles)
    high_churn = stats['churn_high'] > 30
    high_value = stats['avg_spend'] > 200

    return {
        'segmentLabel': segment_name,
        'description': (
            f"This segment contains {len(profiles)} customers with an average spend of "
            f"${stats['avg_spend']:.0f} and an engagement score of {stats['avg_engagement']:.0f}."
        ),
        'keyCharacteristics': [
            f"Average {stats['avg_orders']:.1f} orders per customer",
            'High-value spenders' if high_value else 'Standard-value spenders',
            'Elevated churn risk, needs attention' if high_churn else 'Healthy retention levels',
        ],
        'recommendedActions': [
            'Launch a win-back email campaign with exclusive offers' if high_churn
            else 'Send a loyalty appreciation message',
            'Offer VIP early access to new products' if high_value
            else 'Encourage larger baskets with bundle deals',
            'Personalize communications based on purchase history',
        ],
        'estimatedLtv': round(stats['avg_ltv']),
        'churnProbability': stats['churn_high'] / 100,
    }


# ==================== Service ====================

class SmartSegmentationService:
    """
    Template initialization and full segment re-evaluation.

    Usage:
        service = SmartSegmentationService(organization_id)
        service.initialize_templates()
        summary = service.evaluate_all_segments()
    """

    def __init__(self, organization_id: int, now: datetime = None):
        self.organization_id = organization_id
        self.now = now or datetime.utcnow()
        self._profiles = None

    # ==================== Profiles ====================

    def _load_profiles(self) -> Dict[int, Tuple[Customer, Dict[str, Any]]]:
        """Customers and their profiles, loaded once per evaluation pass."""
        if self._profiles is None:
            customers = Customer.query.filter_by(organization_id=self.organization_id).all()
            self._profiles = {c.id: (c, build_profile(c, self.now)) for c in customers}
        return self._profiles

    # ==================== Evaluation ====================

    def evaluate_segment(self, segment: Segment) -> Dict[str, Any]:
        """
        Recompute membership and aggregates for one segment.

        Returns:
            customer_count, avg_ltv, avg_engagement and insight
        """
        profiles = self._load_profiles()
        config = segment.conditions or {}

        if segment.is_static:
            members = [c for c in segment.customers if c.organization_id == self.organization_id]
            matched = [(c, profiles[c.id][1]) for c in members if c.id in profiles]
        elif 'tags' in config:
            matched = [(c, p) for c, p in profiles.values() if matches_tags(p, config.get('tags'))]
        else:
            matched = [
                (c, p) for c, p in profiles.values()
                if matches_rules(p, config.get('rules') or [], config.get('matchType') or 'all', self.now)
            ]

        customer_count = len(matched)
        avg_ltv = sum(p['predictedLtv'] for _, p in matched) / customer_count if customer_count else 0
        avg_engagement = sum(p['engagementScore'] for _, p in matched) / customer_count if customer_count else 0

        if not segment.is_static:
            segment.customers = [c for c, _ in matched]
        segment.customer_count = customer_count
        segment.avg_lifetime_value = round(avg_ltv)
        segment.avg_engagement = round(avg_engagement, 1)
        segment.last_calculated = self.now

        insight = None
        if segment.is_ai_powered or config.get('useAiAnalysis'):
            if customer_count:
                insight = generate_insight(segment.name, [p for _, p in matched])
            # An emptied cohort keeps no insight
            segment.insight = insight

        db.session.commit()

        return {
            'customer_count': customer_count,
            'avg_ltv': avg_ltv,
            'avg_engagement': avg_engagement,
            'insight': insight
        }

    def evaluate_all_segments(self) -> Dict[str, Any]:
        """
        Re-evaluate every segment of the organization.

        A segment that fails to evaluate is logged and left out of the
        results; the rest still run.
        """
        segments = Segment.query.filter_by(organization_id=self.organization_id).order_by(Segment.id).all()

        results = []
        failed = 0
        total_customers_segmented = 0

        for segment in segments:
            try:
                outcome = self.evaluate_segment(segment)
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(
                    f'Segment evaluation failed for {segment.id} ({segment.segment_type}): {e}'
                )
                failed += 1
                continue

            results.append({
                'segment_id': segment.id,
                'name': segment.name,
                'segment_type': segment.segment_type,
                'customer_count': outcome['customer_count'],
                'avg_ltv': outcome['avg_ltv']
            })
            total_customers_segmented += outcome['customer_count']

        return {
            'evaluated': len(results),
            'failed': failed,
            'total_customers_segmented': total_customers_segmented,
            'results': results
        }

    # ==================== Templates ====================

    def initialize_templates(self) -> Dict[str, int]:
        """
        Create the smart segment catalog for the organization.

        Templates whose segment_type already exists are counted under
        'existing' and left untouched.
        """
        existing_types = {
            s.segment_type for s in Segment.query.filter_by(organization_id=self.organization_id).all()
        }

        created = 0
        existing = 0

        for template in SMART_SEGMENT_TEMPLATES:
            if template['segment_type'] in existing_types:
                existing += 1
                continue

            db.session.add(Segment(
                organization_id=self.organization_id,
                name=template['name'],
                description=template['description'],
                segment_type=template['segment_type'],
                is_ai_powered=template['use_ai_analysis'],
                auto_update=template['auto_update'],
                conditions={
                    'rules': [dict(rule) for rule in template['conditions']],
                    'matchType': template['match_type'],
                    'useAiAnalysis': template['use_ai_analysis'],
                    'priority': template['priority'],
                },
                customer_count=0
            ))
            created += 1

        db.session.commit()
        current_app.logger.info(
            f'Smart segment templates for organization {self.organization_id}: '
            f'{created} created, {existing} existing'
        )
        return {'created': created, 'existing': existing}

    # ==================== Custom Segments ====================

    def create_static_segment(self, name: str, description: str = None, customer_ids: List[int] = None) -> Segment:
        """Manually curated segment. Its membership is never auto-evaluated."""
        if not name:
            raise ValidationError('name is required', 'name')

        segment = Segment(
            organization_id=self.organization_id,
            name=name,
            description=description,
            segment_type=f'CUSTOM-{datetime.utcnow().strftime("%Y%m%d%H%M%S%f")}',
            is_ai_powered=False,
            auto_update=False,
            conditions={}
        )
        db.session.add(segment)
        db.session.flush()

        if customer_ids:
            self._assign_members(segment, customer_ids)
        db.session.commit()
        return segment

    def set_static_members(self, segment_id: int, customer_ids: List[int]) -> Segment:
        segment = Segment.query.filter_by(id=segment_id, organization_id=self.organization_id).first()
        if not segment:
            raise NotFoundError('Segment', segment_id)
        if not segment.is_static:
            raise ValidationError('Only static segments accept manual members', 'segment_id')

        self._assign_members(segment, customer_ids)
        db.session.commit()
        return segment

    def _assign_members(self, segment: Segment, customer_ids: List[int]) -> None:
        customers = Customer.query.filter(
            Customer.organization_id == self.organization_id,
            Customer.id.in_(customer_ids or [])
        ).all()
        segment.customers = customers
        segment.customer_count = len(customers)
