"""
Customer Segmentation Service.

Recomputes per-customer metrics from order history and engagement activity:
- RFM scores (recency, frequency, monetary; 1-5 each)
- engagement score (0-100)
- churn risk (LOW / MEDIUM / HIGH)
- enhanced predicted lifetime value
- behavioural segment tags (CHAMPION, AT_RISK, ...)

Metrics are derived from qualifying orders only, the same filter the points
engine uses, so refunded orders never inflate spend.

After metrics are refreshed, assign_to_segments() makes sure the tag-based
AI segments exist and re-evaluates every segment of the organization.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, List, NamedTuple, Optional
from flask import current_app

from ..extensions import db
from ..models.customer import Customer, CustomerActivity
from ..models.segment import Segment
from ..utils.exceptions import CustomerNotFoundError
from .points_service import qualifying_orders


# Days-since value used when a customer has never ordered
NO_ORDER_DAYS = 999

# Tag-based segments maintained by assign_to_segments()
AI_SEGMENT_MAPPINGS = [
    {
        'name': 'Champions',
        'segment_type': 'CHAMPION',
        'tags': ['CHAMPION'],
        'description': 'Best customers - high value, high frequency, recent purchases',
    },
    {
        'name': 'High Value',
        'segment_type': 'HIGH_VALUE',
        'tags': ['HIGH_VALUE', 'VIP'],
        'description': 'Customers with highest spending',
    },
    {
        'name': 'At Risk',
        'segment_type': 'AT_RISK',
        'tags': ['AT_RISK', 'DORMANT'],
        'description': 'Customers at risk of churning',
    },
    {
        'name': 'Highly Engaged',
        'segment_type': 'ENGAGED',
        'tags': ['HIGHLY_ENGAGED'],
        'description': 'Active customers with high engagement',
    },
    {
        'name': 'New Customers',
        'segment_type': 'NEW',
        'tags': ['NEW_CUSTOMER'],
        'description': 'Recently acquired customers',
    },
    {
        'name': 'Frequent Buyers',
        'segment_type': 'FREQUENT',
        'tags': ['FREQUENT_BUYER'],
        'description': 'Customers who purchase regularly',
    },
]

LOYALTY_LTV_MULTIPLIERS = {
    'DIAMOND': 1.5,
    'PLATINUM': 1.4,
    'GOLD': 1.3,
    'SILVER': 1.2,
    'BRONZE': 1.1,
}


class OrderStats(NamedTuple):
    """Aggregates over a customer's qualifying orders."""
    total_spent: Decimal
    order_count: int
    first_order_at: Optional[datetime]
    last_order_at: Optional[datetime]


class RFMScores(NamedTuple):
    recency: int
    frequency: int
    monetary: int

    @property
    def score(self) -> str:
        return f'{self.recency}{self.frequency}{self.monetary}'


def order_stats(customer: Customer) -> OrderStats:
    """Spend, count and first/last date over the customer's qualifying orders."""
    orders = qualifying_orders(customer.orders)
    dates = [o.created_at for o in orders if o.created_at]
    return OrderStats(
        total_spent=sum((Decimal(str(o.total_amount or 0)) for o in orders), Decimal('0')),
        order_count=len(orders),
        first_order_at=min(dates) if dates else None,
        last_order_at=max(dates) if dates else None,
    )


def days_since(moment: Optional[datetime], now: datetime) -> Optional[int]:
    if moment is None:
        return None
    return max(0, (now - moment).days)


class SegmentationService:
    """
    Metric recalculation and AI segment assignment for one organization.

    Usage:
        service = SegmentationService(organization_id)
        counts = service.recalculate_all_customers()
        service.assign_to_segments()
    """

    def __init__(self, organization_id: int, now: datetime = None):
        self.organization_id = organization_id
        self.now = now or datetime.utcnow()

    # ==================== Scoring ====================

    def calculate_rfm(self, stats: OrderStats) -> RFMScores:
        days = days_since(stats.last_order_at, self.now)
        if days is None:
            recency = 1
        elif days <= 30:
            recency = 5
        elif days <= 90:
            recency = 4
        elif days <= 180:
            recency = 3
        elif days <= 365:
            recency = 2
        else:
            recency = 1

        count = stats.order_count
        if count >= 20:
            frequency = 5
        elif count >= 10:
            frequency = 4
        elif count >= 5:
            frequency = 3
        elif count >= 2:
            frequency = 2
        else:
            frequency = 1

        spent = stats.total_spent
        if spent >= 1000:
            monetary = 5
        elif spent >= 500:
            monetary = 4
        elif spent >= 200:
            monetary = 3
        elif spent >= 50:
            monetary = 2
        else:
            monetary = 1

        return RFMScores(recency, frequency, monetary)

    @staticmethod
    def calculate_engagement_score(customer: Customer, activity_types: List[str]) -> int:
        """Engagement score (0-100) from recent activity and loyalty participation."""
        def count(kind):
            return sum(1 for t in activity_types if t == kind)

        score = 0

        # Email (0-25)
        score += min(count('EMAIL_OPENED') * 2, 15)
        score += min(count('EMAIL_CLICKED') * 5, 10)

        # SMS (0-15)
        score += min(count('SMS_RECEIVED') * 3, 15)

        # Purchases (0-30)
        score += min(count('PURCHASE') * 6, 30)

        # Loyalty program (0-20)
        if customer.loyalty_member:
            score += 10
            points = customer.loyalty_points or 0
            if points > 100:
                score += 5
            if points > 500:
                score += 5

        # Chat/support (0-10)
        score += min(count('CHAT_STARTED') * 2, 10)

        return min(score, 100)

    @staticmethod
    def assess_churn_risk(days_since_last_order: Optional[int], engagement_score: int) -> str:
        days = NO_ORDER_DAYS if days_since_last_order is None else days_since_last_order
        if days > 180 and engagement_score < 20:
            return 'HIGH'
        if days > 90 and engagement_score < 40:
            return 'MEDIUM'
        return 'LOW'

    def predict_enhanced_ltv(self, customer: Customer, stats: OrderStats, engagement_score: int) -> int:
        """
        Two-year forward LTV weighted by recency, purchase rate, engagement
        and loyalty tier. Never below what the customer already spent.
        """
        if stats.order_count == 0:
            return 0

        spent = float(stats.total_spent)
        avg_order_value = spent / stats.order_count

        days = days_since(stats.last_order_at, self.now)
        recency_factor = max(0.5, 1.5 - (365 if days is None else days) / 365)

        created = customer.created_at or stats.first_order_at or self.now
        customer_age_days = max(30, (self.now - created).total_seconds() / 86400)
        annual_rate = (stats.order_count / customer_age_days) * 365

        engagement_mult = 1 + (engagement_score / 100) * 0.3

        if customer.loyalty_member:
            loyalty_mult = LOYALTY_LTV_MULTIPLIERS.get(customer.loyalty_tier or 'BRONZE', 1.1)
        else:
            loyalty_mult = 1.0

        ltv = avg_order_value * annual_rate * 2 * recency_factor * engagement_mult * loyalty_mult
        return round(max(ltv, spent))

    @staticmethod
    def generate_segment_tags(
        customer: Customer,
        stats: OrderStats,
        rfm: RFMScores,
        engagement_score: int,
        churn_risk: str
    ) -> List[str]:
        tags = []

        # Value
        if stats.total_spent >= 1000:
            tags.append('HIGH_VALUE')
        elif stats.total_spent >= 500:
            tags.append('MEDIUM_VALUE')
        elif stats.total_spent < 50:
            tags.append('LOW_VALUE')

        # Engagement
        if engagement_score >= 70:
            tags.append('HIGHLY_ENGAGED')
        elif engagement_score >= 40:
            tags.append('MODERATELY_ENGAGED')
        elif engagement_score < 20:
            tags.append('DISENGAGED')

        # Frequency
        if rfm.frequency >= 4:
            tags.append('FREQUENT_BUYER')
        elif rfm.frequency <= 2 and stats.order_count > 0:
            tags.append('OCCASIONAL_BUYER')

        # Recency
        if rfm.recency >= 4:
            tags.append('RECENT_CUSTOMER')
        elif rfm.recency <= 2:
            tags.append('DORMANT')

        if churn_risk == 'HIGH':
            tags.append('AT_RISK')

        if rfm.recency >= 4 and rfm.frequency >= 4 and rfm.monetary >= 4:
            tags.append('CHAMPION')

        if stats.order_count <= 1:
            tags.append('NEW_CUSTOMER')

        if customer.loyalty_member:
            tags.append('LOYALTY_MEMBER')
            if customer.loyalty_tier in ('DIAMOND', 'PLATINUM'):
                tags.append('VIP')

        return tags

    # ==================== Per-customer ====================

    def calculate_customer_metrics(self, customer: Customer) -> Dict[str, Any]:
        """All derived metrics for one customer, without writing."""
        window = current_app.config.get('ACTIVITY_WINDOW', 100)
        activity_types = [
            row.activity_type for row in customer.activities.order_by(
                CustomerActivity.created_at.desc()
            ).limit(window).all()
        ]

        stats = order_stats(customer)
        rfm = self.calculate_rfm(stats)
        engagement = self.calculate_engagement_score(customer, activity_types)
        days = days_since(stats.last_order_at, self.now)
        churn_risk = self.assess_churn_risk(days, engagement)

        return {
            'rfm_recency': NO_ORDER_DAYS if days is None else days,
            'rfm_frequency': rfm.frequency,
            'rfm_monetary': rfm.monetary,
            'rfm_score': rfm.score,
            'engagement_score': engagement,
            'churn_risk': churn_risk,
            'predicted_ltv': self.predict_enhanced_ltv(customer, stats, engagement),
            'segment_tags': self.generate_segment_tags(customer, stats, rfm, engagement, churn_risk),
        }

    def update_customer_metrics(self, customer_id: int) -> Dict[str, Any]:
        """Recompute and store one customer's metrics."""
        customer = Customer.query.filter_by(
            id=customer_id, organization_id=self.organization_id
        ).first()
        if not customer:
            raise CustomerNotFoundError(customer_id)

        metrics = self.calculate_customer_metrics(customer)
        for field, value in metrics.items():
            setattr(customer, field, value)
        customer.metrics_updated_at = self.now

        db.session.commit()
        return metrics

    # ==================== Batch ====================

    def recalculate_all_customers(self) -> Dict[str, int]:
        """
        Refresh metrics for every customer in the organization.

        A failure on one customer is logged, counted and skipped.
        """
        customer_ids = [
            row.id for row in db.session.query(Customer.id).filter(
                Customer.organization_id == self.organization_id
            ).all()
        ]

        processed = 0
        failed = 0

        for customer_id in customer_ids:
            try:
                self.update_customer_metrics(customer_id)
                processed += 1
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(f'Failed to segment customer {customer_id}: {e}')
                failed += 1

        current_app.logger.info(
            f'Segmentation metrics for organization {self.organization_id}: '
            f'{processed} processed, {failed} failed'
        )
        return {'processed': processed, 'failed': failed}

    def ensure_ai_segments(self) -> int:
        """Create any missing tag-based AI segments. Returns number created."""
        existing = {
            s.segment_type for s in Segment.query.filter_by(organization_id=self.organization_id).all()
        }

        created = 0
        for mapping in AI_SEGMENT_MAPPINGS:
            if mapping['segment_type'] in existing:
                continue
            db.session.add(Segment(
                organization_id=self.organization_id,
                name=mapping['name'],
                description=mapping['description'],
                segment_type=mapping['segment_type'],
                is_ai_powered=True,
                auto_update=True,
                conditions={'tags': list(mapping['tags'])},
                customer_count=0
            ))
            created += 1

        if created:
            db.session.commit()
        return created

    def assign_to_segments(self) -> Dict[str, Any]:
        """
        Rebuild segment membership from the freshly computed metrics.

        Returns:
            The evaluate_all_segments() summary
        """
        from .smart_segmentation_service import SmartSegmentationService

        self.ensure_ai_segments()
        return SmartSegmentationService(self.organization_id, now=self.now).evaluate_all_segments()
