"""
Customer, Order and CustomerActivity models.

Customer and Order rows are created by the checkout and signup collaborators.
The loyalty engine only reads orders and activities; it writes the loyalty
fields and the derived segmentation metrics on Customer.
"""
from datetime import datetime
from decimal import Decimal
from ..extensions import db


class Customer(db.Model):
    """
    CRM customer record.
    Belongs to exactly one organization.
    """
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)

    # Identity
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    email = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    birthday = db.Column(db.Date)
    source = db.Column(db.String(50))  # shopify, pos, signup_form, import

    # Marketing consent
    email_opt_in = db.Column(db.Boolean, default=False)
    sms_opt_in = db.Column(db.Boolean, default=False)

    status = db.Column(db.String(20), default='active')  # active, inactive

    # Loyalty program
    loyalty_member = db.Column(db.Boolean, default=False, nullable=False)
    loyalty_points = db.Column(db.Integer, default=0, nullable=False)
    loyalty_tier = db.Column(db.String(20), default='BRONZE')
    loyalty_used = db.Column(db.Integer, default=0)  # Points redeemed
    special_points = db.Column(db.Integer, default=0)

    # Running totals (maintained by the checkout collaborator)
    total_spent = db.Column(db.Numeric(12, 2), default=Decimal('0'))
    order_count = db.Column(db.Integer, default=0)
    last_order_at = db.Column(db.DateTime)

    # Derived segmentation metrics (recomputed, never incremented)
    rfm_recency = db.Column(db.Integer)        # Days since last qualifying order
    rfm_frequency = db.Column(db.Integer)      # 1-5
    rfm_monetary = db.Column(db.Integer)       # 1-5
    rfm_score = db.Column(db.String(3))        # e.g. '545'
    engagement_score = db.Column(db.Integer, default=0)
    churn_risk = db.Column(db.String(10))      # LOW, MEDIUM, HIGH
    predicted_ltv = db.Column(db.Integer, default=0)
    segment_tags = db.Column(db.JSON, default=list)
    metrics_updated_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    orders = db.relationship('Order', backref='customer', lazy='select', order_by='Order.created_at')
    activities = db.relationship('CustomerActivity', backref='customer', lazy='dynamic')
    redemptions = db.relationship('RewardRedemption', backref='customer', lazy='dynamic')

    def __repr__(self):
        return f'<Customer {self.id}>'

    @property
    def full_name(self) -> str:
        return ' '.join(part for part in [self.first_name, self.last_name] if part)

    def to_dict(self, include_metrics=False):
        data = {
            'id': self.id,
            'organization_id': self.organization_id,
            'name': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'loyalty_member': self.loyalty_member,
            'loyalty_points': self.loyalty_points,
            'loyalty_tier': self.loyalty_tier,
            'loyalty_used': self.loyalty_used,
            'total_spent': float(self.total_spent or 0),
            'order_count': self.order_count,
        }

        if include_metrics:
            data['metrics'] = {
                'rfm_recency': self.rfm_recency,
                'rfm_frequency': self.rfm_frequency,
                'rfm_monetary': self.rfm_monetary,
                'rfm_score': self.rfm_score,
                'engagement_score': self.engagement_score,
                'churn_risk': self.churn_risk,
                'predicted_ltv': self.predicted_ltv,
                'segment_tags': self.segment_tags or [],
                'updated_at': self.metrics_updated_at.isoformat() if self.metrics_updated_at else None
            }

        return data


class Order(db.Model):
    """
    Customer order, written by the checkout collaborator.
    Immutable once settled except for status transitions.
    """
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)

    order_number = db.Column(db.String(50))
    total_amount = db.Column(db.Numeric(12, 2), default=Decimal('0'))

    # Fulfilment status: pending, FULFILLED, completed, cancelled
    status = db.Column(db.String(30), default='pending')
    # paid, pending, refunded, partially_refunded, voided
    financial_status = db.Column(db.String(30))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Order {self.order_number or self.id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'order_number': self.order_number,
            'total_amount': float(self.total_amount or 0),
            'status': self.status,
            'financial_status': self.financial_status,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class CustomerActivity(db.Model):
    """
    Engagement event (email open, SMS, purchase, chat) recorded by the
    messaging collaborators. Read by the engagement score.
    """
    __tablename__ = 'customer_activities'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)

    # EMAIL_OPENED, EMAIL_CLICKED, SMS_RECEIVED, PURCHASE, CHAT_STARTED
    activity_type = db.Column(db.String(30), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<CustomerActivity {self.activity_type}>'
