"""
Customer segment model.

Membership is recomputed in full on every evaluation pass; there is no
membership history.
"""
from datetime import datetime
from ..extensions import db


segment_customers = db.Table(
    'segment_customers',
    db.Column('segment_id', db.Integer, db.ForeignKey('segments.id', ondelete='CASCADE'), primary_key=True),
    db.Column('customer_id', db.Integer, db.ForeignKey('customers.id', ondelete='CASCADE'), primary_key=True),
)


class Segment(db.Model):
    """
    Organization-scoped customer segment.

    Kinds, by conditions payload:
    - rule-based smart segment: {"rules": [...], "matchType": "all", "priority": 1}
    - tag-based AI segment: {"tags": ["CHAMPION"]}
    - static segment (auto_update False): membership assigned manually
    """
    __tablename__ = 'segments'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    segment_type = db.Column(db.String(50), nullable=False)  # VIP_WHALES, CHAMPION, CUSTOM-...

    is_ai_powered = db.Column(db.Boolean, default=False)
    auto_update = db.Column(db.Boolean, default=True)
    conditions = db.Column(db.JSON, default=dict)

    # Aggregates rewritten on each evaluation
    customer_count = db.Column(db.Integer, default=0)
    avg_lifetime_value = db.Column(db.Float, default=0)
    avg_engagement = db.Column(db.Float, default=0)
    insight = db.Column(db.JSON)
    last_calculated = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customers = db.relationship('Customer', secondary=segment_customers, lazy='select',
                                backref=db.backref('segments', lazy='select'))

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'segment_type', name='uq_org_segment_type'),
    )

    def __repr__(self):
        return f'<Segment {self.segment_type} ({self.customer_count})>'

    @property
    def is_static(self) -> bool:
        return not self.auto_update

    def to_dict(self, include_members=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'segment_type': self.segment_type,
            'is_ai_powered': self.is_ai_powered,
            'auto_update': self.auto_update,
            'conditions': self.conditions or {},
            'customer_count': self.customer_count or 0,
            'avg_lifetime_value': self.avg_lifetime_value or 0,
            'avg_engagement': self.avg_engagement or 0,
            'insight': self.insight,
            'last_calculated': self.last_calculated.isoformat() if self.last_calculated else None
        }

        if include_members:
            data['customer_ids'] = [c.id for c in self.customers]

        return data
