"""
Action plan model.

One plan per (organization, template, segment). Regeneration refreshes the
existing row instead of inserting a duplicate.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class ActionPlanStatus(str, Enum):
    """Lifecycle of an action plan."""
    DRAFT = 'DRAFT'       # Generated, not yet acted on
    ACTIVE = 'ACTIVE'     # Merchant is running it
    PAUSED = 'PAUSED'


class ActionStatus(str, Enum):
    """Lifecycle of a single recommended action."""
    PENDING = 'PENDING'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    SKIPPED = 'SKIPPED'


class ActionPlan(db.Model):
    """Recommended marketing actions for one segment."""
    __tablename__ = 'action_plans'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    segment_id = db.Column(db.Integer, db.ForeignKey('segments.id', ondelete='CASCADE'), nullable=False)
    template_key = db.Column(db.String(50), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    priority = db.Column(db.Integer, default=3)  # 1 = highest
    status = db.Column(db.String(20), default=ActionPlanStatus.DRAFT.value)

    # [{id, type, channel, title, description, status, campaignId}]
    actions = db.Column(db.JSON, default=list)
    # Snapshot of the segment when the plan was last refreshed
    metrics = db.Column(db.JSON, default=dict)

    generated_at = db.Column(db.DateTime, default=datetime.utcnow)
    refreshed_at = db.Column(db.DateTime)
    activated_at = db.Column(db.DateTime)

    # Relationships
    segment = db.relationship('Segment', backref=db.backref('action_plans', lazy='select',
                                                            cascade='all, delete-orphan'))

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'template_key', 'segment_id', name='uq_action_plan_identity'),
    )

    def __repr__(self):
        return f'<ActionPlan {self.template_key}:{self.segment_id}>'

    @property
    def identity_key(self) -> str:
        return f'{self.organization_id}:{self.template_key}:{self.segment_id}'

    def to_dict(self, include_segment=False):
        data = {
            'id': self.id,
            'organization_id': self.organization_id,
            'segment_id': self.segment_id,
            'template_key': self.template_key,
            'name': self.name,
            'description': self.description,
            'priority': self.priority,
            'status': self.status,
            'actions': self.actions or [],
            'metrics': self.metrics or {},
            'generated_at': self.generated_at.isoformat() if self.generated_at else None,
            'refreshed_at': self.refreshed_at.isoformat() if self.refreshed_at else None,
            'activated_at': self.activated_at.isoformat() if self.activated_at else None
        }

        if include_segment and self.segment:
            data['segment'] = self.segment.to_dict()

        return data
