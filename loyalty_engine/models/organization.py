"""
Organization model for multi-tenant CRM.
"""
from datetime import datetime
from ..extensions import db


class Organization(db.Model):
    """
    Business using the CRM.
    Global table - every other table is scoped by organization_id.
    """
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)

    # Settings (JSON for flexibility)
    settings = db.Column(db.JSON, default=dict)

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customers = db.relationship('Customer', backref='organization', lazy='dynamic')
    loyalty_tiers = db.relationship('LoyaltyTier', backref='organization', lazy='dynamic')
    segments = db.relationship('Segment', backref='organization', lazy='dynamic')

    def __repr__(self):
        return f'<Organization {self.slug}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'is_active': self.is_active
        }
