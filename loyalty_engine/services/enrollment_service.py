"""
Loyalty program enrollment.

Signup either creates a customer or flags an existing one (matched by email
or phone within the organization) as a loyalty member. The customer's
existing order history is credited immediately through
sync_customer_loyalty().
"""
from datetime import date
from typing import Dict, Any, Optional
from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models.customer import Customer
from ..models.loyalty import LoyaltyTierLevel
from ..models.organization import Organization
from ..utils.exceptions import OrganizationNotFoundError, ValidationError
from .recalculation_service import sync_customer_loyalty


def _parse_birthday(value) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError('birthday must be an ISO date (YYYY-MM-DD)', 'birthday')


def find_existing_customer(organization_id: int, email: str = None, phone: str = None) -> Optional[Customer]:
    filters = []
    if email:
        filters.append(db.func.lower(Customer.email) == email.strip().lower())
    if phone:
        filters.append(Customer.phone == phone)
    if not filters:
        return None

    return Customer.query.filter(
        Customer.organization_id == organization_id,
        or_(*filters)
    ).first()


def enroll_customer(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Enroll a customer in the organization's loyalty program.

    Args:
        data: orgSlug plus firstName, lastName, email, phone, birthday

    Returns:
        Dict with enrolled flag, customer id, whether the customer already
        existed, and the loyalty sync outcome
    """
    slug = data.get('orgSlug')
    if not slug:
        raise ValidationError('orgSlug is required', 'orgSlug')

    email = (data.get('email') or '').strip().lower() or None
    phone = (data.get('phone') or '').strip() or None
    if not email and not phone:
        raise ValidationError('email or phone is required', 'email')

    organization = Organization.query.filter_by(slug=slug, is_active=True).first()
    if not organization:
        raise OrganizationNotFoundError(slug)

    birthday = _parse_birthday(data.get('birthday'))
    customer = find_existing_customer(organization.id, email, phone)
    existing = customer is not None

    if customer is None:
        customer = Customer(
            organization_id=organization.id,
            first_name=data.get('firstName'),
            last_name=data.get('lastName'),
            email=email,
            phone=phone,
            source='loyalty_signup'
        )
        db.session.add(customer)

    if not customer.loyalty_member:
        customer.loyalty_member = True
        customer.loyalty_tier = LoyaltyTierLevel.BRONZE.value
    if birthday:
        customer.birthday = birthday

    db.session.commit()

    loyalty = sync_customer_loyalty(customer)

    current_app.logger.info(
        f"Customer {customer.id} enrolled in loyalty for organization {organization.id} "
        f"({'existing' if existing else 'new'} customer, {loyalty['points']} points, {loyalty['new_tier']})"
    )
    return {
        'enrolled': True,
        'customer_id': customer.id,
        'existing_customer': existing,
        'loyalty': loyalty
    }
