"""
Points Accrual Engine.

Lifetime points are recomputed from the customer's order history rather than
incremented per order event:
- 1 point per whole currency unit of each qualifying order (floor)
- qualifying = paid (or fulfilled/completed) and not refunded
- the stored balance only ever moves up through recomputation

Recomputing the total from source orders makes every run idempotent, so the
same pass can back-fill an entire customer base or run again after a crash
without double-crediting anyone.
"""

from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Any, Iterable, List, Optional
from flask import current_app

from ..extensions import db
from ..models.customer import Customer, Order
from .tier_promotion_service import TierPromotionService


# ==================== Configuration ====================

# 1 point per whole currency unit spent
POINTS_PER_CURRENCY_UNIT = 1

PAID_FINANCIAL_STATUSES = {'paid'}
COMPLETED_FULFILLMENT_STATUSES = {'fulfilled', 'completed'}
REFUNDED_FINANCIAL_STATUSES = {'refunded', 'partially_refunded'}


def _normalize(status: Optional[str]) -> str:
    return (status or '').strip().lower()


def is_qualifying_order(order: Order) -> bool:
    """
    An order earns points when payment completed and nothing was refunded.

    Either financial_status 'paid' or a fulfilment status of
    fulfilled/completed counts as payment completion.
    """
    financial = _normalize(order.financial_status)
    fulfillment = _normalize(order.status)

    if financial in REFUNDED_FINANCIAL_STATUSES:
        return False

    return financial in PAID_FINANCIAL_STATUSES or fulfillment in COMPLETED_FULFILLMENT_STATUSES


def qualifying_orders(orders: Iterable[Order]) -> List[Order]:
    """Filter an order collection down to the ones that earn points."""
    return [order for order in orders if is_qualifying_order(order)]


def points_for_amount(amount) -> int:
    """Whole points for one order total. Negative or missing totals earn nothing."""
    if amount is None:
        return 0
    value = Decimal(str(amount))
    if value <= 0:
        return 0
    return int(value.to_integral_value(rounding=ROUND_FLOOR)) * POINTS_PER_CURRENCY_UNIT


def calculate_earned_points(orders: Iterable[Order]) -> int:
    """Lifetime earned points for an order collection."""
    return sum(points_for_amount(order.total_amount) for order in qualifying_orders(orders))


class PointsService:
    """
    Recompute-from-source points accrual.

    Usage:
        service = PointsService(organization_id)

        # One customer
        new_total = service.recompute_points(customer)

        # Whole organization (backfill)
        summary = service.recompute_for_organization()
    """

    def __init__(self, organization_id: int):
        self.organization_id = organization_id

    # ==================== Single Customer ====================

    def compute_points(self, customer: Customer) -> int:
        """Lifetime earned points from the customer's orders, without writing."""
        return calculate_earned_points(customer.orders)

    def recompute_points(self, customer: Customer, commit: bool = True) -> int:
        """
        Bring a customer's stored points in line with their order history.

        The stored value is only raised, never lowered. A lower computed total
        (a refund processed out of order, an order missing from a partial
        sync) leaves the previously-correct balance alone.

        Args:
            customer: Customer to recompute
            commit: Commit the change (False when the caller owns the transaction)

        Returns:
            The stored point total after recomputation
        """
        stored = customer.loyalty_points or 0
        orders = customer.orders

        if not qualifying_orders(orders):
            current_app.logger.info(
                f'Points recompute skipped: customer {customer.id} has no qualifying orders'
            )
            return stored

        earned = calculate_earned_points(orders)

        if earned <= stored:
            return stored

        customer.loyalty_points = earned

        if commit:
            try:
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.info(
            f'Points recomputed: customer {customer.id} {stored} -> {earned}'
        )
        return earned

    # ==================== Batch Backfill ====================

    def recompute_for_organization(self, dry_run: bool = False) -> Dict[str, Any]:
        """
        Recompute points for every loyalty member in the organization and
        re-resolve each member's tier from the new balance in the same commit.

        Per-customer failures are counted and logged; the batch continues.

        Args:
            dry_run: Compute and report without writing

        Returns:
            Summary with processed/updated/promoted/skipped/failed counts
        """
        customer_ids = [
            row.id for row in db.session.query(Customer.id).filter(
                Customer.organization_id == self.organization_id,
                Customer.loyalty_member.is_(True)
            ).all()
        ]

        results = {
            'processed': 0,
            'updated': 0,
            'promoted': 0,
            'skipped': 0,
            'failed': 0,
            'total_points_awarded': 0,
            'dry_run': dry_run,
            'details': [],
            'errors': []
        }

        promotions = TierPromotionService(self.organization_id)

        for customer_id in customer_ids:
            customer = db.session.get(Customer, customer_id)
            if customer is None:
                # Removed by an admin between listing and loading
                current_app.logger.info(f'Points recompute: customer {customer_id} no longer exists, skipping')
                results['skipped'] += 1
                continue

            results['processed'] += 1
            stored = customer.loyalty_points or 0

            try:
                if dry_run:
                    computed = self.compute_points(customer)
                    new_total = max(stored, computed) if qualifying_orders(customer.orders) else stored
                else:
                    new_total = self.recompute_points(customer, commit=False)
                tier = promotions.check_and_promote(
                    customer, points=new_total, dry_run=dry_run, commit=False
                )
                if not dry_run:
                    db.session.commit()
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(f'Points recompute failed for customer {customer_id}: {e}')
                results['failed'] += 1
                results['errors'].append({'customer_id': customer_id, 'error': str(e)})
                continue

            if tier['promoted']:
                results['promoted'] += 1

            if new_total > stored:
                results['updated'] += 1
                results['total_points_awarded'] += new_total - stored
                results['details'].append({
                    'customer_id': customer_id,
                    'previous_points': stored,
                    'new_points': new_total,
                    'previous_tier': tier['previous_tier'],
                    'new_tier': tier['new_tier'],
                    'code': tier['code']
                })
            else:
                results['skipped'] += 1

        current_app.logger.info(
            f"{'[DRY RUN] ' if dry_run else ''}Points recompute for organization {self.organization_id}: "
            f"{results['updated']} updated, {results['promoted']} promoted, "
            f"{results['skipped']} skipped, {results['failed']} failed"
        )
        return results
