"""
CLI Commands for loyalty maintenance.

One-off backfills and repairs that can also run from cron:

# Backfill points from order history
flask loyalty recompute-points --organization-id=1 --dry-run

# Promote members whose points already qualify for a higher tier
flask loyalty retroactive-promote --organization-id=1

# Tier promotion codes must never expire
flask loyalty repair-tier-codes
"""
import click
from flask.cli import with_appcontext

from ..extensions import db
from ..models.organization import Organization
from ..services.points_service import PointsService
from ..services.tier_service import TierService
from ..services.tier_promotion_service import TierPromotionService


def _organizations(organization_id):
    """Requested organization, or every active one."""
    if organization_id:
        organization = db.session.get(Organization, organization_id)
        if not organization:
            raise click.ClickException(f'Organization {organization_id} not found')
        return [organization]
    return Organization.query.filter_by(is_active=True).order_by(Organization.id).all()


@click.group('loyalty')
def loyalty_cli():
    """Loyalty program commands."""
    pass


@loyalty_cli.command('recompute-points')
@click.option('--organization-id', type=int, help='Specific organization ID (or all if not specified)')
@click.option('--dry-run', is_flag=True, help='Preview without writing')
@with_appcontext
def recompute_points(organization_id, dry_run):
    """Recompute loyalty points from qualifying orders."""
    prefix = '[DRY RUN] ' if dry_run else ''

    for organization in _organizations(organization_id):
        click.echo(f"\n{prefix}Organization: {organization.name} ({organization.id})")
        result = PointsService(organization.id).recompute_for_organization(dry_run=dry_run)

        click.echo(f"  Processed: {result['processed']}")
        click.echo(f"  Updated: {result['updated']} (+{result['total_points_awarded']} points)")
        click.echo(f"  Promoted: {result['promoted']}")
        for detail in result['details']:
            if detail['new_tier'] != detail['previous_tier']:
                click.echo(f"    - Customer {detail['customer_id']}: {detail['previous_tier']} -> {detail['new_tier']}")
        click.echo(f"  Skipped: {result['skipped']}")
        click.echo(f"  Failed: {result['failed']}")

        for error in result['errors'][:5]:
            click.echo(f"    - Customer {error['customer_id']}: {error['error']}")


@loyalty_cli.command('retroactive-promote')
@click.option('--organization-id', type=int, help='Specific organization ID (or all if not specified)')
@click.option('--dry-run', is_flag=True, help='Preview without writing')
@with_appcontext
def retroactive_promote(organization_id, dry_run):
    """Promote members whose points qualify for a higher tier."""
    prefix = '[DRY RUN] ' if dry_run else ''

    for organization in _organizations(organization_id):
        click.echo(f"\n{prefix}Organization: {organization.name} ({organization.id})")
        result = TierPromotionService(organization.id).retroactive_promote(dry_run=dry_run)

        click.echo(f"  Scanned: {result['total_scanned']}")
        click.echo(f"  Promoted: {result['promoted']}")
        click.echo(f"  Unchanged: {result['unchanged']}")
        click.echo(f"  Failed: {result['failed']}")

        for promotion in result['promotions'][:20]:
            code = promotion['code'] or '-'
            click.echo(
                f"    {promotion['name'] or promotion['customer_id']}: {promotion['points']} pts, "
                f"{promotion['previous_tier']} -> {promotion['new_tier']} ({code})"
            )


@loyalty_cli.command('repair-tier-codes')
@with_appcontext
def repair_tier_codes():
    """Clear the expiry date on every TIER- promotion code."""
    updated = TierPromotionService.repair_tier_code_expiry()
    click.echo(f'Updated {updated} tier promotion codes to never expire')


@loyalty_cli.command('init-tiers')
@click.option('--organization-id', type=int, required=True, help='Organization ID')
@with_appcontext
def init_tiers(organization_id):
    """Write the default tier table for an organization."""
    organization = _organizations(organization_id)[0]
    result = TierService(organization.id).initialize_tiers()

    if result['created']:
        click.echo(f"Created {result['created']} default tiers for {organization.name}")
    else:
        click.echo(f"{organization.name} already has {result['existing']} tiers, nothing created")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(loyalty_cli)
