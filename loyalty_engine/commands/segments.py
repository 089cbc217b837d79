"""
CLI Commands for segmentation.

# Full daily pass (what the scheduler runs)
0 2 * * * cd /app && flask segments recalculate
"""
import click
from flask.cli import with_appcontext

from ..extensions import db
from ..models.organization import Organization
from ..services.recalculation_service import RecalculationService
from ..services.smart_segmentation_service import SmartSegmentationService
from ..utils.exceptions import LoyaltyError


@click.group('segments')
def segments_cli():
    """Segmentation commands."""
    pass


@segments_cli.command('recalculate')
@click.option('--organization-id', type=int, help='Specific organization ID (or all if not specified)')
@with_appcontext
def recalculate(organization_id):
    """Run the full recalculation pass."""
    service = RecalculationService()

    try:
        if organization_id:
            results = [service.run_for_organization(organization_id)]
        else:
            results = service.run_for_all_organizations()['results']
    except LoyaltyError as e:
        raise click.ClickException(e.message)

    for result in results:
        name = result.get('organization_name') or result['organization_id']
        if result.get('success') is False:
            click.echo(f"\n{name}: FAILED - {result['error']}")
            continue

        click.echo(f"\n{name}:")
        click.echo(f"  Stages: {' -> '.join(result['stages'])}")
        click.echo(f"  Customers: {result['processed']} processed, {result['failed']} failed")
        click.echo(f"  Points updated: {result['points_updated']}")
        click.echo(f"  Promotions: {result['promotions']}")
        click.echo(f"  Segments evaluated: {result['segments_evaluated']}")
        click.echo(f"  Plans: {result['plans_generated']} generated, {result['plans_updated']} updated")


@segments_cli.command('init-templates')
@click.option('--organization-id', type=int, required=True, help='Organization ID')
@with_appcontext
def init_templates(organization_id):
    """Create the smart segment catalog for an organization."""
    if not db.session.get(Organization, organization_id):
        raise click.ClickException(f'Organization {organization_id} not found')

    result = SmartSegmentationService(organization_id).initialize_templates()
    click.echo(f"Created {result['created']} smart segments ({result['existing']} already existed)")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(segments_cli)
