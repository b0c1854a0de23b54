"""
CLI Commands for returns.

# Retry failed shipping labels every 15 minutes
*/15 * * * * cd /app && flask returns retry-labels
"""
import click
from flask.cli import with_appcontext

from ..services import get_returns_service


@click.group('returns')
def returns_cli():
    """Returns maintenance commands."""
    pass


@returns_cli.command('retry-labels')
@click.option('--limit', type=int, default=50, help='Max returns to retry')
@with_appcontext
def retry_labels(limit):
    """Request shipping labels for open returns that do not have one."""
    service = get_returns_service()
    pending = service.returns_missing_labels()[:limit]

    if not pending:
        click.echo("No returns waiting for a label")
        return

    generated = 0
    for return_request in pending:
        service.generate_shipping_label(return_request.id)
        if return_request.has_label:
            generated += 1
            click.echo(f"{return_request.id}: {return_request.furgonetka_tracking_number}")
        else:
            click.echo(f"{return_request.id}: failed ({return_request.label_error})")

    click.echo(f"\nGenerated {generated}/{len(pending)} labels")


def init_app(app):
    """Register returns commands with Flask app."""
    app.cli.add_command(returns_cli)
