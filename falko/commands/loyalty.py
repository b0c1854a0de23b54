"""
CLI Commands for the loyalty ledger.

# Nightly drift check
0 3 * * * cd /app && flask loyalty reconcile --all
"""
import click
from flask.cli import with_appcontext

from ..models.loyalty import seed_rewards
from ..services.ledger_store import LedgerStore


@click.group('loyalty')
def loyalty_cli():
    """Loyalty ledger commands."""
    pass


@loyalty_cli.command('seed-rewards')
@with_appcontext
def seed_rewards_command():
    """Insert the default rewards catalog (existing titles are left alone)."""
    created = seed_rewards()
    click.echo(f"Created {created} rewards")


@loyalty_cli.command('reconcile')
@click.option('--customer-id', help='Customer to reconcile')
@click.option('--all', 'all_customers', is_flag=True, help='Reconcile every account')
@click.option('--fix', is_flag=True, help='Rewrite cached balances that drifted from the ledger')
@with_appcontext
def reconcile(customer_id, all_customers, fix):
    """
    Recompute balances from the transaction log and report drift.
    """
    if not customer_id and not all_customers:
        raise click.UsageError('Pass --customer-id or --all')

    ledger = LedgerStore()
    customer_ids = ledger.customers_with_accounts() if all_customers else [customer_id]

    drifted = 0
    for cid in customer_ids:
        result = ledger.reconcile(cid, fix=fix)
        if result['in_sync']:
            click.echo(f"{cid}: OK ({result['cached_balance']} pts, {result['transaction_count']} transactions)")
            continue

        drifted += 1
        status = 'FIXED' if result['fixed'] else 'DRIFT'
        click.echo(
            f"{cid}: {status} cached={result['cached_balance']} "
            f"expected={result['expected_balance']} drift={result['drift']}"
        )

    click.echo(f"\nChecked {len(customer_ids)} accounts, {drifted} out of sync")


def init_app(app):
    """Register loyalty commands with Flask app."""
    app.cli.add_command(loyalty_cli)
