"""
CLI Commands for Falko.

Provides Flask CLI commands for maintenance and administration.

Usage:
    flask loyalty seed-rewards                       # Insert the default rewards catalog
    flask loyalty reconcile --customer-id cus_123    # Compare cached balance with the ledger
    flask loyalty reconcile --all --fix              # Reconcile and repair every account

    flask returns retry-labels                       # Retry labels for returns missing one
"""
from .loyalty import init_app as init_loyalty_commands
from .returns import init_app as init_returns_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_loyalty_commands(app)
    init_returns_commands(app)
