"""
Falko Loyalty & Returns Service
Flask application factory
"""
import os
import logging
from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .extensions import db, migrate, configure_sqlite_transactions
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None, collaborators=None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)
        collaborators: Optional Collaborators bundle (order client, label
            client, notifications); built from config when omitted

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    # Setup logging before anything else logs
    setup_logging(app.config.get('LOG_LEVEL'))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        with app.app_context():
            configure_sqlite_transactions(db.engine)

    # Register models with SQLAlchemy metadata
    from . import models  # noqa: F401

    # Configure CORS - storefront and admin origins
    cors_origins = [
        origin.strip()
        for origin in os.getenv('CORS_ORIGINS', 'http://localhost:8000,http://localhost:3000').split(',')
        if origin.strip()
    ]
    CORS(app, origins=cors_origins, supports_credentials=True, allow_headers=['Content-Type', 'Authorization'])

    # External collaborators, one set per app
    if collaborators is None:
        from .services import Collaborators
        collaborators = Collaborators.from_config(app.config)
    app.extensions['falko'] = collaborators

    # Register blueprints
    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        try:
            db.session.execute(text('SELECT 1'))
            database = 'ok'
        except SQLAlchemyError as e:
            logger.error(f'Health check database error: {e}')
            database = 'error'
        status_code = 200 if database == 'ok' else 503
        return {'status': 'healthy' if database == 'ok' else 'degraded', 'service': 'falko', 'database': database}, status_code

    logger.info(f'Falko app created ({config_name})')
    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    # Store (customer-facing)
    from .api.loyalty import loyalty_bp
    from .api.returns import returns_bp
    app.register_blueprint(loyalty_bp, url_prefix='/store/loyalty')
    app.register_blueprint(returns_bp, url_prefix='/store')

    # Admin
    from .api.admin_returns import admin_returns_bp
    app.register_blueprint(admin_returns_bp, url_prefix='/admin/returns')

    # Webhook routes
    from .webhooks import order_lifecycle_bp
    app.register_blueprint(order_lifecycle_bp, url_prefix='/webhooks')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils.exceptions import FalkoError
    from .utils.errors import error_response, internal_error

    @app.errorhandler(FalkoError)
    def handle_falko_error(error):
        if error.status_code >= 500:
            db.session.rollback()
        return error_response(error.message, error.code, error.status_code, details=error.details)

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        code = 'NOT_FOUND' if error.code == 404 else 'INVALID_REQUEST' if error.code < 500 else 'INTERNAL_ERROR'
        return jsonify({'error': {'message': error.description, 'code': code}}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        logger.exception(f'Unhandled error: {error}')
        return internal_error()
