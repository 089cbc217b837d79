"""
Loyalty Engine
Flask application factory
"""
import os
import re
import logging
from flask import Flask, jsonify
from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging
from .utils.errors import ErrorCode, error_response, exception_response
from .utils.exceptions import LoyaltyError

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()
    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Dashboard origins
    cors_origins = [
        'http://localhost:3000',
        'http://127.0.0.1:3000',
    ]
    extra_origin = os.getenv('DASHBOARD_ORIGIN')
    if extra_origin:
        cors_origins.append(extra_origin)
    if config_name != 'production':
        cors_origins.append(re.compile(r'http://localhost:\d+'))
    CORS(
        app,
        origins=cors_origins,
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization', 'X-Organization-ID', 'X-Admin-Key']
    )

    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Daily recalculation pass (production or ENABLE_SCHEDULER=true)
    from .utils.scheduler import init_scheduler
    init_scheduler(app)

    register_error_handlers(app)

    @app.route('/health')
    def health_check():
        return jsonify({'status': 'healthy', 'service': 'loyalty-engine'})

    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    from .api.segments import segments_bp
    from .api.action_plans import action_plans_bp
    from .api.loyalty import loyalty_bp
    from .api.cron import cron_bp

    app.register_blueprint(segments_bp, url_prefix='/api/segments')
    app.register_blueprint(action_plans_bp, url_prefix='/api/action-plans')
    app.register_blueprint(loyalty_bp, url_prefix='/api/loyalty')
    app.register_blueprint(cron_bp, url_prefix='/api/cron')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers. All errors use {"error": {"message", "code"}}."""

    @app.errorhandler(LoyaltyError)
    def loyalty_error(error):
        return exception_response(error)

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('Bad request', ErrorCode.INVALID_REQUEST, 400)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Not found', ErrorCode.NOT_FOUND, 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response('Method not allowed', ErrorCode.INVALID_REQUEST, 405)

    @app.errorhandler(500)
    def internal_error(error):
        return error_response('Internal server error', ErrorCode.INTERNAL_ERROR, 500)
