"""
Schema-Driven Form Engine

Renders forms described entirely by a JSON schema: derives initial state,
tracks values by field key, resolves section visibility from dependency
rules and validates before submission.

Served with:
- CSRF protection
- Rate limiting
- Security headers
- Audit logging
"""

import logging
import os
from datetime import datetime
from flask import Flask, request, g
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFError

# Initialize extensions
db = SQLAlchemy()


def create_app(test_config=None):
    """Application factory pattern."""
    app = Flask(__name__, instance_relative_config=True)

    # Default configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL', 'sqlite:///form_engine.db'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        MAX_CONTENT_LENGTH=int(os.environ.get('MAX_UPLOAD_MB', 100)) * 1024 * 1024,

        # CSRF settings
        WTF_CSRF_ENABLED=True,
        WTF_CSRF_TIME_LIMIT=3600,  # 1 hour
        WTF_CSRF_SSL_STRICT=False,  # Disabled for development

        # Rate limiting settings
        RATELIMIT_STORAGE_URI=os.environ.get('REDIS_URL', 'memory://'),
        RATELIMIT_STRATEGY='fixed-window',
        RATELIMIT_HEADERS_ENABLED=True,

        # Level for the engine modules (schema, resolver, validation)
        FORM_ENGINE_LOG_LEVEL=os.environ.get('FORM_ENGINE_LOG_LEVEL', 'INFO'),
    )

    if test_config is None:
        # Load instance config if it exists
        app.config.from_pyfile('config.py', silent=True)
    else:
        app.config.from_mapping(test_config)

    # Ensure instance folder exists
    try:
        os.makedirs(app.instance_path)
    except OSError:
        pass

    logging.getLogger('formengine').setLevel(app.config['FORM_ENGINE_LOG_LEVEL'])

    db.init_app(app)

    # Import after db init to avoid circular imports
    from formengine.security import add_security_headers, get_client_ip, init_security
    init_security(app)

    from formengine.routes import main_bp, api_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp)

    @app.after_request
    def after_request(response):
        """Add security headers to all responses."""
        return add_security_headers(response)

    # Request logging
    @app.before_request
    def before_request():
        """Log request start."""
        g.request_start_time = datetime.utcnow()

    @app.after_request
    def log_request(response):
        """Log request completion."""
        if hasattr(g, 'request_start_time'):
            duration = (datetime.utcnow() - g.request_start_time).total_seconds()
            app.logger.info(
                f'{request.method} {request.path} - {response.status_code} - {duration:.3f}s'
            )
        return response

    # Create database tables
    with app.app_context():
        from formengine import models  # noqa: F401
        db.create_all()

    # JSON error envelopes, matching the API responses
    def _envelope(message, code, status):
        return {'ok': False, 'errors': [{'field': '', 'message': message, 'code': code}]}, status

    @app.errorhandler(CSRFError)
    def csrf_error(error):
        app.logger.warning(f'CSRF failure on {request.path}: {error.description}')
        return _envelope(error.description, 'csrf_failed', 400)

    @app.errorhandler(404)
    def not_found(error):
        return _envelope('Not found', 'not_found', 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _envelope('Method not allowed', 'method_not_allowed', 405)

    @app.errorhandler(413)
    def payload_too_large(error):
        limit_mb = app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
        return _envelope(f'Request exceeds {limit_mb}MB limit', 'payload_too_large', 413)

    @app.errorhandler(429)
    def rate_limited(error):
        app.logger.warning(f'Rate limit hit: {get_client_ip()} {request.path}')
        return _envelope(f'Too many requests: {error.description}', 'rate_limited', 429)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.error(f'Internal error: {str(error)}')
        return _envelope('Internal server error', 'internal_error', 500)

    return app
