# app.py
"""
Flask Application Factory for the Contact Relay

Wires the contact service (credential vault, Graph delivery, fallback
transport, throttling) into a small JSON API:
- Anti-forgery token and submission endpoints for the public form
- Administrative settings endpoints
- Health check
- `flask uninstall` removal command
"""

import os
import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Optional

import click
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from api.admin import admin_bp, limiter
from api.contact import contact_bp
from config.security import get_config
from middleware.security import security_headers
from services.contact_service import ContactService


def setup_logging(app: Flask) -> None:
    """
    Configure application logging

    A stream handler always; a rotating file handler when LOG_FILE is set.
    Records from the core/services/api loggers propagate to the root logger.
    """
    formatter = logging.Formatter(
        fmt='%(asctime)s %(name)-28s %(levelname)-8s %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)
    if not any(getattr(h, '_contact_relay', False) for h in root.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler._contact_relay = True
        root.addHandler(stream_handler)

        log_file = app.config.get('LOG_FILE')
        if log_file:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5
            )
            file_handler.setFormatter(formatter)
            file_handler._contact_relay = True
            root.addHandler(file_handler)

    # Suppress verbose third-party logs
    if not app.debug:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        logging.getLogger('httpx').setLevel(logging.WARNING)
        logging.getLogger('httpcore').setLevel(logging.WARNING)


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(contact_bp, url_prefix='/api/contact')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.logger.info("Application blueprints registered")


ERROR_RESPONSES = {
    400: ('Bad Request', 'The request could not be understood'),
    401: ('Unauthorized', 'Administrator token required'),
    403: ('Forbidden', 'Administration is not available'),
    404: ('Not Found', 'No such endpoint'),
    405: ('Method Not Allowed', 'Method not supported on this endpoint'),
    413: ('Payload Too Large', 'Request body exceeds the allowed size'),
    429: ('Rate Limit Exceeded', 'Too many requests. Please try again later.'),
    500: ('Internal Server Error', 'An unexpected error occurred'),
}


def error_response(status_code: int):
    title, message = ERROR_RESPONSES.get(status_code, ERROR_RESPONSES[500])
    return jsonify({'error': title, 'message': message, 'status_code': status_code}), status_code


def configure_error_handlers(app: Flask) -> None:
    """
    JSON bodies for every HTTP error the relay can produce
    """
    def handle_http_error(error: HTTPException):
        if error.code == 429:
            app.logger.warning(f"Rate limit hit on {request.path}")
        elif error.code and error.code >= 500:
            app.logger.error(f"HTTP {error.code} on {request.path}: {error.description}")
        return error_response(error.code or 500)

    for status_code in ERROR_RESPONSES:
        app.register_error_handler(status_code, handle_http_error)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        app.logger.error(f"Unhandled {e.__class__.__name__} on {request.path}", exc_info=True)
        return error_response(500)


def configure_health_checks(app: Flask) -> None:
    @app.route('/health')
    def health_check():
        """Basic health check endpoint"""
        service = app.extensions['contact_relay']
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'credentials_configured': service.credentials_configured(),
        })


def register_commands(app: Flask) -> None:
    @app.cli.command('uninstall')
    @click.option('--yes', is_flag=True, help='Skip the confirmation prompt.')
    def uninstall(yes):
        """Securely erase stored credentials and remove all relay data."""
        if not yes:
            click.confirm('This permanently erases the stored Graph credentials. Continue?', abort=True)
        summary = app.extensions['contact_relay'].uninstall()
        click.echo(f"Credentials erased; {summary['rate_limits_purged']} rate limit records purged.")


def create_app(config_name: str = None, service: Optional[ContactService] = None) -> Flask:
    """
    Flask application factory

    Args:
        config_name: Configuration environment ('development', 'testing', 'production')
        service: Prebuilt ContactService; built from configuration if omitted

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__, instance_relative_config=True)

    config_name = config_name or os.environ.get('FLASK_ENV', 'production')
    app.config.from_object(get_config(config_name))

    if config_name == 'production':
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    setup_logging(app)
    app.logger.info(f"Starting contact relay in {config_name} mode")

    if service is None:
        service = ContactService.from_config(app.config)
    app.extensions['contact_relay'] = service

    limiter.init_app(app)
    register_blueprints(app)
    configure_error_handlers(app)
    configure_health_checks(app)
    register_commands(app)
    app.after_request(security_headers)

    return app


if __name__ == '__main__':
    # Development server
    create_app('development').run(host='127.0.0.1', port=5000, debug=True)
