# middleware/security.py
"""
Security Middleware for Request Processing
"""

import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)


def security_headers(response):
    """Add security headers to all responses"""
    for header, value in current_app.config.get('SECURITY_HEADERS', {}).items():
        response.headers.setdefault(header, value)
    return response


def require_admin(f):
    """Decorator to require the administrator token"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('ADMIN_TOKEN', '')
        provided = request.headers.get('X-Admin-Token', '')

        if not expected:
            logger.error("ADMIN_TOKEN is not configured; administrative endpoints are disabled")
            return jsonify({'error': 'Administration disabled'}), 403

        if not provided or not hmac.compare_digest(provided.encode('utf-8'), expected.encode('utf-8')):
            logger.warning(f"Unauthorized admin access attempt from {request.remote_addr} to {request.endpoint}")
            return jsonify({'error': 'Authentication required'}), 401

        return f(*args, **kwargs)
    return decorated_function
