# api/admin.py
"""
Administrative settings API

Credentials go into the encrypted vault; only the form title and success
message are stored as plain settings. Stored secrets are never echoed back.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from core.exceptions import ValidationError
from middleware.security import require_admin

admin_bp = Blueprint('admin', __name__)
logger = logging.getLogger(__name__)

# Rate limiter for administrative endpoints
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[]
)


def _admin_rate_limit() -> str:
    return current_app.config.get('ADMIN_RATE_LIMIT', '10 per minute')


@admin_bp.route('/settings', methods=['GET'])
@limiter.limit(_admin_rate_limit)
@require_admin
def get_settings():
    """Current settings with credentials masked"""
    return jsonify(current_app.extensions['contact_relay'].admin_view())


@admin_bp.route('/settings', methods=['POST'])
@limiter.limit(_admin_rate_limit)
@require_admin
def save_settings():
    """
    Save credentials and form options

    Accepts tenant_id, client_id, client_secret, sender_email, form_title and
    success_message as JSON or form data. Blank credential fields keep their
    stored values.
    """
    data = request.get_json(silent=True) if request.is_json else request.form
    if data is None or not hasattr(data, 'get'):
        return jsonify({'error': 'Invalid request body'}), 400

    try:
        view = current_app.extensions['contact_relay'].save_settings(data)
    except ValidationError as e:
        logger.info(f"Settings update rejected: {e}")
        return jsonify({'error': e.public_message}), 400

    return jsonify({'success': True, 'settings': view})
