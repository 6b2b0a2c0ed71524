# api/contact.py
"""
Public contact form API
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_wtf.csrf import generate_csrf

from services.submission_pipeline import PipelineState

contact_bp = Blueprint('contact', __name__)
logger = logging.getLogger(__name__)

STATUS_CODES = {
    PipelineState.SENT_PRIMARY: 200,
    PipelineState.SENT_FALLBACK: 200,
    PipelineState.REJECTED_SECURITY: 400,
    PipelineState.REJECTED_SPAM: 400,
    PipelineState.REJECTED_VALIDATION: 400,
    PipelineState.REJECTED_THROTTLE: 429,
    PipelineState.FAILED: 502,
}


def get_contact_service():
    return current_app.extensions['contact_relay']


@contact_bp.route('/token', methods=['GET'])
def token():
    """Mint the anti-forgery token the form must echo back"""
    settings = get_contact_service().get_settings()
    return jsonify({
        'token': generate_csrf(),
        'form_title': settings.form_title,
    })


@contact_bp.route('/submit', methods=['POST'])
def submit():
    """
    Accept one contact form submission

    Responds with {success, message}; the message never says which check failed.
    """
    if request.is_json:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
    else:
        data = request.form

    outcome = get_contact_service().handle_submission(data, request.remote_addr or 'unknown')
    return jsonify(outcome.to_response()), STATUS_CODES.get(outcome.state, 500)
