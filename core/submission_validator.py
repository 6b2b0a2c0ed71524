# core/submission_validator.py
"""
Gatekeeping for untrusted contact form submissions

Checks run in a fixed order (anti-forgery, honeypot, fields) and stop at the
first failure. None of them touch the network.
"""

import html
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import bleach
from email_validator import validate_email, EmailNotValidError
from flask_wtf.csrf import validate_csrf
from wtforms import ValidationError as CSRFValidationError

from core.exceptions import BlockedError, SecurityError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Contact Form Message"
HONEYPOT_FIELD = "website"
TOKEN_FIELD = "contact_token"

_INLINE_WHITESPACE = re.compile(r"[ \t\r\f\v]+")
_ANY_WHITESPACE = re.compile(r"\s+")


@dataclass
class Submission:
    """Raw submission as received; never persisted"""
    name: str = ""
    email: str = ""
    subject: str = ""
    message: str = ""
    honeypot: str = ""
    anti_forgery_token: str = ""

    @classmethod
    def from_form(cls, data: Mapping[str, Any], honeypot_field: str = HONEYPOT_FIELD,
                  token_field: str = TOKEN_FIELD) -> "Submission":
        def field(name: str) -> str:
            value = data.get(name)
            return value if isinstance(value, str) else ""

        return cls(
            name=field("name"),
            email=field("email"),
            subject=field("subject"),
            message=field("message"),
            honeypot=field(honeypot_field),
            anti_forgery_token=field(token_field),
        )


@dataclass(frozen=True)
class ValidatedSubmission:
    """Sanitized fields ready for rendering"""
    name: str
    email: str
    subject: str
    message: str


def sanitize_text(value: str) -> str:
    """Strip markup and fold all whitespace to single spaces"""
    cleaned = html.unescape(bleach.clean(value or "", tags=set(), strip=True))
    return _ANY_WHITESPACE.sub(" ", cleaned).strip()


def sanitize_textarea(value: str) -> str:
    """Strip markup but keep line breaks"""
    cleaned = html.unescape(bleach.clean(value or "", tags=set(), strip=True))
    lines = [_INLINE_WHITESPACE.sub(" ", line).strip() for line in cleaned.replace("\r\n", "\n").split("\n")]
    return "\n".join(lines).strip()


def flask_csrf_verifier(token: str) -> bool:
    """Check a token against the one minted into the current Flask session"""
    try:
        validate_csrf(token)
    except CSRFValidationError as e:
        logger.info(f"Anti-forgery token rejected: {e}")
        return False
    return True


class SubmissionValidator:
    """
    Verifies the anti-forgery token, honeypot and required fields
    """

    def __init__(self, token_verifier: Callable[[str], bool] = flask_csrf_verifier,
                 default_subject: str = DEFAULT_SUBJECT):
        self.token_verifier = token_verifier
        self.default_subject = default_subject

    def check_token(self, submission: Submission) -> None:
        if not submission.anti_forgery_token or not self.token_verifier(submission.anti_forgery_token):
            raise SecurityError("Anti-forgery token missing or invalid")

    def check_honeypot(self, submission: Submission) -> None:
        if submission.honeypot.strip():
            raise BlockedError("Honeypot field populated")

    def check_fields(self, submission: Submission) -> ValidatedSubmission:
        name = sanitize_text(submission.name)
        message = sanitize_textarea(submission.message)
        subject = sanitize_text(submission.subject) or self.default_subject
        email = normalize_email(submission.email)

        if not name:
            raise ValidationError("Name is required")
        if not message:
            raise ValidationError("Message is required")
        if email is None:
            raise ValidationError("Email address is invalid")

        return ValidatedSubmission(name=name, email=email, subject=subject, message=message)

    def validate(self, submission: Submission) -> ValidatedSubmission:
        """
        Run every check in order

        Raises:
            SecurityError: Anti-forgery token missing or mismatched
            BlockedError: Honeypot populated
            ValidationError: Required field empty or email malformed
        """
        self.check_token(submission)
        self.check_honeypot(submission)
        return self.check_fields(submission)


def normalize_email(value: str) -> Optional[str]:
    """Return the normalized address, or None if it is not valid syntax"""
    candidate = (value or "").strip()
    if not candidate:
        return None
    try:
        result = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        return None
    return result.normalized
