# core/exceptions.py
"""
Error taxonomy for the contact relay.

Every error carries a ``public_message`` that is safe to hand back to the
submitter. Rejections share one wording so a caller cannot tell which check
tripped; internal detail stays in ``str(exc)`` for operator logs.
"""

from typing import Optional


GENERIC_REJECTION = "Your message could not be sent. Please check the form and try again."
THROTTLED_MESSAGE = "Please wait a moment before sending another message."
DELIVERY_FAILED = "Unable to send message. Please try again later."


class ContactRelayError(Exception):
    """Base exception for contact relay operations"""

    public_message = GENERIC_REJECTION

    def __init__(self, message: str = "", public_message: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        if public_message is not None:
            self.public_message = public_message


class ValidationError(ContactRelayError):
    """A required field is missing or malformed"""
    pass


class SecurityError(ContactRelayError):
    """Anti-forgery token missing or mismatched"""
    pass


class BlockedError(ContactRelayError):
    """Honeypot field was populated"""
    pass


class ThrottledError(ContactRelayError):
    """Caller exceeded the submission window"""

    public_message = THROTTLED_MESSAGE


class CredentialsError(ContactRelayError):
    """Vault is empty or its contents are unusable"""

    public_message = DELIVERY_FAILED


class DecryptionError(CredentialsError):
    """Encrypted blob is malformed, truncated or was sealed with other key material"""
    pass


class NetworkError(ContactRelayError):
    """Transport-level failure talking to a remote endpoint"""

    public_message = DELIVERY_FAILED


class TokenError(ContactRelayError):
    """Identity provider did not return an access token"""

    public_message = DELIVERY_FAILED


class SendFailed(ContactRelayError):
    """Mail API rejected the message"""

    public_message = DELIVERY_FAILED


class FallbackFailed(ContactRelayError):
    """Fallback transport could not deliver the message"""

    public_message = DELIVERY_FAILED
