# services/submission_pipeline.py
"""
Submission pipeline: one inbound form post from receipt to delivery

    RECEIVED -> VALIDATED -> RATE_CHECKED -> TOKEN_ACQUIRED -> SENT_PRIMARY
                                          +-> SENT_FALLBACK | FAILED

Rejections (security, spam, validation, throttle) end the run before any
network call. A failed primary send always gets exactly one fallback attempt
with the same rendered content.
"""

import logging
from dataclasses import dataclass
from email.utils import formataddr
from enum import Enum
from typing import Callable, Dict, Optional, Any

from core.email_dispatcher import EmailDispatcher
from core.exceptions import (
    BlockedError, ContactRelayError, DELIVERY_FAILED, FallbackFailed,
    SecurityError, ThrottledError, ValidationError
)
from core.rate_limiter import RateLimiter
from core.submission_validator import Submission, SubmissionValidator
from core.template_engine import ContactEmailRenderer
from services.fallback_transport import FallbackTransport
from services.settings_store import DEFAULT_SUCCESS_MESSAGE

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Pipeline states"""
    RECEIVED = "received"
    VALIDATED = "validated"
    RATE_CHECKED = "rate_checked"
    TOKEN_ACQUIRED = "token_acquired"
    SENT_PRIMARY = "sent_primary"
    SENT_FALLBACK = "sent_fallback"
    FAILED = "failed"
    REJECTED_SECURITY = "rejected_security"
    REJECTED_SPAM = "rejected_spam"
    REJECTED_VALIDATION = "rejected_validation"
    REJECTED_THROTTLE = "rejected_throttle"


REJECTION_STATES = {
    SecurityError: PipelineState.REJECTED_SECURITY,
    BlockedError: PipelineState.REJECTED_SPAM,
    ValidationError: PipelineState.REJECTED_VALIDATION,
}


@dataclass
class PipelineOutcome:
    """Result reported back to the submitter, plus operator-only detail"""
    success: bool
    message: str
    state: PipelineState
    primary_error: Optional[ContactRelayError] = None

    def to_response(self) -> Dict[str, Any]:
        return {'success': self.success, 'message': self.message}


class SubmissionPipeline:
    """
    Runs validation, throttling and delivery for one submission
    """

    def __init__(self,
                 validator: SubmissionValidator,
                 rate_limiter: RateLimiter,
                 renderer: ContactEmailRenderer,
                 dispatcher: EmailDispatcher,
                 fallback: FallbackTransport,
                 recipient: str,
                 success_message: Callable[[], str] = lambda: DEFAULT_SUCCESS_MESSAGE):
        """
        Args:
            validator: Anti-forgery, honeypot and field checks
            rate_limiter: Per-client submission gate
            renderer: Builds the notification email
            dispatcher: Primary Graph delivery
            fallback: Secondary transport for failed primary sends
            recipient: Mailbox that receives contact messages
            success_message: Returns the currently configured success text
        """
        self.validator = validator
        self.rate_limiter = rate_limiter
        self.renderer = renderer
        self.dispatcher = dispatcher
        self.fallback = fallback
        self.recipient = recipient
        self.success_message = success_message

    def run(self, submission: Submission, identifier: str) -> PipelineOutcome:
        """
        Process one submission

        Args:
            submission: Raw form data
            identifier: Caller's network address, used only for throttling

        Returns:
            PipelineOutcome with the terminal state
        """
        state = PipelineState.RECEIVED

        try:
            clean = self.validator.validate(submission)
        except (SecurityError, BlockedError, ValidationError) as e:
            rejected = REJECTION_STATES[type(e)]
            logger.info(f"Submission rejected at {state.value}: {rejected.value}")
            return PipelineOutcome(False, e.public_message, rejected)
        state = PipelineState.VALIDATED

        try:
            self.rate_limiter.hit(identifier)
        except ThrottledError as e:
            return PipelineOutcome(False, e.public_message, PipelineState.REJECTED_THROTTLE)
        state = PipelineState.RATE_CHECKED

        rendered = self.renderer.render(clean)
        result = self.dispatcher.send(self.recipient, rendered.subject, rendered.html, clean.name)
        if result.token_acquired:
            state = PipelineState.TOKEN_ACQUIRED

        if result.success:
            logger.info(f"Submission delivered via Graph ({state.value} -> sent_primary)")
            return PipelineOutcome(True, self.success_message(), PipelineState.SENT_PRIMARY)

        primary_error = result.error
        logger.warning(
            f"Primary delivery failed at {state.value} "
            f"({result.reason}): {result.error_message}; trying fallback transport"
        )

        reply_to = formataddr((clean.name, clean.email))
        try:
            self.fallback.send(self.recipient, rendered.subject, rendered.html, reply_to)
        except FallbackFailed as e:
            logger.error(f"Fallback delivery failed: {e}")
            return PipelineOutcome(False, DELIVERY_FAILED, PipelineState.FAILED, primary_error)

        return PipelineOutcome(True, self.success_message(), PipelineState.SENT_FALLBACK, primary_error)
