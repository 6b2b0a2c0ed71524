# services/contact_service.py
"""
Contact relay service object

Built once by the application factory and shared by every request handler.
It owns the configuration and wires the vault, token provider, dispatcher,
rate limiter, validator and fallback transport into a SubmissionPipeline.
"""

import logging
from typing import Any, Callable, Dict, Mapping, Optional

import httpx
import redis

from core.credential_vault import (
    CredentialVault, Credentials, InstallationKeyMaterial, KeyMaterial
)
from core.email_dispatcher import EmailDispatcher
from core.exceptions import CredentialsError, ValidationError
from core.rate_limiter import (
    CounterStore, InMemoryCounterStore, RateLimiter, RedisCounterStore
)
from core.submission_validator import (
    Submission, SubmissionValidator, flask_csrf_verifier, normalize_email, sanitize_text,
    sanitize_textarea
)
from core.template_engine import ContactEmailRenderer
from core.token_provider import TokenProvider
from services.fallback_transport import (
    FallbackTransport, SMTPFallbackTransport, UnconfiguredFallbackTransport
)
from services.settings_store import ContactSettings, SettingsStore
from services.submission_pipeline import PipelineOutcome, SubmissionPipeline

logger = logging.getLogger(__name__)

MASK = "••••••••"
CREDENTIAL_INPUTS = ("tenant_id", "client_id", "client_secret")


class ContactService:
    """
    Explicit service holding configuration and collaborators
    """

    def __init__(self,
                 vault: CredentialVault,
                 settings_store: SettingsStore,
                 rate_limiter: RateLimiter,
                 http_client: httpx.Client,
                 fallback: FallbackTransport,
                 site_name: str,
                 admin_email: str,
                 timeout: float = 30,
                 token_verifier: Callable[[str], bool] = flask_csrf_verifier):
        self.vault = vault
        self.settings_store = settings_store
        self.rate_limiter = rate_limiter
        self.http_client = http_client
        self.fallback = fallback
        self.site_name = site_name
        self.admin_email = admin_email

        self.token_provider = TokenProvider(http_client, timeout=timeout)
        self.dispatcher = EmailDispatcher(
            vault, self.token_provider, http_client,
            site_name=site_name, admin_email=admin_email, timeout=timeout,
        )
        self.validator = SubmissionValidator(token_verifier)
        self.renderer = ContactEmailRenderer(site_name)
        self.pipeline = SubmissionPipeline(
            validator=self.validator,
            rate_limiter=rate_limiter,
            renderer=self.renderer,
            dispatcher=self.dispatcher,
            fallback=fallback,
            recipient=admin_email,
            success_message=lambda: self.get_settings().success_message,
        )

    @classmethod
    def from_config(cls, config: Mapping[str, Any],
                    http_client: Optional[httpx.Client] = None,
                    fallback: Optional[FallbackTransport] = None,
                    counter_store: Optional[CounterStore] = None,
                    key_material: Optional[KeyMaterial] = None,
                    token_verifier: Callable[[str], bool] = flask_csrf_verifier) -> "ContactService":
        """
        Build the service from a Flask config mapping

        Args:
            config: Application configuration
            http_client: Outbound HTTP client shared by token and send calls
            fallback: Fallback transport; built from SMTP_* settings if omitted
            counter_store: Rate limit store; Redis when REDIS_URL is set
            key_material: Vault key source; installation secrets if omitted
            token_verifier: Anti-forgery check
        """
        timeout = float(config.get('HTTP_TIMEOUT', 30))

        if key_material is None:
            key_material = InstallationKeyMaterial(config.get('AUTH_KEY', ''),
                                                   config.get('SECURE_AUTH_KEY', ''))

        if counter_store is None:
            if config.get('REDIS_URL'):
                counter_store = RedisCounterStore(redis.Redis.from_url(
                    config['REDIS_URL'], socket_connect_timeout=5, socket_timeout=5))
                logger.info("Rate limit counters stored in Redis")
            else:
                counter_store = InMemoryCounterStore()

        admin_email = config.get('ADMIN_EMAIL', '')
        site_name = config.get('SITE_NAME', '')

        if fallback is None:
            if config.get('SMTP_HOST'):
                fallback = SMTPFallbackTransport(
                    host=config['SMTP_HOST'],
                    port=int(config.get('SMTP_PORT', 587)),
                    username=config.get('SMTP_USERNAME') or None,
                    password=config.get('SMTP_PASSWORD') or None,
                    from_address=admin_email,
                    from_name=site_name,
                    timeout=float(config.get('SMTP_TIMEOUT', 30)),
                )
            else:
                logger.warning("SMTP_HOST not set; failed Graph sends will not be retried")
                fallback = UnconfiguredFallbackTransport()

        return cls(
            vault=CredentialVault(config['CREDENTIALS_DIR'], key_material),
            settings_store=SettingsStore(config['SETTINGS_FILE']),
            rate_limiter=RateLimiter(counter_store,
                                     limit=int(config.get('RATE_LIMIT_MAX', 5)),
                                     window_seconds=int(config.get('RATE_LIMIT_WINDOW', 300))),
            http_client=http_client or httpx.Client(timeout=timeout),
            fallback=fallback,
            site_name=site_name,
            admin_email=admin_email,
            timeout=timeout,
            token_verifier=token_verifier,
        )

    # Submissions

    def handle_submission(self, form: Mapping[str, Any], identifier: str) -> PipelineOutcome:
        return self.pipeline.run(Submission.from_form(form), identifier)

    # Administration

    def get_settings(self) -> ContactSettings:
        return self.settings_store.load()

    def credentials_configured(self) -> bool:
        try:
            return self.vault.load() is not None
        except CredentialsError:
            return False

    def admin_view(self) -> Dict[str, Any]:
        """Settings as shown to administrators; secrets only ever masked"""
        settings = self.get_settings()
        try:
            credentials = self.vault.load()
            status = 'configured' if credentials else 'not_configured'
        except CredentialsError:
            credentials = None
            status = 'unreadable'

        return {
            'form_title': settings.form_title,
            'success_message': settings.success_message,
            'credentials_status': status,
            'credentials': {
                'tenant_id': MASK if credentials else '',
                'client_id': MASK if credentials else '',
                'client_secret': MASK if credentials else '',
                'sender_email': credentials.sender_email if credentials else '',
            },
            'recipient': self.admin_email,
        }

    def save_settings(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Apply an administrative settings update

        Blank credential fields keep their stored value. Credentials are only
        written when tenant, client id and secret are all known afterwards.

        Raises:
            ValidationError: If a sender email is given but malformed, or a
                credential update leaves required fields empty
        """
        def text(name: str) -> str:
            value = data.get(name)
            return value if isinstance(value, str) else ''

        updates = {
            'tenant_id': sanitize_text(text('tenant_id')),
            'client_id': sanitize_text(text('client_id')),
            'client_secret': text('client_secret').strip(),
        }
        sender_input = text('sender_email').strip()
        sender_email = ''
        if sender_input:
            sender_email = normalize_email(sender_input)
            if sender_email is None:
                raise ValidationError("Sender email is invalid",
                                      public_message="Please enter a valid sender email address.")

        if any(updates.values()) or sender_email:
            try:
                existing = self.vault.load()
            except CredentialsError:
                logger.warning("Existing credentials unreadable; they will be replaced")
                existing = None
            merged = existing.to_dict() if existing else dict.fromkeys(Credentials.FIELDS, '')
            merged.update({k: v for k, v in updates.items() if v})
            if sender_email:
                merged['sender_email'] = sender_email
            if not all(merged[k] for k in CREDENTIAL_INPUTS):
                raise ValidationError("Incomplete credentials",
                                      public_message="Tenant ID, client ID and client secret are all required.")
            self.vault.save(Credentials(**merged))
            logger.info("Graph credentials updated by administrator")

        current = self.get_settings()
        settings = ContactSettings(
            form_title=sanitize_text(text('form_title')) or current.form_title,
            success_message=sanitize_textarea(text('success_message')) or current.success_message,
            credentials_saved=self.vault.exists(),
        )
        self.settings_store.save(settings)
        return self.admin_view()

    # Lifecycle

    def uninstall(self) -> Dict[str, Any]:
        """Securely erase credentials and drop every trace of the relay's state"""
        self.vault.secure_erase()
        self.settings_store.delete()
        purged = self.rate_limiter.purge()
        logger.info("Contact relay data removed")
        return {'credentials_erased': True, 'settings_removed': True, 'rate_limits_purged': purged}

    def close(self) -> None:
        self.http_client.close()
