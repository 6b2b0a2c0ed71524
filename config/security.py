# config/security.py
"""
Security Configuration for the Contact Relay
"""

import os
import secrets
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class SecurityConfig:
    """Security configuration settings"""

    # Session settings (signs the anti-forgery session)
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_urlsafe(32)
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Installation secrets the vault key is derived from (never stored)
    AUTH_KEY = os.environ.get('AUTH_KEY', '')
    SECURE_AUTH_KEY = os.environ.get('SECURE_AUTH_KEY', '')

    # Credential vault and options storage
    CREDENTIALS_DIR = os.environ.get('CREDENTIALS_DIR') or str(BASE_DIR / 'instance' / 'config')
    SETTINGS_FILE = os.environ.get('SETTINGS_FILE') or str(BASE_DIR / 'instance' / 'settings.json')

    # Site identity
    SITE_NAME = os.environ.get('SITE_NAME', 'Contact Relay')
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', '')
    ADMIN_TOKEN = os.environ.get('ADMIN_TOKEN', '')

    # Outbound calls (seconds)
    HTTP_TIMEOUT = float(os.environ.get('HTTP_TIMEOUT', 30))

    # Submission throttling
    RATE_LIMIT_MAX = int(os.environ.get('RATE_LIMIT_MAX', 5))
    RATE_LIMIT_WINDOW = int(os.environ.get('RATE_LIMIT_WINDOW', 300))
    REDIS_URL = os.environ.get('REDIS_URL', '')

    # Admin endpoint throttling (Flask-Limiter)
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')
    RATELIMIT_HEADERS_ENABLED = True
    ADMIN_RATE_LIMIT = '10 per minute'

    # Fallback SMTP relay
    SMTP_HOST = os.environ.get('SMTP_HOST', '')
    SMTP_PORT = int(os.environ.get('SMTP_PORT', 587))
    SMTP_USERNAME = os.environ.get('SMTP_USERNAME', '')
    SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD', '')
    SMTP_TIMEOUT = float(os.environ.get('SMTP_TIMEOUT', 30))

    # CSRF protection
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600  # 1 hour
    WTF_CSRF_CHECK_DEFAULT = False  # checked inside the submission pipeline

    # Security headers
    SECURITY_HEADERS = {
        'X-Content-Type-Options': 'nosniff',
        'X-Frame-Options': 'DENY',
        'Strict-Transport-Security': 'max-age=31536000; includeSubDomains',
        'Referrer-Policy': 'strict-origin-when-cross-origin',
        'Content-Security-Policy': "default-src 'none'; frame-ancestors 'none'",
        'Cache-Control': 'no-store',
    }

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE', '')

    MAX_CONTENT_LENGTH = 64 * 1024  # 64KB


class DevelopmentConfig(SecurityConfig):
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    LOG_LEVEL = 'DEBUG'


class TestingConfig(SecurityConfig):
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    AUTH_KEY = 'testing-auth-key'
    SECURE_AUTH_KEY = 'testing-secure-auth-key'
    ADMIN_TOKEN = 'testing-admin-token'
    ADMIN_EMAIL = 'owner@example.org'
    SITE_NAME = 'Test Site'
    SESSION_COOKIE_SECURE = False
    REDIS_URL = ''
    SMTP_HOST = ''
    RATELIMIT_STORAGE_URI = 'memory://'


class ProductionConfig(SecurityConfig):
    PREFERRED_URL_SCHEME = 'https'


CONFIGS = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(name: str = None):
    """Return the config class for an environment name, defaulting to production"""
    return CONFIGS.get(name or os.environ.get('FLASK_ENV', 'production'), ProductionConfig)
