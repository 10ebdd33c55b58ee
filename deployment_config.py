"""
Deployment Configuration for the quote composition service
Environment-driven settings for rendering defaults, persistence and logging
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from dotenv import load_dotenv

# Values in .env never override variables already set in the environment
load_dotenv()


def _env_float(name, default):
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return float(default)


def _env_bool(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


class DeploymentConfig:
    """Production deployment configuration"""

    # Server Configuration
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', 5000))
    DEBUG = _env_bool('DEBUG', False)

    # Security Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-this-secret-key')

    # Persistence
    DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///quote_composer.db')

    # Rendering defaults (used when business settings are silent)
    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'USD')
    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'UTC')
    DEFAULT_DATE_FORMAT = os.environ.get('DEFAULT_DATE_FORMAT', 'dd/MM/yyyy')
    DEFAULT_THEME = os.environ.get('DEFAULT_THEME', 'default')

    # Overlay persistence
    OVERLAY_DEBOUNCE_SECONDS = _env_float('OVERLAY_DEBOUNCE_SECONDS', 1.0)

    # Reference data fetches
    FETCH_WORKERS = int(os.environ.get('FETCH_WORKERS', 2))
    FETCH_TIMEOUT_SECONDS = _env_float('FETCH_TIMEOUT_SECONDS', 10.0)

    # PDF export launches a browser per request
    MAX_CONCURRENT_EXPORTS = int(os.environ.get('MAX_CONCURRENT_EXPORTS', 4))

    # Print geometry
    PAGE_SIZE = os.environ.get('PAGE_SIZE', 'A4')
    PAGE_ORIENTATION = os.environ.get('PAGE_ORIENTATION', 'portrait')
    PAGE_MARGINS_MM = {
        'top': _env_float('PAGE_MARGIN_TOP_MM', 18),
        'right': _env_float('PAGE_MARGIN_RIGHT_MM', 16),
        'bottom': _env_float('PAGE_MARGIN_BOTTOM_MM', 20),
        'left': _env_float('PAGE_MARGIN_LEFT_MM', 16),
    }

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE', 'app.log')
    LOG_MAX_SIZE = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    @classmethod
    def configure_logging(cls):
        """Install file and stdout handlers on the root logger"""
        root = logging.getLogger()
        if getattr(root, '_quote_composer_configured', False):
            return root
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        handlers = [logging.StreamHandler(sys.stdout)]
        if cls.LOG_FILE:
            log_path = Path(cls.LOG_FILE)
            if log_path.parent != Path('.'):
                log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(RotatingFileHandler(
                log_path, maxBytes=cls.LOG_MAX_SIZE, backupCount=cls.LOG_BACKUP_COUNT
            ))
        for handler in handlers:
            handler.setFormatter(formatter)
            root.addHandler(handler)
        root.setLevel(getattr(logging, str(cls.LOG_LEVEL).upper(), logging.INFO))
        root._quote_composer_configured = True
        return root

    @classmethod
    def render_defaults(cls):
        """Defaults handed to the document assembler"""
        return {
            'default_currency': cls.DEFAULT_CURRENCY,
            'default_timezone': cls.DEFAULT_TIMEZONE,
            'default_date_format': cls.DEFAULT_DATE_FORMAT,
            'theme': cls.DEFAULT_THEME,
        }

    @classmethod
    def page_defaults(cls):
        return {
            'size': cls.PAGE_SIZE,
            'orientation': cls.PAGE_ORIENTATION,
            'margins_mm': dict(cls.PAGE_MARGINS_MM),
        }

    @classmethod
    def validate_config(cls):
        """Validate configuration settings"""
        errors = []

        if cls.SECRET_KEY == 'change-this-secret-key' and not cls.DEBUG:
            errors.append("SECRET_KEY is still the default value")

        if len(cls.DEFAULT_CURRENCY) != 3:
            errors.append(f"DEFAULT_CURRENCY must be an ISO 4217 code, got {cls.DEFAULT_CURRENCY!r}")

        if cls.OVERLAY_DEBOUNCE_SECONDS < 0:
            errors.append("OVERLAY_DEBOUNCE_SECONDS must not be negative")

        if cls.MAX_CONCURRENT_EXPORTS < 1:
            errors.append("MAX_CONCURRENT_EXPORTS must be at least 1")

        if cls.PAGE_ORIENTATION not in ('portrait', 'landscape'):
            errors.append(f"PAGE_ORIENTATION must be portrait or landscape, got {cls.PAGE_ORIENTATION!r}")

        try:
            from zoneinfo import ZoneInfo
            ZoneInfo(cls.DEFAULT_TIMEZONE)
        except Exception as e:
            errors.append(f"DEFAULT_TIMEZONE is not a known timezone: {e}")

        return errors


# Environment variables template
PRODUCTION_ENV_TEMPLATE = """
# Quote composer environment variables
# Copy these to your environment or .env file

SECRET_KEY=your_very_secure_secret_key_here
DATABASE_URL=sqlite:///quote_composer.db

DEFAULT_CURRENCY=USD
DEFAULT_TIMEZONE=UTC
DEFAULT_DATE_FORMAT=dd/MM/yyyy
OVERLAY_DEBOUNCE_SECONDS=1.0
MAX_CONCURRENT_EXPORTS=4

PAGE_SIZE=A4
PAGE_ORIENTATION=portrait

LOG_LEVEL=INFO
LOG_FILE=app.log
"""
