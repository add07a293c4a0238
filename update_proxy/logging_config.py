"""
Logging configuration with secret redaction
"""

import logging
import logging.config
import threading
from typing import Any, Dict, Set

_MINIMUM_SECRET_LENGTH = 4
_REDACTED = "***"


class SecretMaskingFilter(logging.Filter):
    """Filter that replaces registered secret values in every formatted record."""

    def __init__(self) -> None:
        super().__init__()
        self._secrets: Set[str] = set()
        self._lock = threading.Lock()

    def register_secret(self, value: str | None) -> None:
        """Register one secret value; short or empty values are ignored."""
        if not value or len(value) < _MINIMUM_SECRET_LENGTH:
            return
        with self._lock:
            self._secrets.add(value)

    def filter(self, record: logging.LogRecord) -> bool:
        """Render the record message and strip any registered secret from it."""
        with self._lock:
            secrets = sorted(self._secrets, key=len, reverse=True)
        if not secrets:
            return True

        message = record.getMessage()
        masked_message = message
        for secret in secrets:
            masked_message = masked_message.replace(secret, _REDACTED)
        if masked_message != message:
            record.msg = masked_message
            record.args = None
        return True


SECRET_MASKING_FILTER = SecretMaskingFilter()


def _secret_masking_filter_factory() -> SecretMaskingFilter:
    return SECRET_MASKING_FILTER


def logging_register_secret(value: str | None) -> None:
    """Register a secret with the process-wide masking filter."""
    SECRET_MASKING_FILTER.register_secret(value)


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get logging configuration with secret masking on every handler."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "secret_masking_filter": {
                "()": _secret_masking_filter_factory
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
                "filters": ["secret_masking_filter"]
            }
        },
        "loggers": {
            "update_proxy": {
                "handlers": ["default"],
                "level": level,
                "propagate": False
            },
            "docker": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False
            },
            "httpx": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": ["default"]
        }
    }


def setup_logging(level: str = "INFO") -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(get_logging_config(level))
