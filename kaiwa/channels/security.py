"""
Security utilities for the chat channels

Correlation ids, PII-masking logger and input sanitization shared by the
HTTP surface.
"""

import logging
import re
import uuid
from contextvars import ContextVar
from typing import Any, Optional

logger = logging.getLogger(__name__)

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


class CorrelationContext:
    """Correlation id of the request being handled (one per asyncio task)."""

    @classmethod
    def get_id(cls) -> str:
        return _correlation_id.get() or "-"

    @classmethod
    def set_id(cls, correlation_id: str):
        _correlation_id.set(correlation_id)

    @classmethod
    def generate_new(cls) -> str:
        """Generate and set new correlation ID."""
        new_id = str(uuid.uuid4())
        cls.set_id(new_id)
        return new_id


class SecureLogger:
    """Secure logger with PII masking and correlation IDs."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.pii_patterns = [
            (re.compile(r'\b0\d{1,4}-?\d{1,4}-?\d{4}\b'), '***PHONE***'),
            (re.compile(r'\b\d{10,15}\b'), '***PHONE***'),
            (re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), '***EMAIL***'),
            (re.compile(r'\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b'), '***CARD***'),
        ]

    def _mask_pii(self, message: str) -> str:
        for pattern, replacement in self.pii_patterns:
            message = pattern.sub(replacement, message)
        return message

    def _format(self, message: str) -> str:
        return self._mask_pii(f"[{CorrelationContext.get_id()}] {message}")

    def info(self, message: str, **kwargs):
        self.logger.info(self._format(message), **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(self._format(message), **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(self._format(message), **kwargs)

    def debug(self, message: str, **kwargs):
        self.logger.debug(self._format(message), **kwargs)


class InputSanitizer:
    """Input sanitization utilities."""

    @staticmethod
    def sanitize_text(text: Any, max_length: int = 2000) -> str:
        """
        Clean a user message.

        Drops control characters, trims surrounding whitespace and truncates to
        ``max_length``. ``None`` becomes the empty string.
        """
        if text is None:
            return ""
        if not isinstance(text, str):
            text = str(text)
        text = _CONTROL_CHARS.sub('', text).strip()
        if len(text) > max_length:
            logger.debug(f"Truncating message from {len(text)} to {max_length} characters")
            text = text[:max_length]
        return text

    @staticmethod
    def sanitize_user_id(user_id: Any, max_length: int = 128) -> str:
        """Non-empty user key; blank or missing ids fall back to ``anon``."""
        cleaned = InputSanitizer.sanitize_text(user_id, max_length)
        return cleaned or "anon"
