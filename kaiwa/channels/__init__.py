"""
Channels module

HTTP surface of the chat engine and its request-level security helpers.
"""

from .security import CorrelationContext, InputSanitizer, SecureLogger
from .web import ChatRequest, WebChannel, create_app

__all__ = [
    "ChatRequest",
    "WebChannel",
    "create_app",
    "CorrelationContext",
    "InputSanitizer",
    "SecureLogger"
]
