"""
Echo Guard
==========

Detects a client feeding the bot's own last reply back in as user input.
"""

import logging
from typing import Optional

from .memory import ContextStore

logger = logging.getLogger(__name__)


class EchoGuard:
    """Compares inbound text with the most recent bot utterance."""

    def __init__(self, store: ContextStore):
        self.store = store

    def is_echo(self, user_id: str, text: Optional[str]) -> bool:
        if not text or not text.strip():
            return False
        ctx = self.store.peek(user_id)
        if ctx is None:
            return False
        last = ctx.last_bot_text()
        if last is None:
            return False
        echoed = last.strip() == text.strip()
        if echoed:
            logger.info(f"Echo detected for user {user_id}")
        return echoed
