"""
Chatbot Core Module
==================

Conversation pipeline: context management, intent recognition, coreference,
knowledge routing and response generation.
"""

from .base_core import ChatbotCore, ChatReply, EchoIgnored
from .memory import Context, ContextStore, EntityRef, HistoryEntry, InMemoryStore, KeyValueStore, Role
from .intent_recognizer import IntentRecognizer, IntentResult, IntentRule, IntentTag, MatchMode
from .coreference import CoreferenceResolver
from .echo_guard import EchoGuard
from .knowledge_router import KnowledgeRouter, RouteMode, RouteResult
from .response_composer import PhrasePools, ResponseComposer

__version__ = "1.0.0"

__all__ = [
    'ChatbotCore',
    'ChatReply',
    'EchoIgnored',
    'Context',
    'ContextStore',
    'EntityRef',
    'HistoryEntry',
    'InMemoryStore',
    'KeyValueStore',
    'Role',
    'IntentRecognizer',
    'IntentResult',
    'IntentRule',
    'IntentTag',
    'MatchMode',
    'CoreferenceResolver',
    'EchoGuard',
    'KnowledgeRouter',
    'RouteMode',
    'RouteResult',
    'PhrasePools',
    'ResponseComposer'
]
