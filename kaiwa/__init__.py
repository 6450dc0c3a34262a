"""
kaiwa
=====

Stateful Japanese conversational dispatch engine: per-user context,
coreference, keyword extraction, rule-based intents and ordered knowledge
backends behind a small HTTP API.
"""

__version__ = "1.0.0"
