"""
Chatbot Core Module
==================

The conversation pipeline: one user message in, one reply (or an echo
notice) out. All per-user state changes happen under that user's lock.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import logging

from kaiwa.knowledge import KnowledgeBackends, build_backends
from kaiwa.nlp import KeywordExtractor, TokenizerService

from .coreference import CoreferenceResolver
from .echo_guard import EchoGuard
from .intent_recognizer import IntentRecognizer, IntentResult, IntentTag
from .knowledge_router import KnowledgeRouter
from .memory import Context, ContextStore, Role, DEFAULT_PERSONA
from .response_composer import PhrasePools, ResponseComposer

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    """A reply to send back to the user."""
    text: str
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EchoIgnored:
    """The inbound message was the bot's own last reply."""
    reason: str = "echo"


class ChatbotCore:
    """
    Core chatbot engine.

    Wires the tokenizer, keyword extractor, intent recognizer, coreference
    resolver, context store, knowledge router and response composer into the
    per-turn pipeline.
    """

    def __init__(self,
                 store: Optional[ContextStore] = None,
                 tokenizer: Optional[TokenizerService] = None,
                 extractor: Optional[KeywordExtractor] = None,
                 recognizer: Optional[IntentRecognizer] = None,
                 resolver: Optional[CoreferenceResolver] = None,
                 backends: Optional[KnowledgeBackends] = None,
                 composer: Optional[ResponseComposer] = None):
        self.store = store or ContextStore()
        self.tokenizer = tokenizer or TokenizerService()
        self.extractor = extractor or KeywordExtractor()
        self.recognizer = recognizer or IntentRecognizer()
        self.resolver = resolver or CoreferenceResolver()
        self.backends = backends if backends is not None else build_backends()
        self.composer = composer or ResponseComposer()
        self.echo_guard = EchoGuard(self.store)
        self.router = KnowledgeRouter(self.backends, self.store)
        self.is_initialized = False

    @classmethod
    def from_settings(cls, settings: Any) -> "ChatbotCore":
        """
        Build a core from a ``Settings`` object.

        Args:
            settings: Loaded application settings

        Returns:
            ChatbotCore wired from the context, nlp, knowledge, intents and
            phrases sections
        """
        ctx_cfg = settings.context
        nlp_cfg = settings.nlp
        return cls(
            store=ContextStore(
                ttl_seconds=ctx_cfg.ttl_seconds,
                max_history=ctx_cfg.max_history,
                max_entities=ctx_cfg.max_entities,
            ),
            extractor=KeywordExtractor(
                enriched=nlp_cfg.enriched_keywords,
                connecting_particles=tuple(nlp_cfg.connecting_particles),
                min_length=nlp_cfg.min_keyword_length,
            ),
            recognizer=IntentRecognizer.from_config(settings.intents),
            resolver=CoreferenceResolver(nlp_cfg.pronouns),
            backends=build_backends(settings.knowledge),
            composer=ResponseComposer(PhrasePools(settings.phrases)),
        )

    async def initialize(self) -> bool:
        """
        Initialize the chatbot core.

        A tokenizer that fails to build leaves the core running in degraded
        mode (no keywords), so this only reports the tokenizer's state.

        Returns:
            bool: True if the tokenizer is ready
        """
        logger.info("Initializing Chatbot Core...")
        ready = await self.tokenizer.initialize()
        self.is_initialized = True
        if ready:
            logger.info("Chatbot Core initialized successfully")
        else:
            logger.warning("Chatbot Core running without a tokenizer, keyword extraction disabled")
        return ready

    async def shutdown(self) -> None:
        logger.info("Stopping Chatbot Core...")
        self.is_initialized = False

    def _persona(self, persona: Optional[str]) -> Optional[str]:
        if persona is None:
            return None
        if self.composer.pools.has_persona(persona):
            return persona
        logger.info(f"Unknown persona {persona!r}, using {DEFAULT_PERSONA}")
        return DEFAULT_PERSONA

    async def welcome(self, user_id: str, persona: Optional[str] = None,
                      message: Optional[str] = None) -> Union[ChatReply, EchoIgnored]:
        """
        Greet a user opening the chat; the line is remembered as a bot turn.

        A ``message`` sent along with the request that repeats the last bot
        line is treated as an echo and nothing is greeted.
        """
        async with self.store.lock_for(user_id):
            if self.echo_guard.is_echo(user_id, message):
                return EchoIgnored()
            ctx = self.store.get_or_create(user_id, self._persona(persona))
            text = self.composer.welcome(ctx.persona)
            self.store.push_history(ctx, Role.BOT, text)
            self.store.save(ctx)
        return ChatReply(text, {'mode': 'welcome', 'welcome': True, 'persona': ctx.persona})

    @staticmethod
    def build_candidates(coref: Optional[str], intent: IntentResult,
                         keywords: List[str], context: Context) -> List[str]:
        """Search terms, most specific first, without duplicates."""
        ordered = [coref, intent.place_entity, intent.main_keyword, *keywords]
        ordered.extend(entity.title for entity in context.last_entities)
        return list(dict.fromkeys(c for c in ordered if c and c.strip()))

    async def process_message(self, user_id: str, message: str,
                              persona: Optional[str] = None) -> Union[ChatReply, EchoIgnored]:
        """
        Process an incoming message and generate a response.

        Args:
            user_id: Stable user key
            message: Raw user text
            persona: Optional persona name for the reply phrasing

        Returns:
            ChatReply, or EchoIgnored when the message repeats the last bot line
        """
        async with self.store.lock_for(user_id):
            if self.echo_guard.is_echo(user_id, message):
                return EchoIgnored()

            ctx = self.store.get_or_create(user_id, self._persona(persona))
            intent = self.recognizer.classify(message)
            keywords = self.extractor.extract(await self.tokenizer.tokenize(message))
            ctx = self.store.maybe_reset_for_new_topic(
                ctx, keywords, intent.tag, self.resolver.has_reference(message)
            )
            coref = self.resolver.resolve(message, ctx)
            self.store.push_history(ctx, Role.USER, message)

            meta: Dict[str, Any] = {'intent': intent.intent, 'persona': ctx.persona}
            if intent.tag in (IntentTag.GREETING, IntentTag.THANKS):
                mode = intent.intent
                text = self.composer.pick(mode, ctx.persona)
                meta['mode'] = mode
            else:
                candidates = self.build_candidates(coref, intent, keywords, ctx)
                route = await self.router.route(intent, candidates, ctx, message)
                meta.update(mode=route.mode, candidates=candidates, tried=route.tried)
                if route.answered:
                    text = self.composer.compose(route.answer, ctx.persona)
                    meta.update(
                        source=route.answer.source_tag,
                        title=route.answer.title,
                        usedKeyword=route.used_keyword,
                    )
                else:
                    # clarify, weather-failed and smalltalk each have a pool of the same name
                    text = self.composer.pick(route.mode, ctx.persona)

            self.store.push_history(ctx, Role.BOT, text)
            self.store.save(ctx)

        logger.debug(f"Reply for {user_id}: mode={meta['mode']} intent={meta['intent']}")
        return ChatReply(text, meta)

    def get_status(self) -> Dict[str, Any]:
        """
        Get chatbot core status.

        Returns:
            Dict containing status information
        """
        return {
            'initialized': self.is_initialized,
            'tokenizer': self.tokenizer.status(),
            'contexts': len(self.store),
            'backends': self.backends.get_stats(),
        }
