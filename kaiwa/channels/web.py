"""
Web Channel
===========

HTTP surface of the chat engine: ``GET|POST /api/chat`` (also ``/chat``),
CORS preflight and a health endpoint.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Mapping, Optional, Union

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kaiwa.chatbot import ChatbotCore, ChatReply, EchoIgnored
from kaiwa.error_handling import RequestValidationError

from .security import CorrelationContext, InputSanitizer, SecureLogger

secure_logger = SecureLogger(__name__)

CHAT_PATHS = ("/api/chat", "/chat")
TRUTHY = {"1", "true", "yes", "on"}


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY


class ChatRequest(BaseModel):
    """Chat request fields, accepted from a JSON body or the query string."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    user: Optional[Any] = None
    message: Optional[str] = None
    q: Optional[str] = None
    init: bool = False
    welcome: bool = False
    persona: Optional[str] = None

    @field_validator('init', 'welcome', mode='before')
    @classmethod
    def parse_flag(cls, v):
        return _truthy(v)

    @field_validator('user_id', 'message', 'q', 'persona', mode='before')
    @classmethod
    def stringify(cls, v):
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (int, float)):
            return str(v)
        raise ValueError(f"expected a string, got {type(v).__name__}")

    def resolved_user_id(self) -> str:
        """``userId``, else ``user.id`` (or ``user`` itself when it is a string), else ``anon``."""
        if self.user_id:
            return InputSanitizer.sanitize_user_id(self.user_id)
        if isinstance(self.user, Mapping):
            return InputSanitizer.sanitize_user_id(self.user.get("id"))
        return InputSanitizer.sanitize_user_id(self.user)

    def text(self) -> Optional[str]:
        return self.message if self.message is not None else self.q

    def wants_welcome(self) -> bool:
        return self.init or self.welcome


class WebChannel:
    """
    FastAPI application around a ChatbotCore.

    The core is initialized (tokenizer build) when the app starts; a failed
    build leaves the channel serving in degraded mode.
    """

    def __init__(self, core: ChatbotCore, settings: Any = None):
        self.core = core
        server = getattr(settings, 'server', None)
        observability = getattr(settings, 'observability', None)
        self.cors_origins = list(getattr(server, 'cors_origins', None) or ["*"])
        self.max_message_length = getattr(server, 'max_message_length', 2000)
        self.health_endpoint = getattr(observability, 'health_endpoint', "/health")
        self.version = getattr(settings, 'version', "1.0.0")

        self.app = FastAPI(
            title="kaiwa",
            description="Japanese conversational dispatch engine",
            version=self.version,
            lifespan=self._lifespan,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.cors_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        )
        self._setup_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.core.initialize()
        secure_logger.info("Web channel ready")
        try:
            yield
        finally:
            await self.core.shutdown()

    def _setup_routes(self):
        """Setup FastAPI routes."""

        @self.app.middleware("http")
        async def add_correlation_id(request: Request, call_next):
            correlation_id = request.headers.get("X-Correlation-ID")
            if correlation_id:
                CorrelationContext.set_id(correlation_id)
            else:
                correlation_id = CorrelationContext.generate_new()
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        for path in CHAT_PATHS:
            self.app.add_api_route(path, self.chat_get, methods=["GET"])
            self.app.add_api_route(path, self.chat_post, methods=["POST"])
            self.app.add_api_route(path, self.chat_options, methods=["OPTIONS"])

        self.app.add_api_route(self.health_endpoint, self.health_check, methods=["GET"])

    async def chat_get(self, request: Request) -> JSONResponse:
        return await self._respond(dict(request.query_params))

    async def chat_post(self, request: Request) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError:
            return self._error(RequestValidationError("invalid JSON"))
        return await self._respond(payload)

    async def chat_options(self) -> Response:
        return Response(status_code=200)

    async def health_check(self) -> Dict[str, Any]:
        """Health check endpoint."""
        status = self.core.get_status()
        tokenizer_state = status['tokenizer'].get('state')
        status['status'] = "ok" if tokenizer_state == "ready" else "degraded"
        status['version'] = self.version
        return status

    async def _respond(self, payload: Any) -> JSONResponse:
        started = time.perf_counter()
        try:
            request = self._parse(payload)
            result = await self._dispatch(request)
        except RequestValidationError as e:
            return self._error(e)
        except Exception as e:
            secure_logger.error(f"Unhandled error in chat endpoint: {e}", exc_info=True)
            return JSONResponse({"error": "internal error"}, status_code=500)

        if isinstance(result, EchoIgnored):
            return JSONResponse({"ignored": True, "reason": result.reason})

        took_ms = int((time.perf_counter() - started) * 1000)
        return JSONResponse({
            "reply": result.text,
            "text": result.text,
            "meta": result.meta,
            "took_ms": took_ms,
        })

    def _parse(self, payload: Any) -> ChatRequest:
        if not isinstance(payload, dict):
            raise RequestValidationError("request body must be a JSON object")
        try:
            return ChatRequest.model_validate(payload)
        except ValidationError as e:
            raise RequestValidationError("invalid request", detail=str(e)) from e

    async def _dispatch(self, request: ChatRequest) -> Union[ChatReply, EchoIgnored]:
        user_id = request.resolved_user_id()
        if request.wants_welcome():
            secure_logger.info(f"Welcome for user {user_id}")
            return await self.core.welcome(user_id, request.persona, request.text())

        text = InputSanitizer.sanitize_text(request.text(), self.max_message_length)
        if not text:
            raise RequestValidationError("message is required")

        secure_logger.info(f"Chat request from user {user_id}")
        return await self.core.process_message(user_id, text, request.persona)

    @staticmethod
    def _error(error: RequestValidationError) -> JSONResponse:
        body = {"error": error.message}
        if error.detail:
            body["detail"] = error.detail
        return JSONResponse(body, status_code=400)


def create_app(core: Optional[ChatbotCore] = None, settings: Any = None) -> FastAPI:
    """Build the FastAPI app, creating the core from settings when none is given."""
    if core is None:
        if settings is None:
            from kaiwa.config import get_settings
            settings = get_settings()
        core = ChatbotCore.from_settings(settings)
    return WebChannel(core, settings).app
