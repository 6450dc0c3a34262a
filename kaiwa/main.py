"""
Server entry point: settings -> logging -> app -> uvicorn.
"""

import logging

import uvicorn

from kaiwa.channels import create_app
from kaiwa.chatbot import ChatbotCore
from kaiwa.config import configure_logging, get_settings, validate_config
from kaiwa.error_handling import ConfigurationError

logger = logging.getLogger(__name__)


def build_app(settings=None):
    settings = settings or get_settings()
    result = validate_config(settings)
    for warning in result.warnings:
        logger.warning(f"{warning.field_path}: {warning.message}")
    if not result.is_valid:
        messages = "; ".join(f"{e.field_path}: {e.message}" for e in result.errors)
        raise ConfigurationError(f"Invalid configuration: {messages}")
    return create_app(ChatbotCore.from_settings(settings), settings)


def main():
    settings = get_settings()
    configure_logging(settings.observability)
    app = build_app(settings)
    logger.info(f"Starting {settings.app_name} {settings.version} on {settings.server.host}:{settings.server.port}")
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == '__main__':
    main()
