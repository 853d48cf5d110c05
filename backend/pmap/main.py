"""
pmap mapping server
FastAPI application receiving resource mapping notifications over Pub/Sub push.

Run locally with:

    uvicorn pmap.main:create_app --factory --port 8080

or through the CLI (``pmap server``), which reads the same environment.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from pmap.config import HandlerConfig, load_config
from pmap.routers import push
from pmap.services.event_handler import EventHandler
from pmap.services.messenger import PubSubMessenger
from pmap.services.processors import LoggingProcessor

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging to the console once per process."""
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL") or "INFO").upper(),
        format=LOG_FORMAT,
    )


def build_event_handler(config: HandlerConfig) -> EventHandler:
    """
    Wire messengers and the processor chain from configuration.

    Raises:
        ValueError: a required setting is missing.
    """
    config.validate_required()

    success_messenger = PubSubMessenger(
        config.project_id,
        config.success_topic_id,
        timeout=config.publish_timeout_seconds,
    )
    failure_messenger = None
    if config.failure_topic_id:
        failure_messenger = PubSubMessenger(
            config.project_id,
            config.failure_topic_id,
            timeout=config.publish_timeout_seconds,
        )
    else:
        logger.warning(
            "FAILURE_TOPIC_ID is not set; terminal failures will only be logged"
        )

    return EventHandler(
        [LoggingProcessor()],
        success_messenger,
        failure_messenger=failure_messenger,
    )


def create_app(
    handler: Optional[EventHandler] = None,
    config: Optional[HandlerConfig] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    When handler is given it is used as-is (and left open on shutdown).
    Otherwise one is built from config (or from the environment) at
    startup and closed on shutdown.
    """
    owns_handler = handler is None
    if owns_handler and config is None:
        config = load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.event_handler is None:
            app.state.event_handler = build_event_handler(config)
            logger.info(
                f"Mapping server ready: project={config.project_id!r} "
                f"success_topic={config.success_topic_id!r} "
                f"failure_topic={config.failure_topic_id or None!r}"
            )
        try:
            yield
        finally:
            if owns_handler and app.state.event_handler is not None:
                app.state.event_handler.close()

    app = FastAPI(
        title="pmap mapping server",
        description="Resource mapping ingestion from Pub/Sub push notifications",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.event_handler = handler
    app.state.request_timeout_seconds = (
        config.request_timeout_seconds if config is not None else None
    )

    app.include_router(push.router, tags=["push"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
