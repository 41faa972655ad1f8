from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from inboxvault.apps.api.errors import register_exception_handlers
from inboxvault.apps.api.routes.health import router as health_router
from inboxvault.core.config import AppConfig, load_config
from inboxvault.core.logging import configure_logging
from inboxvault.services.crypto.cipher import CredentialCipher


logger = logging.getLogger(__name__)


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build the HTTP shell; configuration and key material are validated before any route exists."""
    config = config or load_config()
    configure_logging(config.app.log_level)
    cipher = CredentialCipher.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("api_started env=%s port=%s key_id=%s", config.env, config.app.port, cipher.active_key_id)
        yield
        logger.info("api_stopped env=%s", config.env)

    app = FastAPI(title="InboxVault API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.app.cors_origins),
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_credentials=False,
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    register_exception_handlers(app)
    app.include_router(health_router)
    return app
