"""FastAPI application setup and route registration."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from trustgate import __version__
from trustgate.config import load_config
from trustgate.runtime import TrustgateRuntime, build_runtime
from trustgate.server.auth import configure_auth
from trustgate.server.methods import RpcDispatcher
from trustgate.server.routes import configure_routes, router

_log = logging.getLogger(__name__)


def create_app(runtime: TrustgateRuntime, *, gateway_token: str | None = None) -> FastAPI:
    """Build the gateway app around *runtime*.

    With *gateway_token* unset every request is accepted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        _log.info("Trustgate server starting (mode=%s)", runtime.config.mode)
        if runtime.auth_profiles.migrate():
            _log.info("Migrated plaintext provider credentials into the vault")
        yield
        _log.info("Trustgate server shutting down")
        await runtime.aclose()

    configure_auth(gateway_token)
    configure_routes(RpcDispatcher(runtime), runtime.broadcaster)

    app = FastAPI(title="Trustgate", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(router)
    return app


def create_app_from_env() -> FastAPI:
    """uvicorn factory: load config from the environment and require the gateway token."""
    runtime = build_runtime(load_config())
    return create_app(runtime, gateway_token=runtime.gateway_token())
