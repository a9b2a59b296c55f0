# SkyView - FastAPI Backend
#
# Local REST + WebSocket server in front of the vault and weather stores.
# Binds to localhost only; every call needs the per-run session token.

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core import EventSeverity, EventType, VaultConfig, get_audit_logger, load_config
from ..services import SkyViewServices
from ..vault import VaultError
from .security import initialize_session_token
from .vault_routes import router as vault_router, vault_error_handler
from .weather_routes import router as weather_router

logger = logging.getLogger(__name__)

_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:8000", "http://127.0.0.1:8000",
]


def create_app(
    config: Optional[VaultConfig] = None,
    services: Optional[SkyViewServices] = None,
    background: bool = True,
) -> FastAPI:
    """
    Build the API application.

    Args:
        config: Configuration; load_config() when omitted.
        services: Pre-built services (tests); built from config when omitted.
        background: Run the trash sweeper while the app is up.
    """
    services = services or SkyViewServices(config or load_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_START,
            severity=EventSeverity.INFO,
            message="SkyView API started",
        )
        if background:
            services.start_background()
        try:
            yield
        finally:
            services.shutdown()
            get_audit_logger().log_event(
                event_type=EventType.SYSTEM_STOP,
                severity=EventSeverity.INFO,
                message="SkyView API stopped",
            )

    app = FastAPI(
        title="SkyView Vault API",
        description="Encrypted local vault and weather cache",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(VaultError, vault_error_handler)
    app.include_router(vault_router)
    app.include_router(weather_router)
    return app


def start_api_server(config: Optional[VaultConfig] = None):
    """
    Start the FastAPI server.

    The session token is printed once so the local client can pick it up.
    """
    config = config or load_config()
    app = create_app(config)
    token = initialize_session_token()
    print(f"Session token: {token}")
    uvicorn.run(app, host=config.api_host, port=config.api_port, log_level="info")
