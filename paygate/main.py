# paygate/main.py
import logging
import sys
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
import uvicorn

from paygate.core.config import ConfigurationError, Settings, get_settings
from paygate.core.logging_utils import configure_logging
from paygate.api.endpoints import client_config, weather
from paygate.payment import __version__
from paygate.payment.audit import AuditLog
from paygate.payment.descriptor import descriptor_from_settings
from paygate.payment.facilitator import Facilitator, build_facilitator
from paygate.payment.gate import PaymentGate
from paygate.payment.middleware import (
    PaymentGateMiddleware,
    PreflightCORSMiddleware,
    cors_options,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    facilitator: Optional[Facilitator] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration (loaded from the environment when omitted)
        facilitator: Facilitator backend (built from settings when omitted)

    Raises:
        ConfigurationError: If configuration is missing or inconsistent
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    resource_path = f"{settings.API_PREFIX}{weather.RESOURCE_ROUTE}"
    descriptor = descriptor_from_settings(settings, resource_path=resource_path)
    if facilitator is None:
        facilitator = build_facilitator(settings, descriptor)

    audit_log = AuditLog(settings.AUDIT_LOG_PATH) if settings.AUDIT_LOG_ENABLED else None
    gate = PaymentGate(
        descriptor=descriptor,
        facilitator=facilitator,
        payment_ui_url=settings.PAYMENT_UI_URL,
        verify_before_settle=settings.FACILITATOR_VERIFY_BEFORE_SETTLE,
        timeout_seconds=settings.FACILITATOR_TIMEOUT_SECONDS,
        audit_log=audit_log,
    )

    app = FastAPI(title=settings.PROJECT_NAME, version=__version__)
    app.state.gate = gate
    app.dependency_overrides[get_settings] = lambda: settings

    # Include the API router(s)
    app.include_router(weather.router, prefix=settings.API_PREFIX, tags=["weather"])
    app.include_router(client_config.router, prefix=settings.API_PREFIX, tags=["config"])

    @app.get("/health", summary="Health Check", tags=["default"])
    def read_health():
        """ Basic health check endpoint. """
        logger.info("Health endpoint '/health' accessed.")
        return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}

    # Payment UI (wallet.html etc.), mounted last so API routes take precedence
    if settings.STATIC_DIR:
        static_dir = Path(settings.STATIC_DIR)
        if not static_dir.is_dir():
            raise ConfigurationError(f"STATIC_DIR does not exist: {static_dir}")
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    # Order matters: CORS is added last so it wraps 402/302 responses too
    app.add_middleware(PaymentGateMiddleware, gate=gate, protected_paths=[resource_path])
    app.add_middleware(PreflightCORSMiddleware, **cors_options(settings.cors_origins))

    logger.info(f"Protected endpoint: GET|POST {resource_path}")
    return app


def run() -> None:
    """Console entry point: validate configuration, then serve with uvicorn."""
    try:
        settings = get_settings()
        app = create_app(settings)
    except ConfigurationError as e:
        configure_logging()
        logger.critical(f"FATAL: {e}")
        sys.exit(1)

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
