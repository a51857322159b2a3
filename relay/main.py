from contextlib import asynccontextmanager
from typing import Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from relay.checkout import CheckoutOrchestrator
from relay.config import Settings, load_settings
from relay.database import Base, build_engine, build_session_factory
from relay.logging_config import setup_logging
from relay.providers import ProviderAdapter, build_providers
from relay.reconciliation import ReconciliationEngine
from relay.routes import router

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    providers: Optional[Dict[str, ProviderAdapter]] = None,
) -> FastAPI:
    """Build the relay app. Collaborators are wired up in the lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or load_settings()
        setup_logging(app_settings)

        engine = build_engine(app_settings.database_url)
        Base.metadata.create_all(bind=engine)
        adapters = providers if providers is not None else build_providers(app_settings)

        app.state.settings = app_settings
        app.state.engine = engine
        app.state.session_factory = build_session_factory(engine)
        app.state.providers = adapters
        app.state.reconciler = ReconciliationEngine(adapters)
        app.state.checkout = CheckoutOrchestrator(adapters, app_settings)
        logger.info("relay_started", providers=sorted(adapters))

        try:
            yield
        finally:
            engine.dispose()
            logger.info("relay_stopped")

    app = FastAPI(title="Payment Orchestration Relay", lifespan=lifespan)
    app.include_router(router)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    return app


app = create_app()
