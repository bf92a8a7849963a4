"""Admin API for reconciliation, finalization and healing."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .auth import limiter
from .database import DatabaseManager
from .errors import DomainEffectFailure, NotFound, ValidationFailure
from .healing.api import router as healing_router
from .reconciliation.api import router as reconciliation_router
from .services import PaymentServices

logger = logging.getLogger(__name__)


def create_app(services: Optional[PaymentServices] = None, database_url: Optional[str] = None) -> FastAPI:
    """Create the admin application.

    Args:
        services: Prebuilt services. When None, the lifespan initializes the
            database and builds them.
        database_url: Database URL used when building services.

    Returns:
        FastAPI application.
    """
    database = DatabaseManager(database_url) if services is None else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if database is not None:
            session_factory = await database.initialize()
            app.state.services = PaymentServices.build(session_factory)
        app.state.services.scheduler.start()
        try:
            yield
        finally:
            await app.state.services.scheduler.stop()
            if database is not None:
                await database.shutdown()

    app = FastAPI(title="Payments Reconciler - Admin API", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.exception_handler(ValidationFailure)
    async def validation_failure_handler(request: Request, exc: ValidationFailure):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(DomainEffectFailure)
    async def domain_effect_failure_handler(request: Request, exc: DomainEffectFailure):
        logger.error(f"Finalization failed: {exc}")
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "payments-reconciler"}

    app.include_router(reconciliation_router)
    app.include_router(healing_router)
    return app


app = create_app()
