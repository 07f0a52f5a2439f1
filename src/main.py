"""School settlement FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Models no router imports directly; registered with Base.metadata here
from src.core.auth import models as _auth_models  # noqa: F401
from src.core.audit import models as _audit_models  # noqa: F401
from src.core.documents import models as _document_models  # noqa: F401
from src.modules.students import models as _student_models  # noqa: F401
from src.modules.tenants import models as _tenant_models  # noqa: F401
from src.modules.fees.router import router as fees_router
from src.modules.payments.router import router as payments_router
from src.modules.balances.router import router as balances_router
from src.modules.subscriptions.router import router as subscriptions_router
from src.integrations.gateway.router import router as gateway_webhook_router
from src.core.config import settings
from src.core.exceptions import AppException, GatewayConfigurationError
from src.core.exceptions.handlers import (
    app_exception_handler,
    http_exception_handler,
    sqlalchemy_db_error_handler,
    validation_exception_handler,
)
from src.core.logging import configure_logging
from src.core.notifications import notification_queue

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    configure_logging(settings.log_level)
    try:
        settings.require_gateway()
    except GatewayConfigurationError as exc:
        if settings.is_production:
            raise
        logger.error("Mobile money disabled: %s", exc.message)
    yield
    await notification_queue.stop()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="School Settlement",
        description="Fees, payments and subscription billing for multi-tenant schools",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_db_error_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    # Routers
    app.include_router(fees_router, prefix="/api/v1")
    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(balances_router, prefix="/api/v1")
    app.include_router(subscriptions_router, prefix="/api/v1")
    app.include_router(gateway_webhook_router, prefix="/api/v1")

    return app


app = create_app()
