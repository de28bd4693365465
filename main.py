"""
Main FastAPI application entry point
"""
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from core.error_handlers import register_exception_handlers
from core.logging import get_logger
from core.middleware import PaymentSecurityMiddleware
from d0_gateway.factory import ProcessorFactory
from d4_storefront.api import router as checkout_router

logger = get_logger(__name__)


def create_app(settings=None) -> FastAPI:
    """Build the checkout application"""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )

    register_exception_handlers(app)

    app.add_middleware(PaymentSecurityMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    def health():
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
        }

    @app.on_event("startup")
    async def startup_event():
        """Initialize application on startup"""
        logger.info(
            "Starting checkout service",
            extra={
                "version": settings.app_version,
                "environment": settings.environment,
                "processor": settings.payment_processor,
            },
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        ProcessorFactory().invalidate_cache()
        logger.info("Shutting down checkout service")

    app.include_router(checkout_router)
    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
