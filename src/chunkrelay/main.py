"""Main application entrypoint for Chunk Relay."""

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chunkrelay.api.middleware import RequestLoggingMiddleware
from chunkrelay.api.v1 import routes_health
from chunkrelay.api.v1.routes_upload import router as upload_router
from chunkrelay.core.config import settings
from chunkrelay.core.logging import setup_logging


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )

    app.add_middleware(RequestLoggingMiddleware)
    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(upload_router)

    return app


# Export app instance for ASGI servers
app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "3000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
