"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from blueprint_backend.api.v1 import auth, team
from blueprint_backend.core.database import Base, engine
from blueprint_backend.core.dependencies import get_square_settings
from blueprint_backend.plugins.square import create_square_router

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("api")

# Never written to the log in full
REDACTED_HEADERS = {"authorization", "cookie"}


# Request tracing middleware
class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Request tracing middleware."""

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        # Log the incoming request
        logger.info("Request: %s %s", request.method, request.url.path)
        headers = {
            key: "***" if key in REDACTED_HEADERS else value
            for key, value in request.headers.items()
        }
        logger.debug("Headers: %s", headers)

        # Process the request
        response = await call_next(request)

        # Log the response
        logger.info("Response status: %s", response.status_code)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan for the FastAPI application."""
    logger.info("Initializing database...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized successfully!")
    yield


app = FastAPI(
    title="Blueprint API",
    description="Square sign-in, team directory and stylist permissions",
    version="1.0.0",
    lifespan=lifespan,
)

# Add request tracing middleware
app.add_middleware(RequestTracingMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_origin_regex=r"https://.*\.lovableproject\.com",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(create_square_router(get_square_settings()), prefix="/square")

# Include routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(team.router, prefix="/api/v1")


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {"message": "Welcome to the Blueprint API"}
