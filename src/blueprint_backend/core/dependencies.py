"""
FastAPI dependencies for the Blueprint backend.
"""

import logging
from functools import lru_cache
from typing import Generator, Optional

from sqlalchemy.orm import Session
from square.client import Client
from square.http.auth.o_auth_2 import BearerAuthCredentials

from blueprint_backend.core.database import SessionLocal
from blueprint_backend.core.errors import ConfigError
from blueprint_backend.core.identity import SupabaseIdentity
from blueprint_backend.core.settings import SQUARE_VERSION, SquareSettings, SupabaseSettings

# Setup logger
logger = logging.getLogger("dependencies")


@lru_cache()
def get_square_settings() -> SquareSettings:
    """
    Get the Square settings, read from the environment and .env.
    """
    settings = SquareSettings()
    logger.info("get_square_settings returning environment: %s", settings.environment)
    return settings


@lru_cache()
def get_supabase_settings() -> SupabaseSettings:
    """
    Get the Supabase settings, read from the environment and .env.
    """
    return SupabaseSettings()


@lru_cache()
def get_identity() -> SupabaseIdentity:
    """
    Injection method to get the Supabase identity gateway.
    """
    try:
        return SupabaseIdentity.from_settings(get_supabase_settings())
    except ConfigError as e:
        raise e.to_http_exception() from e


def make_square_client(settings: SquareSettings, access_token: Optional[str] = None) -> Client:
    """
    Create a Square client, authenticated as a merchant when ``access_token`` is given.
    """
    environment = "sandbox" if settings.environment.lower() == "sandbox" else "production"
    if access_token is None:
        return Client(environment=environment, square_version=SQUARE_VERSION)
    return Client(
        bearer_auth_credentials=BearerAuthCredentials(access_token=access_token),
        environment=environment,
        square_version=SQUARE_VERSION,
    )


def get_db() -> Generator[Session, None, None]:
    """Dependency to get a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
