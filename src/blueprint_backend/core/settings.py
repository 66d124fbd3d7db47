"""
Settings for the Blueprint backend.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

SQUARE_VERSION = "2025-03-19"
SQUARE_BASE_URL_SANDBOX = "https://connect.squareupsandbox.com"
SQUARE_BASE_URL_PRODUCTION = "https://connect.squareup.com"
SQUARE_CALLBACK_PATH = "/square/oauth/callback"

DEFAULT_OAUTH_SCOPES = (
    "MERCHANT_PROFILE_READ EMPLOYEES_READ ITEMS_READ CUSTOMERS_READ CUSTOMERS_WRITE "
    "APPOINTMENTS_READ APPOINTMENTS_ALL_READ APPOINTMENTS_WRITE "
    "SUBSCRIPTIONS_READ SUBSCRIPTIONS_WRITE"
)


class SquareSettings(BaseSettings):
    """
    Settings for the Square API.
    """

    square_app_id: str = ""
    square_app_secret: str = ""
    environment: str = "production"
    square_redirect_uri: str = ""
    square_oauth_scopes: str = DEFAULT_OAUTH_SCOPES

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def base_url(self) -> str:
        """Square base URL for the configured environment."""
        if self.environment.lower() == "sandbox":
            return SQUARE_BASE_URL_SANDBOX
        return SQUARE_BASE_URL_PRODUCTION

    @property
    def is_configured(self) -> bool:
        """Whether client credentials are present."""
        return bool(self.square_app_id and self.square_app_secret)


class SupabaseSettings(BaseSettings):
    """
    Settings for the Supabase identity provider.
    """

    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"
    stylist_app_url: str = ""
    list_users_page_size: int = 1000
    list_users_max_pages: int = 50

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
