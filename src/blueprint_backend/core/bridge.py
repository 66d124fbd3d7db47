"""Square OAuth to Supabase identity bridge.

Turns a one-time Square authorization code into a Supabase user, a Supabase
session and a persisted merchant link:

    code -> Square access token -> merchant profile -> Supabase user
         -> Supabase session -> merchant_settings row

The code is single-use. When no email can be resolved for the merchant the
bridge stops with ``NeedsEmail`` and hands back the access token it already
obtained, so the caller can resubmit with an email without a second exchange.
Steps are sequential and not transactional; every write is an upsert, so a
rerun with the saved token converges on the same rows.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from sqlalchemy.orm import Session
from square.client import Client

from blueprint_backend.core.auth import ADMIN_ROLE, SQUARE_OAUTH_PROVISIONING
from blueprint_backend.core.dependencies import make_square_client
from blueprint_backend.core.directory import upsert_merchant_link
from blueprint_backend.core.errors import (
    ConfigError,
    IdentityProvisioningError,
    InvalidRequest,
    SessionError,
    UpstreamAuthError,
    UserLookupError,
)
from blueprint_backend.core.identity import (
    IdentityError,
    IdentityUser,
    SessionTokens,
    SupabaseIdentity,
    is_user_already_exists,
)
from blueprint_backend.core.models import BridgeRequest
from blueprint_backend.core.settings import SquareSettings

logger = logging.getLogger("bridge")

DEFAULT_BUSINESS_NAME = "Admin"

# Merchant fields that may carry an email, in order of preference.
MERCHANT_EMAIL_FIELDS = ("email", "contact_email", "business_email")


@dataclass
class MerchantToken:
    access_token: str
    merchant_id: str


@dataclass
class BridgeResult:
    merchant_id: str
    business_name: str
    access_token: str
    session: Optional[SessionTokens]
    user: Optional[IdentityUser] = None

    def to_response(self) -> dict[str, Any]:
        return {
            "merchant_id": self.merchant_id,
            "business_name": self.business_name,
            "access_token": self.access_token,
            "supabase_session": self.session.to_dict() if self.session else None,
        }


@dataclass
class NeedsEmail:
    """The merchant has no email on file; resubmit with one and the token below."""

    merchant_id: str
    business_name: str
    access_token: str

    def to_response(self) -> dict[str, Any]:
        return {
            "message": "Email needed to complete authentication",
            "needsEmail": True,
            "merchant_id": self.merchant_id,
            "business_name": self.business_name,
            "access_token": self.access_token,
        }


def generate_password() -> str:
    return secrets.token_urlsafe(32)


def pick_email(supplied: Optional[str], merchant: dict[str, Any]) -> Optional[str]:
    """Caller-supplied email first, then the merchant's email fields."""
    candidates = [supplied] + [merchant.get(key) for key in MERCHANT_EMAIL_FIELDS]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


class OAuthBridge:
    """Runs one bridge attempt. Holds no state between attempts."""

    def __init__(
        self,
        settings: SquareSettings,
        identity: SupabaseIdentity,
        client_factory: Callable[[SquareSettings, Optional[str]], Client] = make_square_client,
        password_factory: Callable[[], str] = generate_password,
    ) -> None:
        self.settings = settings
        self.identity = identity
        self.client_factory = client_factory
        self.password_factory = password_factory

    def run(
        self, db: Session, request: BridgeRequest, redirect_uri: Optional[str]
    ) -> Union[BridgeResult, NeedsEmail]:
        token = self.start(request, redirect_uri)
        if token is None:
            # start() guarantees a code when no token was provided
            token = self.exchange_code(str(request.code), str(redirect_uri))

        merchant = self.fetch_merchant(token)
        business_name = merchant.get("business_name") or DEFAULT_BUSINESS_NAME

        email = pick_email(request.email, merchant)
        if email is None:
            logger.info("No email for merchant %s, asking the user for one", token.merchant_id)
            return NeedsEmail(
                merchant_id=token.merchant_id,
                business_name=business_name,
                access_token=token.access_token,
            )

        password = self.password_factory()
        user = self.upsert_identity(email, password, token.merchant_id, business_name)
        session = self.mint_session(email, password)

        upsert_merchant_link(
            db,
            supabase_user_id=user.id,
            merchant_id=token.merchant_id,
            access_token=token.access_token,
            environment=self.settings.environment,
        )
        logger.info("OAuth flow completed for merchant %s", token.merchant_id)
        return BridgeResult(
            merchant_id=token.merchant_id,
            business_name=business_name,
            access_token=token.access_token,
            session=session,
            user=user,
        )

    def start(self, request: BridgeRequest, redirect_uri: Optional[str]) -> Optional[MerchantToken]:
        """Validate input and config; return the provided token, if any."""
        if not request.code and not request.access_token:
            raise InvalidRequest("Missing OAuth code or access token.")
        if request.access_token and not request.merchant_id and not request.code:
            raise InvalidRequest("Missing merchant id for the provided access token.")

        if not (self.settings.is_configured and redirect_uri):
            logger.error(
                "Missing Square config: app_id=%s app_secret=%s redirect_uri=%s",
                bool(self.settings.square_app_id),
                bool(self.settings.square_app_secret),
                redirect_uri,
            )
            raise ConfigError("Square OAuth credentials not configured on server.")

        if request.access_token and request.merchant_id:
            logger.info("Using provided access token for merchant %s", request.merchant_id)
            return MerchantToken(request.access_token, request.merchant_id)
        return None

    def exchange_code(self, code: str, redirect_uri: str) -> MerchantToken:
        logger.info("Exchanging code %s... with Square (redirect_uri=%s)", code[:5], redirect_uri)
        client = self.client_factory(self.settings, None)
        result = client.o_auth.obtain_token(
            body={
                "client_id": self.settings.square_app_id,
                "client_secret": self.settings.square_app_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            }
        )
        if not result.is_success():
            logger.error("Square OAuth token error: %s %s", result.status_code, result.body)
            raise UpstreamAuthError(
                "Failed to exchange Square OAuth token.",
                status_code=result.status_code or 400,
                upstream=result.body,
            )

        access_token = result.body.get("access_token")
        merchant_id = result.body.get("merchant_id")
        if not access_token or not merchant_id:
            raise UpstreamAuthError(
                "Square OAuth response missing access token or merchant id.",
                status_code=502,
                upstream=result.body,
            )
        logger.info("Square OAuth token exchanged for merchant %s", merchant_id)
        return MerchantToken(access_token, merchant_id)

    def fetch_merchant(self, token: MerchantToken) -> dict[str, Any]:
        logger.info("Fetching merchant details from Square: %s", token.merchant_id)
        client = self.client_factory(self.settings, token.access_token)
        response = client.merchants.retrieve_merchant(merchant_id=token.merchant_id)
        if not response.is_success():
            logger.error("Error fetching merchant %s: %s", token.merchant_id, response.errors)
            raise UpstreamAuthError(
                "Failed to fetch Square merchant.",
                status_code=response.status_code or 400,
                upstream=response.errors,
            )
        return dict(response.body.get("merchant") or {})

    def upsert_identity(
        self, email: str, password: str, merchant_id: str, business_name: str
    ) -> IdentityUser:
        """Create the admin user, or take over the existing account for ``email``."""
        user_metadata = {
            "role": ADMIN_ROLE,
            "merchant_id": merchant_id,
            "business_name": business_name,
        }
        app_metadata = {
            "role": ADMIN_ROLE,
            "provisioned_via": SQUARE_OAUTH_PROVISIONING,
            "merchant_id": merchant_id,
        }

        try:
            user = self.identity.create_user(email, password, user_metadata, app_metadata)
            logger.info("User created: %s", user.id)
            return user
        except IdentityError as e:
            if not is_user_already_exists(e.code, e.message):
                logger.error("Failed to create user: %s (%s)", e.message, e.code)
                raise IdentityProvisioningError(f"Failed to create user: {e.message}") from e

        logger.info("User already exists, updating instead")
        try:
            existing = self.identity.find_user_by_email(email)
        except IdentityError as e:
            raise UserLookupError(f"Failed to look up existing user: {e.message}") from e
        if existing is None:
            raise UserLookupError("User exists but could not be found in list")

        try:
            user = self.identity.update_user_by_id(
                existing.id,
                {
                    "password": password,
                    "email_confirm": True,
                    "user_metadata": user_metadata,
                    "app_metadata": app_metadata,
                },
            )
        except IdentityError as e:
            logger.error("Failed to update user %s: %s", existing.id, e.message)
            raise IdentityProvisioningError(f"Failed to update user: {e.message}") from e
        logger.info("User updated: %s", user.id)
        return user

    def mint_session(self, email: str, password: str) -> SessionTokens:
        try:
            session = self.identity.sign_in_with_password(email, password)
        except IdentityError as e:
            logger.error("Sign-in failed for %s: %s", email, e.message)
            raise SessionError(f"Failed to create session: {e.message}") from e
        if session is None:
            raise SessionError("No session returned from sign-in")
        logger.info("Session created")
        return session
