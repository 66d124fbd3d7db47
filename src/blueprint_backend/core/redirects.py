"""Origin and redirect URI resolution for requests behind a proxy."""

import logging
from typing import Mapping, Optional

from blueprint_backend.core.settings import SQUARE_CALLBACK_PATH

logger = logging.getLogger("redirects")

LOCAL_HOSTS = ("localhost", "127.0.0.1")


def request_origin(headers: Mapping[str, str], secure: bool = False) -> Optional[str]:
    """Origin of a request from ``X-Forwarded-*`` or ``Host``.

    Hosts other than localhost are always https.
    """
    host = headers.get("x-forwarded-host") or headers.get("host")
    if not host:
        return None
    host = host.split(",")[0].strip()
    forwarded_proto = (headers.get("x-forwarded-proto") or "").split(",")[0].strip()
    protocol = forwarded_proto or ("https" if secure else "http")
    if not any(local in host for local in LOCAL_HOSTS):
        protocol = "https"
    return f"{protocol}://{host}"


def resolve_redirect_uri(registered: str, headers: Mapping[str, str]) -> Optional[str]:
    """The redirect URI to send to Square.

    Square only accepts the registered URI, so a configured value always wins;
    the request-derived URI is a fallback for unconfigured deployments.
    """
    origin = request_origin(headers)
    derived = f"{origin}{SQUARE_CALLBACK_PATH}" if origin else None
    if registered and derived and registered != derived:
        logger.info(
            "Using registered redirect URI %s (request would give %s)", registered, derived
        )
    return registered or derived


def is_secure_request(headers: Mapping[str, str], scheme: str) -> bool:
    forwarded_proto = (headers.get("x-forwarded-proto") or "").split(",")[0].strip()
    return forwarded_proto == "https" or scheme == "https"
