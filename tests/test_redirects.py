"""Tests for origin and redirect URI resolution."""

from blueprint_backend.core.redirects import is_secure_request, request_origin, resolve_redirect_uri


def test_origin_from_forwarded_headers() -> None:
    headers = {"x-forwarded-host": "salon.example.com, proxy", "x-forwarded-proto": "http", "host": "internal"}
    assert request_origin(headers) == "https://salon.example.com"


def test_localhost_keeps_http() -> None:
    assert request_origin({"host": "localhost:8000"}) == "http://localhost:8000"


def test_no_host() -> None:
    assert request_origin({}) is None


def test_registered_redirect_wins() -> None:
    registered = "https://app.example.com/square/oauth/callback"
    assert resolve_redirect_uri(registered, {"host": "preview.example.com"}) == registered


def test_redirect_derived_when_unregistered() -> None:
    assert (
        resolve_redirect_uri("", {"host": "preview.example.com"})
        == "https://preview.example.com/square/oauth/callback"
    )
    assert resolve_redirect_uri("", {}) is None


def test_secure_request() -> None:
    assert is_secure_request({"x-forwarded-proto": "https"}, "http")
    assert is_secure_request({}, "https")
    assert not is_secure_request({}, "http")
