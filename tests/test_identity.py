"""Tests for bearer session authentication."""

import time

import jwt
import pytest

from kypipeline.core.config import Config
from kypipeline.core.errors import AuthenticationError, AuthorizationError, ConfigurationError
from kypipeline.core.safety.identity import SessionIdentity, SessionVerifier, extract_bearer_token, require_admin

SECRET = "jwt-secret-for-tests-0123456789abcdef"


def make_token(sub="user-1", secret=SECRET, aud="authenticated", expires_in=3600, **extra) -> str:
    claims = {"sub": sub, "aud": aud, "exp": int(time.time()) + expires_in, **extra}
    if sub is None:
        del claims["sub"]
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def verifier():
    return SessionVerifier(SECRET)


def test_valid_token_yields_subject(verifier):
    identity = verifier.verify(f"Bearer {make_token(role='authenticated')}")
    assert identity.user_id == "user-1"
    assert identity.claims["role"] == "authenticated"


@pytest.mark.parametrize("header", [None, "", "Bearer ", "Basic dXNlcjpwYXNz", "bearer-less-token"])
def test_missing_bearer_token(header):
    with pytest.raises(AuthenticationError, match="Missing Bearer token"):
        extract_bearer_token(header)


def test_expired_token_rejected(verifier):
    with pytest.raises(AuthenticationError, match="expired"):
        verifier.verify(f"Bearer {make_token(expires_in=-60)}")


def test_forged_token_rejected(verifier):
    with pytest.raises(AuthenticationError):
        verifier.verify(f"Bearer {make_token(secret='someone-elses-secret-0123456789ab')}")


def test_wrong_audience_rejected(verifier):
    with pytest.raises(AuthenticationError):
        verifier.verify(f"Bearer {make_token(aud='anon')}")


def test_garbage_token_rejected(verifier):
    with pytest.raises(AuthenticationError):
        verifier.verify("Bearer not.a.jwt")


def test_token_without_subject_rejected(verifier):
    with pytest.raises(AuthenticationError, match="subject"):
        verifier.verify(f"Bearer {make_token(sub=None)}")


def test_unconfigured_secret_fails_closed():
    verifier = SessionVerifier("")
    with pytest.raises(ConfigurationError):
        verifier.verify(f"Bearer {make_token()}")


def test_missing_header_checked_before_configuration():
    """An anonymous caller gets 401 even when the server is misconfigured."""
    with pytest.raises(AuthenticationError):
        SessionVerifier("").verify(None)


def test_from_config():
    config = Config(jwt_secret=SECRET, jwt_audience="authenticated")
    identity = SessionVerifier.from_config(config).verify(f"Bearer {make_token(sub='user-9')}")
    assert identity.user_id == "user-9"


def test_require_admin_open_when_unset():
    require_admin(Config(admin_user_id=""), SessionIdentity(user_id="anyone"))


def test_require_admin_restricts_to_configured_subject():
    config = Config(admin_user_id="admin-1")
    require_admin(config, SessionIdentity(user_id="admin-1"))

    with pytest.raises(AuthorizationError, match="Admin only"):
        require_admin(config, SessionIdentity(user_id="user-1"))
