"""Session-holder identity from bearer credentials.

Access tokens are HS256 JWTs issued by the auth provider (Supabase) and
signed with the project's JWT secret. The ``sub`` claim is the user id
that approvals and deletions are attributed to.

Provides:
- SessionIdentity: Authenticated session holder
- SessionVerifier: Bearer header -> SessionIdentity
- require_admin: Optional single-administrator restriction
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import jwt
import structlog

from kypipeline.core.config import Config
from kypipeline.core.errors import AuthenticationError, AuthorizationError, ConfigurationError

logger = structlog.get_logger()

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class SessionIdentity:
    user_id: str
    claims: dict[str, Any] = field(default_factory=dict)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token part of an ``Authorization: Bearer`` header.

    Raises:
        AuthenticationError: If the header is missing or not a bearer token
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise AuthenticationError("Missing Bearer token")
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthenticationError("Missing Bearer token")
    return token


class SessionVerifier:
    """Verifies bearer session tokens against the configured JWT secret."""

    def __init__(self, secret: str, audience: Optional[str] = "authenticated", algorithm: str = "HS256"):
        self.secret = secret
        self.audience = audience or None
        self.algorithm = algorithm

    @classmethod
    def from_config(cls, config: Config) -> "SessionVerifier":
        return cls(secret=config.jwt_secret, audience=config.jwt_audience)

    def verify(self, authorization: Optional[str]) -> SessionIdentity:
        """Authenticate an Authorization header value.

        Args:
            authorization: Raw ``Authorization`` header

        Returns:
            SessionIdentity of the token's subject

        Raises:
            AuthenticationError: Missing, expired, forged or subject-less token
            ConfigurationError: No JWT secret configured (fails closed)
        """
        token = extract_bearer_token(authorization)

        if not self.secret:
            raise ConfigurationError("session secret is not configured; refusing to authenticate")

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_exp": True, "verify_aud": self.audience is not None},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Session token expired") from None
        except jwt.InvalidTokenError as e:
            logger.warning("session_token_invalid", error=str(e))
            raise AuthenticationError("Invalid session token") from None

        subject = str(claims.get("sub") or "").strip()
        if not subject:
            raise AuthenticationError("Session token has no subject")

        return SessionIdentity(user_id=subject, claims=claims)


def require_admin(config: Config, identity: SessionIdentity) -> None:
    """Enforce the optional single-administrator restriction.

    Raises:
        AuthorizationError: If an admin is configured and identity is someone else
    """
    if config.admin_user_id and identity.user_id != config.admin_user_id:
        logger.warning("admin_only_rejected", user_id=identity.user_id)
        raise AuthorizationError("Admin only")
