"""Configuration management for the KY pipeline service.

Loads configuration from environment variables using Pydantic models.
Every component receives the Config instance explicitly at construction;
nothing reads the environment at call time.

Provides:
- Config: Pydantic model with all application settings
- load_config: Factory function to create Config instance
"""

import os

from pydantic import BaseModel, Field


class Config(BaseModel):
    """Application configuration loaded from environment.

    Secrets default to empty strings. An empty secret means "not configured"
    and each operation that needs it fails closed, except the broadcast
    shared secret where empty means authentication is explicitly disabled.

    Attributes:
        database_url: SQLAlchemy async database URL
        anthropic_api_key: API key for the photo analyzer (ANTHROPIC_API_KEY)
        vision_model: Claude model used for photo analysis
        line_channel_secret: LINE channel secret used to verify webhook signatures
        line_channel_access_token: LINE channel access token for broadcasts
        line_push_secret: Shared secret required in X-Line-Push-Secret (optional)
        line_api_base: Base URL of the LINE Messaging API
        jwt_secret: HS256 secret used to verify bearer session tokens
        jwt_audience: Expected audience claim of session tokens
        admin_user_id: When set, only this subject may approve/unapprove/delete
        http_timeout_seconds: Total timeout for outbound gateway calls
        host: Bind address for the HTTP service
        port: Bind port for the HTTP service
    """

    # Database
    database_url: str = Field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite+aiosqlite:///ky_pipeline.db")
    )

    # Photo analysis
    anthropic_api_key: str = Field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", "")
    )
    vision_model: str = Field(
        default_factory=lambda: os.getenv("KY_VISION_MODEL", "claude-sonnet-4-5-20250929")
    )

    # LINE messaging gateway
    line_channel_secret: str = Field(
        default_factory=lambda: os.getenv("LINE_CHANNEL_SECRET", "").strip()
    )
    line_channel_access_token: str = Field(
        default_factory=lambda: os.getenv("LINE_CHANNEL_ACCESS_TOKEN", "").strip()
    )
    line_push_secret: str = Field(
        default_factory=lambda: os.getenv("LINE_PUSH_SECRET", "").strip()
    )
    line_api_base: str = Field(
        default_factory=lambda: os.getenv("LINE_API_BASE", "https://api.line.me")
    )

    # Session authentication
    jwt_secret: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_JWT_SECRET", "")
    )
    jwt_audience: str = Field(
        default_factory=lambda: os.getenv("KY_JWT_AUDIENCE", "authenticated")
    )
    admin_user_id: str = Field(
        default_factory=lambda: os.getenv("KY_ADMIN_USER_ID", "").strip()
    )

    # HTTP
    http_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
    )
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "8080")))

    @property
    def broadcast_auth_enabled(self) -> bool:
        """Whether the broadcast endpoint requires the shared-secret header."""
        return bool(self.line_push_secret)


def load_config() -> Config:
    """Load configuration from environment.

    Returns:
        Populated Config instance
    """
    return Config()
