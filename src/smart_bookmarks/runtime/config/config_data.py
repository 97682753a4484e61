"""Pydantic models for parsing the config.yaml configuration file.

This module contains Pydantic models that correspond to the structure of config.yaml.
These models handle validation and type conversion of the YAML configuration data.
"""

from __future__ import annotations

from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, computed_field


class CORSConfig(BaseModel):
    """CORS configuration for the application."""

    origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"]
    )
    allow_credentials: bool = True
    allow_methods: list[str] = Field(default=["GET", "POST", "OPTIONS"])
    allow_headers: list[str] = Field(default=["*"])


class RateLimitRule(BaseModel):
    """Quota for one named policy."""

    requests: int = Field(default=30, description="Requests allowed per window")
    window_seconds: int = Field(default=60, description="Sliding window length in seconds")


def _default_route_rules() -> dict[str, RateLimitRule]:
    return {
        "login": RateLimitRule(requests=10, window_seconds=60),
        "callback": RateLimitRule(requests=10, window_seconds=60),
    }


class RateLimiterConfig(BaseModel):
    """Rate limiter configuration model."""

    enabled: bool = Field(default=True, description="Enable rate limiting")
    default: RateLimitRule = Field(
        default_factory=RateLimitRule, description="Quota of routes without their own policy"
    )
    routes: dict[str, RateLimitRule] = Field(
        default_factory=_default_route_rules, description="Quotas per named policy"
    )

    def rule_for(self, policy: str) -> RateLimitRule:
        return self.routes.get(policy, self.default)


class BackendConfig(BaseModel):
    """Managed identity and data backend (Supabase-compatible) configuration."""

    url: str = Field(
        default="http://localhost:54321", description="Backend project URL"
    )
    anon_key: str = Field(default="", description="Public API key sent as 'apikey'")
    service_role_key: str | None = Field(
        default=None,
        description="Privileged server-only key. Never sent to clients.",
    )
    bookmarks_table: str = Field(
        default="bookmarks", description="Table holding bookmark rows"
    )
    db_schema: str = Field(default="public", description="Database schema of the table")
    request_timeout: float = Field(
        default=10.0, description="Timeout in seconds for backend HTTP calls"
    )

    @computed_field
    @property
    def project_ref(self) -> str:
        """First DNS label of the project host, used to namespace storage keys."""
        hostname = urlparse(self.url).hostname or "localhost"
        return hostname.split(".")[0]

    @computed_field
    @property
    def storage_key(self) -> str:
        """Cookie name under which the web session is kept."""
        return f"sb-{self.project_ref}-auth-token"

    @property
    def auth_url(self) -> str:
        return f"{self.url.rstrip('/')}/auth/v1"


class AuthConfig(BaseModel):
    """Authentication flow configuration."""

    provider: str = Field(default="google", description="External identity provider")
    login_path: str = Field(default="/auth/login", description="Path starting sign-in")
    callback_path: str = Field(
        default="/auth/callback", description="Path of the session handshake handler"
    )
    error_path: str = Field(
        default="/auth/auth-code-error",
        description="Fixed page users land on when the handshake fails",
    )
    default_next: str = Field(
        default="/", description="Post-login destination when none is given"
    )
    refresh_margin_seconds: int = Field(
        default=60,
        description="Refresh the access token when it expires within this window",
    )
    code_verifier_max_age: int = Field(
        default=600, description="Lifetime in seconds of the PKCE verifier cookie"
    )


class RealtimeConfig(BaseModel):
    """Change notification channel configuration."""

    enabled: bool = Field(default=True, description="Subscribe to change notifications")
    join_timeout_seconds: float = Field(
        default=10.0, description="How long to wait for the channel join to be acknowledged"
    )
    keepalive_interval_seconds: float = Field(
        default=60.0,
        description="How often long-running clients refresh the session and check the channel",
    )


class LoggingConfig(BaseModel):
    """Logging configuration model."""

    level: str = Field(default="INFO", description="Logging level")
    format: Literal["json", "plain"] = Field(default="json", description="Log format")
    file: str | None = Field(default=None, description="Log file path")
    max_size_mb: int = Field(default=10, description="Maximum log file size in MB")
    backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )


class AppConfig(BaseModel):
    """Application configuration model."""

    environment: Literal["development", "production", "test"] = Field(
        default="development", description="Application environment"
    )
    host: str = Field(default="localhost", description="Application host")
    port: int = Field(default=8000, description="Application port")
    public_url: str | None = Field(
        default=None,
        description="Externally visible base URL (overrides host/port when set)",
    )
    trust_forwarded_headers: bool = Field(
        default=False,
        description="Derive the request origin from X-Forwarded-* headers",
    )
    cors: CORSConfig = Field(
        default_factory=CORSConfig, description="CORS configuration"
    )

    @property
    def base_url(self) -> str:
        """Construct the base URL from host and port."""
        if self.public_url:
            return self.public_url.rstrip("/")
        scheme = "https" if self.environment == "production" else "http"
        return f"{scheme}://{self.host}:{self.port}"


class SecurityConfig(BaseModel):
    """Cookie settings for the session written by the handshake."""

    secure_cookies: bool = Field(
        default=True, description="Mark cookies Secure in production"
    )
    cookie_samesite: Literal["lax", "strict", "none"] = Field(
        default="lax", description="SameSite cookie attribute"
    )
    session_cookie_max_age: int = Field(
        default=60 * 60 * 24 * 400, description="Session cookie max-age in seconds"
    )
    cookie_chunk_size: int = Field(
        default=3180, description="Maximum cookie value length before chunking"
    )


class CLIConfig(BaseModel):
    """Command line client configuration."""

    session_file: str = Field(
        default="~/.smart-bookmarks/session.json",
        description="File in which the CLI keeps its session",
    )
    loopback_host: str = Field(default="127.0.0.1", description="Login callback host")
    loopback_port: int = Field(default=54329, description="Login callback port")
    login_timeout_seconds: int = Field(
        default=300, description="How long `login` waits for the provider redirect"
    )


class ConfigData(BaseModel):
    """Root configuration model that matches the config.yaml structure."""

    app: AppConfig = Field(
        default_factory=AppConfig, description="Application configuration"
    )
    backend: BackendConfig = Field(
        default_factory=BackendConfig, description="Managed backend configuration"
    )
    auth: AuthConfig = Field(
        default_factory=AuthConfig, description="Authentication flow configuration"
    )
    realtime: RealtimeConfig = Field(
        default_factory=RealtimeConfig, description="Change notification configuration"
    )
    security: SecurityConfig = Field(
        default_factory=SecurityConfig, description="Security configuration"
    )
    rate_limiter: RateLimiterConfig = Field(
        default_factory=RateLimiterConfig, description="Rate limiter configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    cli: CLIConfig = Field(default_factory=CLIConfig, description="CLI configuration")
