"""Server configuration: reads settings from environment variables.

All settings have sensible defaults for local development.  In production
the values are typically overridden via env vars or a ``.env`` file.
"""

import os
from dataclasses import dataclass, field

# --- Code lifetime bounds ---
# Module-level constants read at import time so request-model Field()
# bounds can reference them.
DEFAULT_CODE_TTL_HOURS = int(os.getenv("DEFAULT_CODE_TTL_HOURS", "72"))
MAX_CODE_TTL_HOURS = int(os.getenv("MAX_CODE_TTL_HOURS", "720"))


@dataclass(frozen=True)
class ServerSettings:
    """Immutable server configuration read from environment at startup."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8080

    # CORS: comma-separated origins, or "*" for wide-open dev mode
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    # Admin API key: shared secret for admin endpoints (None = disabled)
    admin_api_key: str | None = None

    # Trusted proxy secret: when set, every request carrying gateway
    # identity headers (X-Tenant-ID, X-Partner-ID) must also carry a
    # matching X-Proxy-Secret.
    trusted_proxy_secret: str | None = None

    # Verification code lifetime (hours)
    default_code_ttl_hours: int = DEFAULT_CODE_TTL_HOURS
    max_code_ttl_hours: int = MAX_CODE_TTL_HOURS


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` and related environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        cors_origins=origins,
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
        admin_api_key=os.getenv("ADMIN_API_KEY") or None,
        trusted_proxy_secret=os.getenv("TRUSTED_PROXY_SECRET") or None,
        default_code_ttl_hours=int(os.getenv("DEFAULT_CODE_TTL_HOURS", str(DEFAULT_CODE_TTL_HOURS))),
        max_code_ttl_hours=int(os.getenv("MAX_CODE_TTL_HOURS", str(MAX_CODE_TTL_HOURS))),
    )
