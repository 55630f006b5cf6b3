"""Environment-driven configuration for the relay."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

_DEFAULT_PROVIDER_URL = "https://api.modelriver.com"
_DEFAULT_PORT = 4000


def _get_bool_env(name: str, default: bool = False) -> bool:
    value = os.environ.get(name, "").strip().lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_env(name: str) -> int | None:
    value = os.environ.get(name, "").strip()
    return int(value) if value else None


@dataclass
class RelaySettings:
    """Settings consumed by the dispatch client, webhook pipeline and app.

    ``production`` controls what happens when ``webhook_secret`` is unset:
    outside production, signature verification is skipped with a warning;
    in production, every webhook is rejected.
    """

    api_key: str | None = None
    provider_url: str = _DEFAULT_PROVIDER_URL
    public_base_url: str = f"http://localhost:{_DEFAULT_PORT}"
    port: int = _DEFAULT_PORT
    webhook_secret: str | None = None
    production: bool = False
    webhook_max_age_seconds: int | None = None
    pending_ttl_seconds: int | None = None
    default_workflow: str = "chatbot_workflow"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    audit_log_path: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> RelaySettings:
        port = _get_int_env("PORT") or _DEFAULT_PORT
        origins = os.environ.get("CORS_ORIGINS", "*")
        return cls(
            api_key=os.environ.get("PROVIDER_API_KEY") or None,
            provider_url=os.environ.get("PROVIDER_API_URL", _DEFAULT_PROVIDER_URL),
            public_base_url=os.environ.get(
                "PUBLIC_BASE_URL", f"http://localhost:{port}",
            ),
            port=port,
            webhook_secret=os.environ.get("WEBHOOK_SECRET") or None,
            production=_get_bool_env("RELAY_PRODUCTION"),
            webhook_max_age_seconds=_get_int_env("WEBHOOK_MAX_AGE_SECONDS"),
            pending_ttl_seconds=_get_int_env("PENDING_TTL_SECONDS"),
            default_workflow=os.environ.get("DEFAULT_WORKFLOW", "chatbot_workflow"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            audit_log_path=os.environ.get("AUDIT_LOG_PATH") or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
