from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUTHY = ("1", "true", "yes", "on")


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    jwt_issuer: str = "courseflow"
    jwt_audience: str = "courseflow"
    jwt_public_key: str | None = None
    certificate_renderer_url: str | None = None
    certificate_base_url: str = "http://localhost:8000/certificates"
    expire_sweep_seconds: int = 60

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")
    sweep_raw = _getenv("EXPIRE_SWEEP_SECONDS", "60")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    try:
        expire_sweep_seconds = int(sweep_raw)
    except ValueError:
        raise ValueError(
            f"EXPIRE_SWEEP_SECONDS must be an integer (got {sweep_raw!r})"
        ) from None
    if expire_sweep_seconds <= 0:
        raise ValueError(
            f"EXPIRE_SWEEP_SECONDS must be positive (got {expire_sweep_seconds})"
        )

    # Production verifies tokens minted by the identity provider; without a
    # configured key there is nothing to verify against.
    jwt_public_key = os.environ.get("JWT_PUBLIC_KEY", "").strip() or None
    if app_env_raw == "prod" and jwt_public_key is None:
        raise ValueError("JWT_PUBLIC_KEY is required when APP_ENV=prod")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv("LOG_JSON", "false").lower() in _TRUTHY,
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        jwt_issuer=_getenv("JWT_ISSUER", "courseflow"),
        jwt_audience=_getenv("JWT_AUDIENCE", "courseflow"),
        jwt_public_key=jwt_public_key,
        certificate_renderer_url=_getenv("CERTIFICATE_RENDERER_URL", "") or None,
        certificate_base_url=_getenv(
            "CERTIFICATE_BASE_URL", "http://localhost:8000/certificates"
        ).rstrip("/"),
        expire_sweep_seconds=expire_sweep_seconds,
    )


SETTINGS = load_settings()
