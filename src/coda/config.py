from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_TRUE_VALUES = {"1", "true", "yes"}

_ENV_FIELDS = {
    "CODA_DEVELOPER_TOKEN": "developer_token",
    "CODA_APP_NAME": "app_name",
    "CODA_APP_BUILD": "app_build",
    "CODA_APP_URL": "app_url",
    "CODA_APP_ICON_URL": "app_icon_url",
    "CODA_LOAD_TIMEOUT_SEC": "load_timeout_sec",
}
_ENV_FLAGS = {
    "CODA_ENHANCED_ERROR_LOGGING": "enhanced_error_logging",
    "CODA_DEV": "debug",
}


class BridgeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    developer_token: str = Field(min_length=1)
    app_name: str = "coda"
    app_build: str = "1.0"
    # Surfaced in the SDK's access request dialog; must carry a host.
    app_url: str = "https://localhost"
    app_icon_url: str | None = None
    load_timeout_sec: float = Field(default=10.0, gt=0.0)
    enhanced_error_logging: bool = False
    debug: bool = False

    @field_validator("app_url")
    @classmethod
    def _require_host(cls, value: str) -> str:
        if not urlparse(value).hostname:
            raise ValueError("Invalid app URL: missing host.")
        return value


def _format_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for item in exc.errors():
        loc = ".".join(str(piece) for piece in item.get("loc", [])) or "config"
        msg = item.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}")
    details = "; ".join(parts) if parts else "invalid config"
    return f"Invalid config: {details}"


def parse_config(payload: Any) -> tuple[BridgeConfig | None, str | None]:
    if not isinstance(payload, dict):
        return None, "Invalid config: expected object."
    try:
        return BridgeConfig.model_validate(payload), None
    except ValidationError as exc:
        return None, _format_validation_error(exc)


def load_config_from_env(environ: Mapping[str, str] | None = None) -> tuple[BridgeConfig | None, str | None]:
    env = os.environ if environ is None else environ
    payload: dict[str, Any] = {}
    for key, field in _ENV_FIELDS.items():
        value = env.get(key)
        if value:
            payload[field] = value
    for key, field in _ENV_FLAGS.items():
        value = env.get(key)
        if value is not None:
            payload[field] = value.lower() in _TRUE_VALUES
    return parse_config(payload)
