"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Annotated, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, BeforeValidator, Field


def _split_numbers(value: object) -> object:
    """Accept "573001,573002" as well as a YAML list."""
    if value is None:
        return []
    if isinstance(value, int):
        value = str(value)
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part).strip() for part in value if str(part).strip()]
    return value


NumberList = Annotated[list[str], BeforeValidator(_split_numbers)]


class WhatsAppConfig(BaseModel):
    session_path: str = "./data/wa_session"
    media_dir: str = "./data/media"
    reconnect_base_delay: float = 2.0
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: int = 5
    reconnect_cooldown: float = 60.0
    qr_wait_seconds: float = 3.0


class StorageConfig(BaseModel):
    db_path: str = "./data/messages.db"
    error_retention_days: int = Field(default=30, ge=1)


class EmailConfig(BaseModel):
    provider: Literal["mailersend", "mailpit", "none"] = "mailersend"
    mailersend_api_key: str = ""
    mailpit_url: str = "http://localhost:8025"
    from_address: str = "noreply@localhost"
    from_name: str = "WhatsApp Reports"
    report_to: str = ""
    timeout: float = 30.0


class DailyReportConfig(BaseModel):
    enabled: bool = False
    hour: int = Field(default=8, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    filter_numbers: NumberList = Field(default_factory=list)


class CommandsConfig(BaseModel):
    allowed_numbers: NumberList = Field(default_factory=list)
    freshness_seconds: int = 60


class ApiConfig(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    timezone: str = "UTC"
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    daily_report: DailyReportConfig = Field(default_factory=DailyReportConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def _drop_unresolved(data: object) -> object:
    """Treat empty values and values still holding a ${VAR} placeholder as unset."""
    if isinstance(data, dict):
        return {
            key: _drop_unresolved(value)
            for key, value in data.items()
            if value is not None
            and not (isinstance(value, str) and _ENV_VAR_PATTERN.fullmatch(value))
        }
    if isinstance(data, list):
        return [_drop_unresolved(item) for item in data]
    return data


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(str(data_dir))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = _drop_unresolved(yaml.safe_load(interpolated) or {})

    return AppConfig(**data)


def validate_config(config: AppConfig) -> list[str]:
    """Return human-readable warnings for settings that will not work together."""
    warnings: list[str] = []
    email = config.email

    if email.provider == "mailersend" and not email.mailersend_api_key:
        warnings.append("email.provider is 'mailersend' but email.mailersend_api_key is empty")
    if email.mailersend_api_key and not email.from_address:
        warnings.append("email.from_address is required when a MailerSend API key is set")
    if config.daily_report.enabled and not email.report_to:
        warnings.append("email.report_to is required when daily_report.enabled is true")
    if config.daily_report.enabled and email.provider == "none":
        warnings.append("daily_report.enabled is true but no email provider is configured")

    return warnings


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Return the ZoneInfo for a configured timezone name, UTC when unknown."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")
