from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _normalize_mode(value: str | None, *, default: str, allowed: set[str]) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized if normalized in allowed else default


def _load_zone(name: str) -> tzinfo | None:
    normalized = name.strip() or "UTC"
    if normalized.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(normalized)
    except (ZoneInfoNotFoundError, ValueError):
        return None


@dataclass(frozen=True)
class Settings:
    app_name: str = "Invoice Scheduler"
    api_prefix: str = "/api/v1"
    store_backend: str = "inmemory"
    database_url: str = ""
    # Sweep loop settings.
    scheduler_enabled: bool = True
    sweep_interval_seconds: float = 300.0
    sweep_warmup_seconds: float = 30.0
    default_hour_of_day: int = 6
    scheduler_timezone: str = "UTC"
    run_history_limit_max: int = 200
    attach_pdf: bool = True
    # Mail transport settings.
    mailer_type: str = "stub"
    mailer_enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 10.0
    smtp_from: str = ""
    smtp_pickup_directory: str = ""
    runtime_config_guard_mode: str = "warn"

    def resolve_timezone(self) -> tzinfo:
        zone = _load_zone(self.scheduler_timezone)
        return zone if zone is not None else timezone.utc

    def sender_address(self) -> str:
        candidate = self.smtp_from.strip() or self.smtp_user.strip()
        return candidate or "noreply@localhost"


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("INVOICING_APP_NAME", "Invoice Scheduler"),
        api_prefix=os.getenv("INVOICING_API_PREFIX", "/api/v1"),
        store_backend=os.getenv("SCHEDULE_STORE_BACKEND", "inmemory"),
        database_url=os.getenv("DATABASE_URL", ""),
        scheduler_enabled=_as_bool(os.getenv("INVOICE_SCHEDULER_ENABLED"), True),
        sweep_interval_seconds=_as_float(os.getenv("INVOICE_SWEEP_INTERVAL_SECONDS"), 300.0),
        sweep_warmup_seconds=_as_float(os.getenv("INVOICE_SWEEP_WARMUP_SECONDS"), 30.0),
        default_hour_of_day=_as_int(os.getenv("INVOICE_SCHEDULE_DEFAULT_HOUR"), 6),
        scheduler_timezone=os.getenv("INVOICE_SCHEDULER_TIMEZONE", "UTC"),
        run_history_limit_max=_as_int(os.getenv("INVOICE_RUN_HISTORY_LIMIT_MAX"), 200),
        attach_pdf=_as_bool(os.getenv("INVOICE_ATTACH_PDF"), True),
        mailer_type=_normalize_mode(os.getenv("MAILER_TYPE"), default="stub", allowed={"stub", "smtp"}),
        mailer_enabled=_as_bool(os.getenv("MAILER_ENABLED"), False),
        smtp_host=os.getenv("SMTP_HOST", ""),
        smtp_port=_as_int(os.getenv("SMTP_PORT"), 587),
        smtp_user=os.getenv("SMTP_USER", ""),
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        smtp_use_tls=_as_bool(os.getenv("SMTP_USE_TLS"), True),
        smtp_timeout_seconds=_as_float(os.getenv("SMTP_TIMEOUT_SECONDS"), 10.0),
        smtp_from=os.getenv("SMTP_FROM", ""),
        smtp_pickup_directory=os.getenv("SMTP_PICKUP_DIRECTORY", ""),
        runtime_config_guard_mode=_normalize_mode(
            os.getenv("RUNTIME_CONFIG_GUARD_MODE"),
            default="warn",
            allowed={"off", "warn", "enforce"},
        ),
    )


def runtime_config_issues(settings: Settings) -> tuple[str, ...]:
    issues: list[str] = []
    backend = settings.store_backend.strip().lower()
    if backend not in {"inmemory", "postgres"}:
        issues.append(f"SCHEDULE_STORE_BACKEND={settings.store_backend} is not supported")
    if backend == "postgres" and not settings.database_url.strip():
        issues.append("DATABASE_URL is required when SCHEDULE_STORE_BACKEND=postgres")
    if settings.sweep_interval_seconds <= 0:
        issues.append("INVOICE_SWEEP_INTERVAL_SECONDS must be greater than zero")
    if settings.sweep_warmup_seconds < 0:
        issues.append("INVOICE_SWEEP_WARMUP_SECONDS cannot be negative")
    if not 0 <= settings.default_hour_of_day <= 23:
        issues.append("INVOICE_SCHEDULE_DEFAULT_HOUR must be between 0 and 23")
    if _load_zone(settings.scheduler_timezone) is None:
        issues.append(f"INVOICE_SCHEDULER_TIMEZONE={settings.scheduler_timezone} is not a known time zone")
    if (
        settings.mailer_type == "smtp"
        and not settings.smtp_host.strip()
        and not settings.smtp_pickup_directory.strip()
    ):
        issues.append("SMTP_HOST or SMTP_PICKUP_DIRECTORY is required when MAILER_TYPE=smtp")
    return tuple(issues)
