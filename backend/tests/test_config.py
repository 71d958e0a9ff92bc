from __future__ import annotations

import os
from dataclasses import replace
from datetime import timezone

from invoicing_scheduler.config import Settings, get_settings, runtime_config_issues


def _set_env(name: str, value: str | None) -> str | None:
    previous = os.environ.get(name)
    if value is None:
        os.environ.pop(name, None)
    else:
        os.environ[name] = value
    return previous


def _restore_env(name: str, previous: str | None) -> None:
    if previous is None:
        os.environ.pop(name, None)
    else:
        os.environ[name] = previous


def test_get_settings_defaults() -> None:
    names = (
        "SCHEDULE_STORE_BACKEND",
        "INVOICE_SWEEP_INTERVAL_SECONDS",
        "INVOICE_SWEEP_WARMUP_SECONDS",
        "INVOICE_SCHEDULE_DEFAULT_HOUR",
        "INVOICE_SCHEDULER_TIMEZONE",
        "MAILER_TYPE",
        "MAILER_ENABLED",
    )
    previous = {name: _set_env(name, None) for name in names}
    try:
        settings = get_settings()
        assert settings.store_backend == "inmemory"
        assert settings.sweep_interval_seconds == 300.0
        assert settings.sweep_warmup_seconds == 30.0
        assert settings.default_hour_of_day == 6
        assert settings.resolve_timezone() is timezone.utc
        assert settings.mailer_type == "stub"
        assert settings.mailer_enabled is False
        assert runtime_config_issues(settings) == ()
    finally:
        for name, value in previous.items():
            _restore_env(name, value)


def test_get_settings_parses_environment_overrides() -> None:
    previous = {
        "INVOICE_SWEEP_INTERVAL_SECONDS": _set_env("INVOICE_SWEEP_INTERVAL_SECONDS", "60"),
        "INVOICE_SCHEDULE_DEFAULT_HOUR": _set_env("INVOICE_SCHEDULE_DEFAULT_HOUR", " 9 "),
        "INVOICE_SCHEDULER_ENABLED": _set_env("INVOICE_SCHEDULER_ENABLED", "off"),
        "MAILER_TYPE": _set_env("MAILER_TYPE", "SMTP"),
        "SMTP_PORT": _set_env("SMTP_PORT", "not-a-port"),
        "RUNTIME_CONFIG_GUARD_MODE": _set_env("RUNTIME_CONFIG_GUARD_MODE", "loud"),
    }
    try:
        settings = get_settings()
        assert settings.sweep_interval_seconds == 60.0
        assert settings.default_hour_of_day == 9
        assert settings.scheduler_enabled is False
        assert settings.mailer_type == "smtp"
        assert settings.smtp_port == 587
        assert settings.runtime_config_guard_mode == "warn"
    finally:
        for name, value in previous.items():
            _restore_env(name, value)


def test_unknown_timezone_falls_back_to_utc_and_is_reported() -> None:
    settings = Settings(scheduler_timezone="Mars/Olympus_Mons")

    assert settings.resolve_timezone() is timezone.utc
    issues = runtime_config_issues(settings)
    assert any("INVOICE_SCHEDULER_TIMEZONE=Mars/Olympus_Mons" in issue for issue in issues)


def test_runtime_config_issues_flags_invalid_settings() -> None:
    settings = replace(
        Settings(),
        store_backend="postgres",
        database_url=" ",
        sweep_interval_seconds=0,
        sweep_warmup_seconds=-1,
        default_hour_of_day=24,
        mailer_type="smtp",
    )

    issues = runtime_config_issues(settings)

    assert "DATABASE_URL is required when SCHEDULE_STORE_BACKEND=postgres" in issues
    assert "INVOICE_SWEEP_INTERVAL_SECONDS must be greater than zero" in issues
    assert "INVOICE_SWEEP_WARMUP_SECONDS cannot be negative" in issues
    assert "INVOICE_SCHEDULE_DEFAULT_HOUR must be between 0 and 23" in issues
    assert "SMTP_HOST or SMTP_PICKUP_DIRECTORY is required when MAILER_TYPE=smtp" in issues
    assert runtime_config_issues(replace(Settings(), store_backend="redis")) == (
        "SCHEDULE_STORE_BACKEND=redis is not supported",
    )


def test_sender_address_prefers_from_then_user() -> None:
    assert Settings(smtp_from="billing@example.com", smtp_user="mailer@example.com").sender_address() == (
        "billing@example.com"
    )
    assert Settings(smtp_user="mailer@example.com").sender_address() == "mailer@example.com"
    assert Settings().sender_address() == "noreply@localhost"
