"""
Configuration dataclasses for the domain monitor.

This module defines all configuration structures used throughout the system,
including probe timeouts, WHOIS retry policy, scheduling, uptime checks,
history retention, notification channels, persistence, and logging. `load_config` builds a MonitorConfig from
environment variables, optionally read from a .env file.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass
class ProbeConfig:
    """Timeouts and pacing for the health probe pipeline."""

    dns_timeout_seconds: float = 10.0
    http_timeout_seconds: float = 10.0
    tls_timeout_seconds: float = 10.0
    tls_port: int = 443
    user_agent: str = "Domain-Monitor-Health-Check/1.0"
    inter_domain_delay_seconds: float = 0.5


@dataclass
class RetryConfig:
    """Fixed-delay retry policy for WHOIS lookups."""

    max_attempts: int = 3
    delay_seconds: float = 5.0


@dataclass
class RefreshConfig:
    """Bulk WHOIS refresh behaviour."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    lookup_timeout_seconds: float = 15.0
    pacing_delay_seconds: float = 2.0


@dataclass
class SchedulerConfig:
    """Recurring job defaults and the sweep ceiling."""

    refresh_schedule: str = "0 2 * * 0"  # Sundays at 2 AM
    alert_schedule: str = "0 9 * * *"
    health_check_enabled: bool = True
    health_check_interval_hours: int = 24
    sweep_ceiling_seconds: float = 7200.0
    cancel_on_timeout: bool = False
    uptime_enabled: bool = True
    uptime_interval_minutes: int = 5
    cleanup_enabled: bool = True
    cleanup_schedule: str = "0 3 * * *"

    def health_check_schedule(self) -> str:
        """Cron expression equivalent of the health check interval."""
        hours = max(1, min(int(self.health_check_interval_hours), 24))
        if hours == 24:
            return "0 0 * * *"
        return f"0 */{hours} * * *"

    def uptime_schedule(self) -> str:
        """Cron expression equivalent of the uptime check interval."""
        minutes = max(1, min(int(self.uptime_interval_minutes), 60))
        if minutes == 60:
            return "0 * * * *"
        return f"*/{minutes} * * * *"


@dataclass
class UptimeConfig:
    """Up/down checks and the outage alert threshold."""

    alert_threshold: int = 3  # consecutive failed checks before uptime.down
    timeout_seconds: float = 10.0
    user_agent: str = "Domain-Monitor-Uptime/1.0"
    inter_domain_delay_seconds: float = 0.1


@dataclass
class RetentionConfig:
    """How much health and uptime history the cleanup job keeps."""

    history_days: int = 30
    max_entries_per_domain: int = 500


@dataclass
class WebhookDeliveryConfig:
    """Outbound webhook delivery settings."""

    timeout_seconds: float = 10.0
    block_private_addresses: bool = True
    response_body_limit: int = 500
    user_agent: str = "Domain-Monitor-Webhooks/1.0"


@dataclass
class SignalConfig:
    """Signal gateway (signal-cli REST API) channel configuration."""

    api_url: str
    sender: str
    recipients: list[str] = field(default_factory=list)
    events: list[str] = field(default_factory=list)  # empty = all events
    timeout_seconds: float = 15.0
    enabled: bool = True


@dataclass
class SlackConfig:
    """Slack incoming webhook channel configuration."""

    webhook_url: str
    events: list[str] = field(default_factory=list)  # empty = all events
    timeout_seconds: float = 10.0
    enabled: bool = True


@dataclass
class NotificationConfig:
    """Webhook delivery settings and the optional alternate channels."""

    webhooks: WebhookDeliveryConfig = field(default_factory=WebhookDeliveryConfig)
    signal: Optional[SignalConfig] = None
    slack: Optional[SlackConfig] = None


@dataclass
class AlertConfig:
    """Expiry alert thresholds in days."""

    alert_days: list[int] = field(default_factory=lambda: [7, 14, 30])


@dataclass
class PersistenceConfig:
    """Location and integrity key of the JSON state file."""

    state_file_path: Path
    hmac_secret: str


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class MonitorConfig:
    """Main configuration combining all sub-configurations."""

    persistence: PersistenceConfig
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    uptime: UptimeConfig = field(default_factory=UptimeConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    simulation_mode: bool = False


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _list_env(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [p.strip() for chunk in raw.replace(";", ",").split(",") for p in chunk.split() if p.strip()]


def _alert_days_env(name: str, default: list[int]) -> list[int]:
    days = []
    for item in _list_env(name):
        try:
            value = int(item)
        except ValueError:
            continue
        if value > 0:
            days.append(value)
    return sorted(set(days)) or list(default)


def load_config(
    env_file: Optional[Path] = None,
    state_file: Optional[Path] = None,
) -> MonitorConfig:
    """
    Build a MonitorConfig from environment variables.

    Args:
        env_file: Optional .env file to load before reading the environment
        state_file: Optional state file path overriding DOMAIN_MONITOR_STATE_FILE

    Returns:
        MonitorConfig with defaults for anything not set
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    if state_file is None:
        env_path = os.getenv("DOMAIN_MONITOR_STATE_FILE", "").strip()
        state_file = Path(env_path) if env_path else Path.home() / ".domain_monitor" / "state.json"

    signal = None
    signal_url = os.getenv("SIGNAL_API_URL", "").strip()
    signal_sender = os.getenv("SIGNAL_SENDER", "").strip()
    signal_recipients = _list_env("SIGNAL_RECIPIENTS")
    if signal_url and signal_sender and signal_recipients:
        signal = SignalConfig(
            api_url=signal_url.rstrip("/"),
            sender=signal_sender,
            recipients=signal_recipients,
            events=_list_env("SIGNAL_EVENTS"),
            enabled=_bool_env("SIGNAL_ENABLED", True),
        )

    slack = None
    slack_url = os.getenv("SLACK_WEBHOOK_URL", "").strip()
    if slack_url:
        slack = SlackConfig(
            webhook_url=slack_url,
            events=_list_env("SLACK_EVENTS"),
            enabled=_bool_env("SLACK_ENABLED", True),
        )

    defaults = SchedulerConfig()
    return MonitorConfig(
        persistence=PersistenceConfig(
            state_file_path=state_file,
            hmac_secret=os.getenv("DOMAIN_MONITOR_HMAC_SECRET", "default-secret-change-me"),
        ),
        refresh=RefreshConfig(
            retry=RetryConfig(
                max_attempts=max(1, _int_env("WHOIS_MAX_ATTEMPTS", 3)),
                delay_seconds=_float_env("WHOIS_RETRY_DELAY_SECONDS", 5.0),
            ),
            lookup_timeout_seconds=_float_env("WHOIS_TIMEOUT_SECONDS", 15.0),
            pacing_delay_seconds=_float_env("WHOIS_DELAY_SECONDS", 2.0),
        ),
        scheduler=SchedulerConfig(
            refresh_schedule=os.getenv("REFRESH_SCHEDULE", "").strip() or defaults.refresh_schedule,
            alert_schedule=os.getenv("ALERT_SCHEDULE", "").strip() or defaults.alert_schedule,
            health_check_enabled=_bool_env("HEALTH_CHECK_ENABLED", True),
            health_check_interval_hours=_int_env("HEALTH_CHECK_INTERVAL_HOURS", 24),
            sweep_ceiling_seconds=_float_env("SWEEP_CEILING_SECONDS", 7200.0),
            cancel_on_timeout=_bool_env("SWEEP_CANCEL_ON_TIMEOUT", False),
            uptime_enabled=_bool_env("UPTIME_MONITORING_ENABLED", True),
            uptime_interval_minutes=_int_env("UPTIME_CHECK_INTERVAL_MINUTES", 5),
            cleanup_enabled=_bool_env("AUTO_CLEANUP_ENABLED", True),
            cleanup_schedule=os.getenv("CLEANUP_SCHEDULE", "").strip() or defaults.cleanup_schedule,
        ),
        notifications=NotificationConfig(signal=signal, slack=slack),
        alerts=AlertConfig(alert_days=_alert_days_env("ALERT_DAYS", [7, 14, 30])),
        uptime=UptimeConfig(
            alert_threshold=max(1, _int_env("UPTIME_ALERT_THRESHOLD", 3)),
            timeout_seconds=_float_env("UPTIME_TIMEOUT_SECONDS", 10.0),
        ),
        retention=RetentionConfig(
            history_days=max(1, _int_env("HEALTH_LOG_RETENTION_DAYS", 30)),
            max_entries_per_domain=max(1, _int_env("HEALTH_LOG_MAX_PER_DOMAIN", 500)),
        ),
        logging=LoggingConfig(
            level=os.getenv("LOG_LEVEL", "info").strip().lower() or "info",
            output_format=os.getenv("LOG_FORMAT", "text").strip().lower() or "text",
        ),
        simulation_mode=_bool_env("SIMULATION_MODE", False),
    )
