"""
Enumeration types for the domain monitor.

These enums provide type-safe constants for job types, event names,
sweep outcomes, and logging levels throughout the system.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


LOG_LEVEL_ORDER = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}


class JobType(Enum):
    """Recurring job kinds owned by the scheduler."""

    REFRESH = "refresh"
    ALERT_SWEEP = "alert-sweep"
    HEALTH_CHECK = "health-check"
    UPTIME = "uptime"
    CLEANUP = "cleanup"


class SweepOutcome(Enum):
    """Outcome of a single scheduler tick."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    SKIPPED = "skipped"


class UptimeStatus(Enum):
    """Result of one up/down check, or of a domain never checked."""

    UP = "up"
    DOWN = "down"
    UNKNOWN = "unknown"


class TriggerSource(Enum):
    """What caused a job to run."""

    SCHEDULE = "schedule"
    MANUAL = "manual"


class WebhookEvent(Enum):
    """Event names delivered to subscriptions and alternate channels."""

    DOMAIN_EXPIRING = "domain.expiring"
    DOMAIN_EXPIRED = "domain.expired"
    HEALTH_FAILED = "health.failed"
    UPTIME_DOWN = "uptime.down"
    UPTIME_RECOVERED = "uptime.recovered"
    REFRESH_COMPLETE = "refresh.complete"
    DOMAIN_CREATED = "domain.created"
    DOMAIN_DELETED = "domain.deleted"


class Severity(Enum):
    """Severity attached to an event in human-readable alerts."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    RESOLVED = "resolved"


EVENT_SEVERITY = {
    WebhookEvent.DOMAIN_EXPIRING.value: Severity.WARNING,
    WebhookEvent.DOMAIN_EXPIRED.value: Severity.CRITICAL,
    WebhookEvent.HEALTH_FAILED.value: Severity.CRITICAL,
    WebhookEvent.UPTIME_DOWN.value: Severity.CRITICAL,
    WebhookEvent.UPTIME_RECOVERED.value: Severity.RESOLVED,
    WebhookEvent.REFRESH_COMPLETE.value: Severity.INFO,
    WebhookEvent.DOMAIN_CREATED.value: Severity.INFO,
    WebhookEvent.DOMAIN_DELETED.value: Severity.INFO,
}
