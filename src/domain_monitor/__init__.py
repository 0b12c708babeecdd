"""
Domain Monitor - registration, health and expiry monitoring for domains.

This package schedules WHOIS refreshes, DNS/HTTP/TLS health probes and
expiry alert sweeps, and delivers the resulting events to signed webhook
subscriptions and alert channels.
"""

__version__ = "0.1.0"
__author__ = "Domain Monitor Team"

from domain_monitor.exceptions import (
    DomainMonitorError,
    ValidationError,
    NotFoundError,
    InvalidScheduleError,
    SweepTimeoutError,
    WhoisLookupError,
    DeliveryError,
    RefreshInProgressError,
    PersistenceError,
    TamperingError,
)
from domain_monitor.enums import (
    LogLevel,
    JobType,
    SweepOutcome,
    TriggerSource,
    WebhookEvent,
    Severity,
)
from domain_monitor.config import (
    ProbeConfig,
    RetryConfig,
    RefreshConfig,
    SchedulerConfig,
    WebhookDeliveryConfig,
    SignalConfig,
    SlackConfig,
    NotificationConfig,
    AlertConfig,
    PersistenceConfig,
    LoggingConfig,
    MonitorConfig,
    load_config,
)
from domain_monitor.models import (
    Domain,
    RegistrationData,
    ProbeResult,
    HealthSnapshot,
    Subscription,
    DeliveryRecord,
    EventPayload,
    RefreshStatus,
    RefreshSummary,
    ExpiringDomain,
    SweepResult,
    SchedulerStatus,
)
from domain_monitor.interfaces import (
    DomainRegistry,
    HealthStore,
    SubscriptionStore,
    WhoisLookup,
    LiveUpdateSink,
    ScheduleConfigStore,
)
from domain_monitor.domain_validator import (
    normalize_domain,
    validate_domain,
    DomainValidationResult,
)
from domain_monitor.event_logger import (
    EventLogger,
    LogEntry,
)
from domain_monitor.retry_manager import (
    RetryManager,
    RetryResult,
)
from domain_monitor.probes import (
    ProbePipeline,
)
from domain_monitor.dispatcher import (
    NotificationDispatcher,
    SignalChannel,
    SlackChannel,
    AlertChannel,
    sign_payload,
    subscription_matches,
)
from domain_monitor.health import (
    HealthAggregator,
    BackgroundJob,
)
from domain_monitor.refresh import (
    RefreshOrchestrator,
)
from domain_monitor.alerts import (
    ExpiryAlertSweep,
)
from domain_monitor.scheduler import (
    CronParser,
    CronParseError,
    CronSchedule,
    JobHandle,
    Scheduler,
    SchedulerState,
)
from domain_monitor.state_store import (
    JsonStateStore,
)
from domain_monitor.whois_client import (
    WhoisClient,
)
from domain_monitor.live_updates import (
    LiveUpdateHub,
)
from domain_monitor.cli import (
    main as cli_main,
    create_parser,
    build_runtime,
    create_scheduler,
)

__all__ = [
    # Exceptions
    "DomainMonitorError",
    "ValidationError",
    "NotFoundError",
    "InvalidScheduleError",
    "SweepTimeoutError",
    "WhoisLookupError",
    "DeliveryError",
    "RefreshInProgressError",
    "PersistenceError",
    "TamperingError",
    # Enums
    "LogLevel",
    "JobType",
    "SweepOutcome",
    "TriggerSource",
    "WebhookEvent",
    "Severity",
    # Configuration
    "ProbeConfig",
    "RetryConfig",
    "RefreshConfig",
    "SchedulerConfig",
    "WebhookDeliveryConfig",
    "SignalConfig",
    "SlackConfig",
    "NotificationConfig",
    "AlertConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "MonitorConfig",
    "load_config",
    # Models
    "Domain",
    "RegistrationData",
    "ProbeResult",
    "HealthSnapshot",
    "Subscription",
    "DeliveryRecord",
    "EventPayload",
    "RefreshStatus",
    "RefreshSummary",
    "ExpiringDomain",
    "SweepResult",
    "SchedulerStatus",
    # Collaborator protocols
    "DomainRegistry",
    "HealthStore",
    "SubscriptionStore",
    "WhoisLookup",
    "LiveUpdateSink",
    "ScheduleConfigStore",
    # Domain validation
    "normalize_domain",
    "validate_domain",
    "DomainValidationResult",
    # Logging
    "EventLogger",
    "LogEntry",
    # Retry Manager
    "RetryManager",
    "RetryResult",
    # Core components
    "ProbePipeline",
    "NotificationDispatcher",
    "SignalChannel",
    "SlackChannel",
    "AlertChannel",
    "sign_payload",
    "subscription_matches",
    "HealthAggregator",
    "BackgroundJob",
    "RefreshOrchestrator",
    "ExpiryAlertSweep",
    # Scheduler
    "CronParser",
    "CronParseError",
    "CronSchedule",
    "JobHandle",
    "Scheduler",
    "SchedulerState",
    # Reference collaborators
    "JsonStateStore",
    "WhoisClient",
    "LiveUpdateHub",
    # CLI
    "cli_main",
    "create_parser",
    "build_runtime",
    "create_scheduler",
]
