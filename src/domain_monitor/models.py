"""
Data models for the domain monitor.

This module defines the data structures shared between the probe pipeline,
the health aggregator, the refresh orchestrator, the notification dispatcher,
and the scheduler. Timestamps are ISO 8601 strings in UTC.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import JobType, SweepOutcome, TriggerSource, UptimeStatus


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Domain:
    """A monitored domain and its registration data."""

    id: int
    name: str  # lowercase canonical form
    registrar: str = ""
    created_date: str = ""
    expiry_date: str = ""
    name_servers: list[str] = field(default_factory=list)
    name_servers_prev: list[str] = field(default_factory=list)
    last_checked: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RegistrationData:
    """Registration fields returned by a WHOIS lookup."""

    registrar: str = ""
    created_date: str = ""
    expiry_date: str = ""
    name_servers: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of the DNS, HTTP and TLS checks for one domain name."""

    dns_resolved: bool
    dns_response_time_ms: Optional[float]
    dns_records: tuple[str, ...]
    http_status: Optional[int]
    http_response_time_ms: Optional[float]
    tls_valid: Optional[bool]  # None: could not determine
    tls_expiry: Optional[str]
    tls_issuer: Optional[str]


@dataclass(frozen=True)
class HealthSnapshot:
    """One probe result for one domain at one instant."""

    domain_id: int
    dns_resolved: bool
    dns_response_time_ms: Optional[float]
    dns_records: tuple[str, ...]
    http_status: Optional[int]
    http_response_time_ms: Optional[float]
    tls_valid: Optional[bool]
    tls_expiry: Optional[str]
    tls_issuer: Optional[str]
    checked_at: str
    id: Optional[int] = None

    @classmethod
    def from_probe(
        cls, domain_id: int, result: ProbeResult, checked_at: Optional[str] = None
    ) -> "HealthSnapshot":
        return cls(
            domain_id=domain_id,
            dns_resolved=result.dns_resolved,
            dns_response_time_ms=result.dns_response_time_ms,
            dns_records=tuple(result.dns_records),
            http_status=result.http_status,
            http_response_time_ms=result.http_response_time_ms,
            tls_valid=result.tls_valid,
            tls_expiry=result.tls_expiry,
            tls_issuer=result.tls_issuer,
            checked_at=checked_at or utc_now_iso(),
        )

    def is_failed(self) -> bool:
        """True when DNS did not resolve or HTTP was unreachable or erroring."""
        if not self.dns_resolved:
            return True
        if self.http_status is None:
            return True
        return self.http_status >= 400

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["dns_records"] = list(self.dns_records)
        return data


@dataclass(frozen=True)
class UptimeCheck:
    """One up/down check of one domain."""

    domain_id: int
    status: UptimeStatus
    response_time_ms: Optional[float]
    status_code: Optional[int]
    error: Optional[str]
    checked_at: str
    id: Optional[int] = None

    @property
    def is_up(self) -> bool:
        return self.status == UptimeStatus.UP

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class UptimeStats:
    """Availability figures for one domain over its stored checks."""

    domain_id: int
    domain: str
    total_checks: int = 0
    successful_checks: int = 0
    uptime_percentage: float = 100.0
    avg_response_time_ms: float = 0.0
    last_check: Optional[str] = None
    current_status: UptimeStatus = UptimeStatus.UNKNOWN
    consecutive_failures: int = 0


@dataclass
class CleanupStats:
    """Rows removed by one history cleanup run."""

    health_deleted: int = 0
    uptime_deleted: int = 0


@dataclass
class Subscription:
    """A webhook endpoint registered for a set of event names."""

    id: int
    url: str
    secret: str
    events: set[str] = field(default_factory=set)
    enabled: bool = True
    name: str = ""
    failure_count: int = 0
    last_status: Optional[int] = None
    last_triggered: Optional[str] = None


@dataclass
class DeliveryRecord:
    """One attempt to notify one subscription for one event."""

    subscription_id: int
    event: str
    payload: str
    response_status: Optional[int]
    response_body: Optional[str]
    success: bool
    attempt: int
    delivered_at: str = field(default_factory=utc_now_iso)


@dataclass
class EventPayload:
    """Envelope posted to webhook subscribers."""

    event: str
    timestamp: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "timestamp": self.timestamp, "data": self.data}


@dataclass
class RefreshStatus:
    """Progress of the running refresh sweep."""

    is_refreshing: bool = False
    total: int = 0
    completed: int = 0
    started_at: Optional[str] = None
    current_domain: Optional[str] = None


@dataclass
class RefreshSummary:
    """Aggregated result of one refresh sweep."""

    total: int
    succeeded: int
    failed: int
    errors: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0


@dataclass
class ExpiringDomain:
    """A domain found inside an expiry alert window."""

    domain_id: int
    domain: str
    expiry_date: str
    days: int
    registrar: str = ""


@dataclass
class SweepResult:
    """Outcome of one scheduler tick."""

    job_type: JobType
    outcome: SweepOutcome
    trigger: TriggerSource
    started_at: str
    finished_at: str
    error: Optional[str] = None


@dataclass
class SchedulerStatus:
    """Effective refresh schedule and handle state."""

    refresh_schedule: str
    is_running: bool
    schedules: dict[str, str] = field(default_factory=dict)
    last_results: dict[str, SweepResult] = field(default_factory=dict)
