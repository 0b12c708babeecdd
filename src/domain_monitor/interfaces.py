"""
Collaborator contracts consumed by the monitoring core.

The core never persists data or looks up WHOIS records itself; it talks to
these protocols. `state_store.JsonStateStore`, `whois_client.WhoisClient` and
`live_updates.LiveUpdateHub` are the bundled implementations.
"""

from abc import abstractmethod
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from .enums import JobType
from .models import (
    DeliveryRecord,
    Domain,
    HealthSnapshot,
    RegistrationData,
    Subscription,
    UptimeCheck,
)


@runtime_checkable
class DomainRegistry(Protocol):
    """Source of the monitored domain set."""

    @abstractmethod
    def list_domains(self) -> list[Domain]:
        ...

    @abstractmethod
    def get_domain(self, domain_id: int) -> Optional[Domain]:
        ...

    @abstractmethod
    def update_domain(self, domain: Domain) -> None:
        ...


@runtime_checkable
class HealthStore(Protocol):
    """Append-only health snapshot history."""

    @abstractmethod
    def save_snapshot(self, snapshot: HealthSnapshot) -> int:
        ...

    @abstractmethod
    def latest_snapshot(self, domain_id: int) -> Optional[HealthSnapshot]:
        ...

    @abstractmethod
    def snapshot_history(self, domain_id: int, limit: int = 100) -> list[HealthSnapshot]:
        ...


@runtime_checkable
class UptimeStore(Protocol):
    """Append-only up/down check history."""

    @abstractmethod
    def save_uptime_check(self, check: UptimeCheck) -> int:
        ...

    @abstractmethod
    def uptime_history(self, domain_id: int, limit: int = 100) -> list[UptimeCheck]:
        ...


@runtime_checkable
class HistoryRetentionStore(Protocol):
    """Pruning of the health and uptime histories."""

    @abstractmethod
    def prune_snapshots(self, older_than: datetime, keep_per_domain: Optional[int] = None) -> int:
        ...

    @abstractmethod
    def prune_uptime_checks(self, older_than: datetime, keep_per_domain: Optional[int] = None) -> int:
        ...


@runtime_checkable
class SubscriptionStore(Protocol):
    """Webhook subscriptions and their delivery log."""

    @abstractmethod
    def enabled_subscriptions_for(self, event: str) -> list[Subscription]:
        ...

    @abstractmethod
    def record_delivery(self, record: DeliveryRecord) -> None:
        ...

    @abstractmethod
    def update_subscription_status(
        self,
        subscription_id: int,
        status: Optional[int],
        failure_count: Optional[int] = None,
    ) -> None:
        ...


@runtime_checkable
class WhoisLookup(Protocol):
    """Registration data lookup. Raises WhoisLookupError on any problem."""

    @abstractmethod
    async def lookup(self, domain_name: str, timeout: float) -> RegistrationData:
        ...


@runtime_checkable
class LiveUpdateSink(Protocol):
    """Best-effort push of fresh snapshots to real-time observers."""

    @abstractmethod
    def publish(self, domain_id: int, snapshot: HealthSnapshot) -> None:
        ...


@runtime_checkable
class ScheduleConfigStore(Protocol):
    """Persisted cron expressions, independent of live scheduler handles."""

    @abstractmethod
    def get_schedule(self, job_type: JobType) -> Optional[str]:
        ...
