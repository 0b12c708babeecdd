"""
Health aggregator.

Runs the probe pipeline for registered domains, appends the snapshots to the
health store, pushes them to live observers and raises `health.failed` when a
domain goes from healthy (or unknown) to failed.
"""

import asyncio
import dataclasses
from typing import Any, Generic, Optional, TypeVar

from .config import ProbeConfig
from .dispatcher import NotificationDispatcher
from .enums import WebhookEvent
from .event_logger import ComponentLogging, EventLogger
from .exceptions import NotFoundError
from .interfaces import DomainRegistry, HealthStore, LiveUpdateSink
from .models import Domain, HealthSnapshot
from .probes import ProbePipeline

T = TypeVar("T")

MAX_HISTORY_LIMIT = 1000


class BackgroundJob(Generic[T]):
    """
    A detached asyncio task with its own error channel.

    The outcome is logged when the task finishes; callers may poll `done()`
    or await `wait()` but never have to.
    """

    def __init__(self, name: str, task: "asyncio.Task[T]", logger: Optional[EventLogger] = None) -> None:
        self.name = name
        self._task = task
        self._logger = logger
        task.add_done_callback(self._on_done)

    def done(self) -> bool:
        return self._task.done()

    @property
    def error(self) -> Optional[BaseException]:
        if not self._task.done() or self._task.cancelled():
            return None
        return self._task.exception()

    def result(self) -> T:
        """Result of the finished job; re-raises its error."""
        return self._task.result()

    async def wait(self) -> Optional[T]:
        """Wait for the job; returns None instead of raising when it failed."""
        await asyncio.gather(self._task, return_exceptions=True)
        if self._task.cancelled() or self._task.exception() is not None:
            return None
        return self._task.result()

    def cancel(self) -> None:
        self._task.cancel()

    def _on_done(self, task: asyncio.Task) -> None:
        if self._logger is None:
            return
        if task.cancelled():
            self._logger.warn("background", f"{self.name} cancelled")
            return
        error = task.exception()
        if error is not None:
            self._logger.log_error("background", f"{self.name} failed", error=error)
        else:
            self._logger.info("background", f"{self.name} finished")


class HealthAggregator(ComponentLogging):
    """Probes domains and keeps their health history."""

    COMPONENT = "health"

    def __init__(
        self,
        registry: DomainRegistry,
        store: HealthStore,
        pipeline: Optional[ProbePipeline] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        live_sink: Optional[LiveUpdateSink] = None,
        config: Optional[ProbeConfig] = None,
        logger: Optional[EventLogger] = None,
    ) -> None:
        """
        Args:
            registry: Source of domains
            store: Health snapshot storage
            pipeline: Probe pipeline (a default one is built from `config`)
            dispatcher: Optional dispatcher for `health.failed` events
            live_sink: Optional real-time observer sink
            config: Probe configuration; also sets the pause between domains
            logger: Optional event logger
        """
        self._config = config or ProbeConfig()
        self._registry = registry
        self._store = store
        self._pipeline = pipeline or ProbePipeline(self._config, logger=logger)
        self._dispatcher = dispatcher
        self._live_sink = live_sink
        self._logger = logger

    def _require_domain(self, domain_id: int) -> Domain:
        domain = self._registry.get_domain(domain_id)
        if domain is None:
            raise NotFoundError(
                code="domain_not_found",
                message=f"Domain {domain_id} not found",
                details={"domain_id": domain_id},
            )
        return domain

    async def check_one(self, domain_id: int) -> HealthSnapshot:
        """
        Probe one domain and store the snapshot.

        Raises:
            NotFoundError: If the domain id is unknown
        """
        domain = self._require_domain(domain_id)
        previous = self._store.latest_snapshot(domain_id)

        result = await self._pipeline.probe(domain.name)
        snapshot = HealthSnapshot.from_probe(domain_id, result)
        snapshot = dataclasses.replace(snapshot, id=self._store.save_snapshot(snapshot))

        self._publish(domain_id, snapshot)

        if snapshot.is_failed() and (previous is None or not previous.is_failed()):
            self._emit_failed(domain, snapshot)

        return snapshot

    async def check_all(self) -> dict[int, HealthSnapshot]:
        """
        Probe every registered domain, one at a time.

        Domains that fail to check are logged and left out of the result.
        """
        results: dict[int, HealthSnapshot] = {}
        domains = self._registry.list_domains()
        self._log_info("Health sweep started", {"total": len(domains)})

        for index, domain in enumerate(domains):
            if index > 0:
                await asyncio.sleep(self._config.inter_domain_delay_seconds)
            try:
                results[domain.id] = await self.check_one(domain.id)
            except Exception as e:
                self._log_error("Health check failed", error=e, data={"domain": domain.name})

        self._log_info("Health sweep finished", {"total": len(domains), "checked": len(results)})
        return results

    def start_check_all(self) -> BackgroundJob[dict[int, HealthSnapshot]]:
        """Run `check_all` detached from the caller."""
        task = asyncio.create_task(self.check_all())
        return BackgroundJob("health sweep", task, self._logger)

    def latest(self, domain_id: int) -> Optional[HealthSnapshot]:
        self._require_domain(domain_id)
        return self._store.latest_snapshot(domain_id)

    def history(self, domain_id: int, limit: int = 100) -> list[HealthSnapshot]:
        self._require_domain(domain_id)
        limit = max(1, min(int(limit), MAX_HISTORY_LIMIT))
        return self._store.snapshot_history(domain_id, limit)

    def _publish(self, domain_id: int, snapshot: HealthSnapshot) -> None:
        if self._live_sink is None:
            return
        try:
            self._live_sink.publish(domain_id, snapshot)
        except Exception as e:
            self._log_error("Live update publish failed", error=e, data={"domain_id": domain_id})

    def _emit_failed(self, domain: Domain, snapshot: HealthSnapshot) -> None:
        self._log_warn("Domain health check failed", {"domain": domain.name})
        if self._dispatcher is None:
            return
        data: dict[str, Any] = {
            "domain": domain.name,
            "domain_id": domain.id,
            "dns_resolved": snapshot.dns_resolved,
            "http_status": snapshot.http_status,
            "tls_valid": snapshot.tls_valid,
            "checked_at": snapshot.checked_at,
        }
        if not snapshot.dns_resolved:
            data["error"] = "DNS resolution failed"
        elif snapshot.http_status is None:
            data["error"] = "HTTP unreachable"
        else:
            data["error"] = f"HTTP status {snapshot.http_status}"
        self._dispatcher.emit_background(WebhookEvent.HEALTH_FAILED, data)
