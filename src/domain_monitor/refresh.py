"""
Bulk refresh orchestrator.

Refreshes the WHOIS registration data of domains one at a time with a fixed
pause between them. Lookups go through the retry manager. When a lookup
keeps failing, the error is stored on the domain and the previously known
registration fields are kept.

Only one sweep runs at a time; a second request while one is in flight is
refused with RefreshInProgressError.
"""

import asyncio
import dataclasses
import time
from typing import Callable, Optional

from .config import RefreshConfig
from .dispatcher import NotificationDispatcher
from .enums import WebhookEvent
from .event_logger import ComponentLogging, EventLogger
from .exceptions import RefreshInProgressError, WhoisLookupError
from .interfaces import DomainRegistry, WhoisLookup
from .models import Domain, RefreshStatus, RefreshSummary, utc_now_iso
from .retry_manager import RetryManager

ProgressHandler = Callable[[RefreshStatus], None]


class RefreshOrchestrator(ComponentLogging):
    """Coordinates WHOIS lookups, retries, persistence and progress reporting."""

    COMPONENT = "refresh"

    def __init__(
        self,
        registry: DomainRegistry,
        whois: WhoisLookup,
        config: Optional[RefreshConfig] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        logger: Optional[EventLogger] = None,
    ) -> None:
        """
        Args:
            registry: Domain storage
            whois: WHOIS lookup implementation
            config: Retry policy, per-lookup timeout and pacing delay
            dispatcher: Optional dispatcher for `refresh.complete`
            logger: Optional event logger
        """
        self._registry = registry
        self._whois = whois
        self._config = config or RefreshConfig()
        self._dispatcher = dispatcher
        self._logger = logger
        self._status = RefreshStatus()
        self._listeners: list[ProgressHandler] = []

    def status(self) -> RefreshStatus:
        """Copy of the current sweep progress."""
        return dataclasses.replace(self._status)

    @property
    def is_refreshing(self) -> bool:
        return self._status.is_refreshing

    def on_progress(self, handler: ProgressHandler) -> Callable[[], None]:
        """Register a progress listener; returns a function that removes it."""
        self._listeners.append(handler)

        def unsubscribe() -> None:
            if handler in self._listeners:
                self._listeners.remove(handler)

        return unsubscribe

    def _emit_progress(self) -> None:
        snapshot = self.status()
        for handler in list(self._listeners):
            try:
                handler(snapshot)
            except Exception as e:
                self._log_error("Progress listener failed", error=e)

    async def refresh_domain(self, domain: Domain) -> Domain:
        """
        Refresh one domain's registration data and persist it.

        Raises:
            WhoisLookupError: When every attempt failed; the error is already stored on the domain
        """
        def on_failure(attempt: int, error: Exception) -> None:
            if attempt < manager.max_attempts:
                self._log_warn(
                    f"Retry {attempt}/{manager.max_attempts - 1} for {domain.name}",
                    {"error": str(error)},
                )

        manager = RetryManager(self._config.retry, on_failure=on_failure)
        outcome = await manager.execute_with_retry(
            lambda: self._whois.lookup(domain.name, self._config.lookup_timeout_seconds)
        )

        if not outcome.success:
            error = outcome.last_error
            message = str(error) if error is not None else "Unknown error"
            domain.error = message
            domain.last_checked = utc_now_iso()
            self._registry.update_domain(domain)
            self._log_error("WHOIS lookup failed", error=error, data={"domain": domain.name, "attempts": outcome.attempts})
            if isinstance(error, WhoisLookupError):
                raise error
            raise WhoisLookupError(
                code="lookup_failed",
                message=message,
                details={"domain": domain.name, "attempts": outcome.attempts},
            ) from error

        data = outcome.result
        new_servers = list(data.name_servers)
        previous = list(domain.name_servers)
        changed = sorted(previous) != sorted(new_servers)

        if changed:
            domain.name_servers_prev = previous
            if previous:
                self._log_warn(
                    "Nameserver change detected",
                    {"domain": domain.name, "previous": previous, "current": new_servers},
                )

        domain.registrar = data.registrar
        domain.created_date = data.created_date
        domain.expiry_date = data.expiry_date
        domain.name_servers = new_servers
        domain.error = None
        domain.last_checked = utc_now_iso()
        self._registry.update_domain(domain)

        self._log_info("Domain refreshed", {"domain": domain.name})
        return domain

    async def refresh_all(self, domains: Optional[list[Domain]] = None) -> RefreshSummary:
        """
        Refresh every domain (or the given ones) sequentially.

        Raises:
            RefreshInProgressError: If a sweep is already running
        """
        if self._status.is_refreshing:
            raise RefreshInProgressError(
                code="refresh_in_progress",
                message="Refresh already in progress",
                details={"started_at": self._status.started_at},
            )

        targets = list(domains) if domains is not None else self._registry.list_domains()
        started = time.perf_counter()
        self._status = RefreshStatus(
            is_refreshing=True,
            total=len(targets),
            completed=0,
            started_at=utc_now_iso(),
        )
        summary = RefreshSummary(total=len(targets), succeeded=0, failed=0)

        try:
            self._log_info("Starting bulk refresh", {"total": len(targets)})
            self._emit_progress()

            for index, domain in enumerate(targets):
                self._status.current_domain = domain.name
                self._emit_progress()

                try:
                    await self.refresh_domain(domain)
                    summary.succeeded += 1
                    self._log_info(f"Refreshed {domain.name} ({index + 1}/{len(targets)})")
                except Exception as e:
                    summary.failed += 1
                    summary.errors[domain.name] = str(e)
                    self._log_error(f"Failed to refresh {domain.name}", error=e)

                self._status.completed = index + 1
                self._emit_progress()

                if index < len(targets) - 1:
                    await asyncio.sleep(self._config.pacing_delay_seconds)
        finally:
            self._status.is_refreshing = False
            self._status.current_domain = None
            self._emit_progress()

        summary.duration_ms = round((time.perf_counter() - started) * 1000, 2)
        self._log_info(
            "Bulk refresh completed",
            {"total": summary.total, "failed": summary.failed, "duration_ms": summary.duration_ms},
        )

        if self._dispatcher is not None and targets:
            self._dispatcher.emit_background(
                WebhookEvent.REFRESH_COMPLETE,
                {"total": summary.total, "completed": summary.succeeded, "failed": summary.failed},
            )
        return summary
