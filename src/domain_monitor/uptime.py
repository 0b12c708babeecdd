"""
Uptime monitor.

Runs a lightweight up/down check (GET over https, falling back to plain http)
against every registered domain and keeps the results in the uptime store.
A 2xx or 3xx answer is "up"; anything else, including no answer within the
timeout, is "down".

`uptime.down` is raised once per outage, when a domain's run of consecutive
failed checks reaches the alert threshold. `uptime.recovered` follows the
first successful check after such an outage.
"""

import asyncio
import dataclasses
import time
from typing import Optional

import httpx

from .config import UptimeConfig
from .dispatcher import NotificationDispatcher
from .enums import UptimeStatus, WebhookEvent
from .event_logger import ComponentLogging, EventLogger
from .exceptions import NotFoundError
from .interfaces import DomainRegistry, UptimeStore
from .models import Domain, UptimeCheck, UptimeStats, utc_now_iso

MAX_HISTORY_LIMIT = 1000


class UptimeMonitor(ComponentLogging):
    """Up/down checks, outage alerts and availability figures per domain."""

    COMPONENT = "uptime"

    def __init__(
        self,
        registry: DomainRegistry,
        store: UptimeStore,
        dispatcher: Optional[NotificationDispatcher] = None,
        config: Optional[UptimeConfig] = None,
        logger: Optional[EventLogger] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            registry: Source of domains
            store: Uptime check storage
            dispatcher: Optional dispatcher for uptime.down / uptime.recovered
            config: Timeout, alert threshold and pacing
            logger: Optional event logger
            http_transport: Optional httpx transport, used instead of the network
        """
        self._registry = registry
        self._store = store
        self._dispatcher = dispatcher
        self._config = config or UptimeConfig()
        self._logger = logger
        self._http_transport = http_transport

    def _require_domain(self, domain_id: int) -> Domain:
        domain = self._registry.get_domain(domain_id)
        if domain is None:
            raise NotFoundError(
                code="domain_not_found",
                message=f"Domain {domain_id} not found",
                details={"domain_id": domain_id},
            )
        return domain

    async def _status_of(self, client: httpx.AsyncClient, url: str) -> int:
        async with client.stream("GET", url) as response:
            return response.status_code

    async def _request(self, name: str) -> UptimeCheck:
        started = time.perf_counter()
        error = "unreachable"
        async with httpx.AsyncClient(
            transport=self._http_transport,
            timeout=self._config.timeout_seconds,
            follow_redirects=False,
            headers={"User-Agent": self._config.user_agent},
        ) as client:
            for scheme in ("https", "http"):
                url = f"{scheme}://{name}"
                try:
                    status_code = await asyncio.wait_for(
                        self._status_of(client, url),
                        timeout=self._config.timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    error = "Connection timeout"
                    continue
                except httpx.HTTPError as e:
                    error = str(e) or type(e).__name__
                    continue

                response_time_ms = round((time.perf_counter() - started) * 1000, 2)
                if 200 <= status_code < 400:
                    return UptimeCheck(0, UptimeStatus.UP, response_time_ms, status_code, None, utc_now_iso())
                return UptimeCheck(
                    0, UptimeStatus.DOWN, response_time_ms, status_code, f"HTTP {status_code}", utc_now_iso()
                )

        return UptimeCheck(0, UptimeStatus.DOWN, None, None, error, utc_now_iso())

    def consecutive_failures(self, domain_id: int) -> int:
        """Length of the current run of failed checks, newest first."""
        failures = 0
        for check in self._store.uptime_history(domain_id, MAX_HISTORY_LIMIT):
            if check.is_up:
                break
            failures += 1
        return failures

    async def check(self, domain_id: int) -> UptimeCheck:
        """
        Check one domain, store the result and raise outage transitions.

        Raises:
            NotFoundError: If the domain id is unknown
        """
        domain = self._require_domain(domain_id)
        previous_failures = self.consecutive_failures(domain_id)

        self._log_debug("Performing uptime check", {"domain": domain.name})
        check = dataclasses.replace(await self._request(domain.name), domain_id=domain_id)
        check = dataclasses.replace(check, id=self._store.save_uptime_check(check))

        threshold = max(1, self._config.alert_threshold)
        if check.is_up:
            if previous_failures >= threshold:
                self._log_info("Domain recovered", {"domain": domain.name, "failures": previous_failures})
                self._emit(WebhookEvent.UPTIME_RECOVERED, domain, check, previous_failures)
        elif previous_failures + 1 == threshold:
            self._log_warn(
                "Domain down alert threshold reached",
                {"domain": domain.name, "consecutive_failures": threshold, "threshold": threshold},
            )
            self._emit(WebhookEvent.UPTIME_DOWN, domain, check, threshold)

        return check

    async def check_all(self) -> dict[int, UptimeCheck]:
        """Check every registered domain, one at a time."""
        results: dict[int, UptimeCheck] = {}
        domains = self._registry.list_domains()
        self._log_info("Starting uptime check for all domains", {"count": len(domains)})

        for index, domain in enumerate(domains):
            if index > 0:
                await asyncio.sleep(self._config.inter_domain_delay_seconds)
            try:
                results[domain.id] = await self.check(domain.id)
            except Exception as e:
                self._log_error("Uptime check failed", error=e, data={"domain": domain.name})

        self._log_info("Uptime check completed", {"count": len(domains), "checked": len(results)})
        return results

    def history(self, domain_id: int, limit: int = 100) -> list[UptimeCheck]:
        self._require_domain(domain_id)
        limit = max(1, min(int(limit), MAX_HISTORY_LIMIT))
        return self._store.uptime_history(domain_id, limit)

    def stats(self) -> list[UptimeStats]:
        """Availability over the stored checks of every registered domain."""
        result = []
        for domain in self._registry.list_domains():
            checks = self._store.uptime_history(domain.id, MAX_HISTORY_LIMIT)
            stats = UptimeStats(domain_id=domain.id, domain=domain.name)
            if checks:
                up_times = [c.response_time_ms for c in checks if c.is_up and c.response_time_ms is not None]
                stats.total_checks = len(checks)
                stats.successful_checks = sum(1 for c in checks if c.is_up)
                stats.uptime_percentage = round(stats.successful_checks / stats.total_checks * 100, 2)
                stats.avg_response_time_ms = round(sum(up_times) / len(up_times)) if up_times else 0.0
                stats.last_check = checks[0].checked_at
                stats.current_status = checks[0].status
                stats.consecutive_failures = self.consecutive_failures(domain.id)
            result.append(stats)
        return result

    def _emit(self, event: WebhookEvent, domain: Domain, check: UptimeCheck, failures: int) -> None:
        if self._dispatcher is None:
            return
        self._dispatcher.emit_background(event, {
            "domain": domain.name,
            "domain_id": domain.id,
            "failures": failures,
            "threshold": self._config.alert_threshold,
            "status_code": check.status_code,
            "error": check.error,
            "checked_at": check.checked_at,
        })
