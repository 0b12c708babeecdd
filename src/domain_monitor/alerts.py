"""
Expiry alert sweep: the body of the daily `alert-sweep` job.
"""

import math
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import AlertConfig
from .dispatcher import NotificationDispatcher
from .enums import WebhookEvent
from .event_logger import ComponentLogging, EventLogger
from .interfaces import DomainRegistry
from .models import Domain, ExpiringDomain

SECONDS_PER_DAY = 86400

# Formats seen in registry WHOIS output besides ISO 8601
EXPIRY_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y.%m.%d %H:%M:%S",
    "%Y.%m.%d",
    "%d-%b-%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
)


def parse_expiry(value: str) -> Optional[datetime]:
    """Parse a WHOIS expiry date into an aware UTC datetime, or None."""
    text = (value or "").strip()
    if not text:
        return None

    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in EXPIRY_FORMATS:
            try:
                parsed = datetime.strptime(text.split(" (")[0], fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def days_until(expiry: datetime, now: datetime) -> int:
    """Whole days left, rounded up: anything under 24h still counts as 1."""
    return math.ceil((expiry - now).total_seconds() / SECONDS_PER_DAY)


class ExpiryAlertSweep(ComponentLogging):
    """Emits `domain.expiring` and `domain.expired` for registered domains."""

    COMPONENT = "alerts"

    def __init__(
        self,
        registry: DomainRegistry,
        dispatcher: Optional[NotificationDispatcher] = None,
        config: Optional[AlertConfig] = None,
        logger: Optional[EventLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._config = config or AlertConfig()
        self._logger = logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def threshold_for(self, days: int) -> Optional[int]:
        """Smallest configured threshold that `days` falls within."""
        eligible = [d for d in self._config.alert_days if days <= d]
        return min(eligible) if eligible else None

    async def run(self) -> list[ExpiringDomain]:
        """
        Check every domain's expiry date.

        Returns:
            Domains that are expiring inside the alert window or already expired
        """
        now = self._clock()
        found: list[ExpiringDomain] = []

        for domain in self._registry.list_domains():
            if not domain.expiry_date:
                continue
            expiry = parse_expiry(domain.expiry_date)
            if expiry is None:
                self._log_warn(
                    "Unparseable expiry date",
                    {"domain": domain.name, "expiry_date": domain.expiry_date},
                )
                continue

            days = days_until(expiry, now)
            if days <= 0:
                found.append(self._expiring(domain, days))
                self._emit(WebhookEvent.DOMAIN_EXPIRED, {
                    "domain": domain.name,
                    "days": days,
                    "expiry_date": domain.expiry_date,
                    "registrar": domain.registrar,
                })
                continue

            threshold = self.threshold_for(days)
            if threshold is None:
                continue
            found.append(self._expiring(domain, days))
            self._emit(WebhookEvent.DOMAIN_EXPIRING, {
                "domain": domain.name,
                "days": days,
                "threshold": threshold,
                "expiry_date": domain.expiry_date,
                "registrar": domain.registrar,
            })

        self._log_info("Expiry alert sweep finished", {"alerts": len(found)})
        return found

    def _expiring(self, domain: Domain, days: int) -> ExpiringDomain:
        return ExpiringDomain(
            domain_id=domain.id,
            domain=domain.name,
            expiry_date=domain.expiry_date,
            days=days,
            registrar=domain.registrar,
        )

    def _emit(self, event: WebhookEvent, data: dict) -> None:
        if self._dispatcher is not None:
            self._dispatcher.emit_background(event, data)
