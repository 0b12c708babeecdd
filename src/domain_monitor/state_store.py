"""
JSON file state store with HMAC protection.

Reference implementation of the collaborator contracts (domain registry,
health and uptime stores, history retention, subscription store, schedule
configuration store). Every mutation is written straight back to disk
together with an HMAC-SHA256 over the document, so a hand-edited or
corrupted file is detected on load.
"""

import dataclasses
import hashlib
import hmac
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .dispatcher import subscription_matches
from .domain_validator import normalize_domain
from .enums import JobType, UptimeStatus
from .exceptions import NotFoundError, PersistenceError, TamperingError, ValidationError
from .models import DeliveryRecord, Domain, HealthSnapshot, Subscription, UptimeCheck, utc_now_iso


class JsonStateStore:
    """
    Persistent monitor state in a single HMAC-protected JSON file.

    The file is loaded lazily on first access; a missing file starts an
    empty state.
    """

    VERSION = 1
    MAX_DELIVERIES = 1000

    def __init__(self, file_path: Path, hmac_secret: str, autosave: bool = True) -> None:
        """
        Initialize the state store.

        Args:
            file_path: Path to the state file (JSON format)
            hmac_secret: Secret key for HMAC computation
            autosave: Write the file after every mutation
        """
        self._file_path = Path(file_path)
        self._hmac_secret = hmac_secret.encode("utf-8")
        self._autosave = autosave
        self._data: Optional[dict[str, Any]] = None

    @staticmethod
    def _empty() -> dict[str, Any]:
        return {
            "version": JsonStateStore.VERSION,
            "next_ids": {"domain": 1, "snapshot": 1, "subscription": 1, "uptime": 1},
            "domains": [],
            "snapshots": [],
            "uptime_checks": [],
            "subscriptions": [],
            "deliveries": [],
            "schedules": {},
        }

    @property
    def file_path(self) -> Path:
        return self._file_path

    def load(self) -> dict[str, Any]:
        """
        Load state from file and validate HMAC.

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            self._data = self._empty()
            return self._data

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse state file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read state file: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(raw, dict):
            raise PersistenceError(
                code="parse_error",
                message="State file does not contain a JSON object",
                details={"file_path": str(self._file_path)},
            )

        stored_hmac = raw.pop("hmac", "")
        computed_hmac = self.compute_hmac(raw)
        if not self.validate_hmac(stored_hmac, computed_hmac):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - data may have been tampered with",
                details={"file_path": str(self._file_path)},
            )

        data = self._empty()
        data.update(raw)
        self._data = data
        return self._data

    def save(self) -> None:
        """
        Write the state to disk.

        Raises:
            PersistenceError: If the file cannot be written
        """
        data = self._state()
        data["last_updated"] = utc_now_iso()
        output = dict(data)
        output["hmac"] = self.compute_hmac(data)

        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._file_path, "w", encoding="utf-8") as f:
                json.dump(output, f, indent=2, sort_keys=True)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write state file: {e}",
                details={"file_path": str(self._file_path)},
            )

    def compute_hmac(self, data: dict) -> str:
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hmac.new(self._hmac_secret, serialized.encode("utf-8"), hashlib.sha256).hexdigest()

    def validate_hmac(self, stored_hmac: str, computed_hmac: str) -> bool:
        """Constant-time comparison."""
        return hmac.compare_digest(str(stored_hmac), computed_hmac)

    def _state(self) -> dict[str, Any]:
        if self._data is None:
            self.load()
        return self._data

    def _changed(self) -> None:
        if self._autosave:
            self.save()

    def _next_id(self, kind: str) -> int:
        ids = self._state()["next_ids"]
        value = ids.get(kind, 1)
        ids[kind] = value + 1
        return value

    # ------------------------------------------------------------ domains

    @staticmethod
    def _domain_from(raw: dict) -> Domain:
        return Domain(
            id=raw["id"],
            name=raw["name"],
            registrar=raw.get("registrar", ""),
            created_date=raw.get("created_date", ""),
            expiry_date=raw.get("expiry_date", ""),
            name_servers=list(raw.get("name_servers", [])),
            name_servers_prev=list(raw.get("name_servers_prev", [])),
            last_checked=raw.get("last_checked"),
            error=raw.get("error"),
        )

    def add_domain(self, name: str) -> Domain:
        """
        Register a domain.

        Raises:
            ValidationError: If the name is invalid or already registered
        """
        canonical = normalize_domain(name)
        if any(d["name"].lower() == canonical for d in self._state()["domains"]):
            raise ValidationError(
                code="duplicate_domain",
                message=f"Domain {canonical} is already registered",
                details={"domain": canonical},
            )
        domain = Domain(id=self._next_id("domain"), name=canonical)
        self._state()["domains"].append(dataclasses.asdict(domain))
        self._changed()
        return domain

    def remove_domain(self, domain_id: int) -> bool:
        domains = self._state()["domains"]
        remaining = [d for d in domains if d["id"] != domain_id]
        if len(remaining) == len(domains):
            return False
        self._state()["domains"] = remaining
        self._changed()
        return True

    def list_domains(self) -> list[Domain]:
        return [self._domain_from(d) for d in self._state()["domains"]]

    def get_domain(self, domain_id: int) -> Optional[Domain]:
        for raw in self._state()["domains"]:
            if raw["id"] == domain_id:
                return self._domain_from(raw)
        return None

    def find_domain(self, name: str) -> Optional[Domain]:
        wanted = name.strip().rstrip(".").lower()
        for raw in self._state()["domains"]:
            if raw["name"].lower() == wanted:
                return self._domain_from(raw)
        return None

    def update_domain(self, domain: Domain) -> None:
        domains = self._state()["domains"]
        for index, raw in enumerate(domains):
            if raw["id"] == domain.id:
                domains[index] = dataclasses.asdict(domain)
                self._changed()
                return
        raise NotFoundError(
            code="domain_not_found",
            message=f"Domain {domain.id} not found",
            details={"domain_id": domain.id},
        )

    # ------------------------------------------------------------ health

    @staticmethod
    def _snapshot_from(raw: dict) -> HealthSnapshot:
        return HealthSnapshot(
            domain_id=raw["domain_id"],
            dns_resolved=raw["dns_resolved"],
            dns_response_time_ms=raw.get("dns_response_time_ms"),
            dns_records=tuple(raw.get("dns_records", [])),
            http_status=raw.get("http_status"),
            http_response_time_ms=raw.get("http_response_time_ms"),
            tls_valid=raw.get("tls_valid"),
            tls_expiry=raw.get("tls_expiry"),
            tls_issuer=raw.get("tls_issuer"),
            checked_at=raw["checked_at"],
            id=raw.get("id"),
        )

    def save_snapshot(self, snapshot: HealthSnapshot) -> int:
        snapshot_id = self._next_id("snapshot")
        stored = dataclasses.replace(snapshot, id=snapshot_id)
        self._state()["snapshots"].append(stored.to_dict())
        self._changed()
        return snapshot_id

    def latest_snapshot(self, domain_id: int) -> Optional[HealthSnapshot]:
        history = self.snapshot_history(domain_id, limit=1)
        return history[0] if history else None

    def snapshot_history(self, domain_id: int, limit: int = 100) -> list[HealthSnapshot]:
        """Snapshots of one domain, newest first."""
        matching = [s for s in self._state()["snapshots"] if s["domain_id"] == domain_id]
        matching.sort(key=lambda s: s["id"], reverse=True)
        return [self._snapshot_from(s) for s in matching[:limit]]

    # ------------------------------------------------------------ uptime

    @staticmethod
    def _uptime_check_from(raw: dict) -> UptimeCheck:
        return UptimeCheck(
            domain_id=raw["domain_id"],
            status=UptimeStatus(raw["status"]),
            response_time_ms=raw.get("response_time_ms"),
            status_code=raw.get("status_code"),
            error=raw.get("error"),
            checked_at=raw["checked_at"],
            id=raw.get("id"),
        )

    def save_uptime_check(self, check: UptimeCheck) -> int:
        check_id = self._next_id("uptime")
        stored = dataclasses.replace(check, id=check_id)
        self._state()["uptime_checks"].append(stored.to_dict())
        self._changed()
        return check_id

    def uptime_history(self, domain_id: int, limit: int = 100) -> list[UptimeCheck]:
        """Uptime checks of one domain, newest first."""
        matching = [c for c in self._state()["uptime_checks"] if c["domain_id"] == domain_id]
        matching.sort(key=lambda c: c["id"], reverse=True)
        return [self._uptime_check_from(c) for c in matching[:limit]]

    # --------------------------------------------------------- retention

    @staticmethod
    def _checked_at(raw: dict) -> datetime:
        checked_at = datetime.fromisoformat(raw["checked_at"])
        if checked_at.tzinfo is None:
            checked_at = checked_at.replace(tzinfo=timezone.utc)
        return checked_at

    def _prune(self, key: str, older_than: datetime, keep_per_domain: Optional[int]) -> int:
        rows = self._state()[key]
        if older_than.tzinfo is None:
            older_than = older_than.replace(tzinfo=timezone.utc)

        kept: list[dict] = []
        per_domain: dict[int, int] = {}
        for raw in sorted(rows, key=lambda r: r["id"], reverse=True):
            if self._checked_at(raw) < older_than:
                continue
            seen = per_domain.get(raw["domain_id"], 0)
            if keep_per_domain is not None and seen >= keep_per_domain:
                continue
            per_domain[raw["domain_id"]] = seen + 1
            kept.append(raw)

        deleted = len(rows) - len(kept)
        if deleted:
            kept.reverse()
            self._state()[key] = kept
            self._changed()
        return deleted

    def prune_snapshots(self, older_than: datetime, keep_per_domain: Optional[int] = None) -> int:
        """Drop snapshots checked before `older_than` and all but the newest `keep_per_domain` per domain."""
        return self._prune("snapshots", older_than, keep_per_domain)

    def prune_uptime_checks(self, older_than: datetime, keep_per_domain: Optional[int] = None) -> int:
        return self._prune("uptime_checks", older_than, keep_per_domain)

    # ------------------------------------------------------ subscriptions

    @staticmethod
    def _subscription_from(raw: dict) -> Subscription:
        return Subscription(
            id=raw["id"],
            url=raw["url"],
            secret=raw["secret"],
            events=set(raw.get("events", [])),
            enabled=raw.get("enabled", True),
            name=raw.get("name", ""),
            failure_count=raw.get("failure_count", 0),
            last_status=raw.get("last_status"),
            last_triggered=raw.get("last_triggered"),
        )

    def add_subscription(
        self,
        url: str,
        secret: str,
        events: set[str],
        name: str = "",
        enabled: bool = True,
    ) -> Subscription:
        if not events:
            raise ValidationError(
                code="no_events",
                message="A subscription needs at least one event",
                details={"url": url},
            )
        subscription = Subscription(
            id=self._next_id("subscription"),
            url=url,
            secret=secret,
            events=set(events),
            enabled=enabled,
            name=name,
        )
        raw = dataclasses.asdict(subscription)
        raw["events"] = sorted(subscription.events)
        self._state()["subscriptions"].append(raw)
        self._changed()
        return subscription

    def list_subscriptions(self) -> list[Subscription]:
        return [self._subscription_from(s) for s in self._state()["subscriptions"]]

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        for raw in self._state()["subscriptions"]:
            if raw["id"] == subscription_id:
                return self._subscription_from(raw)
        return None

    def remove_subscription(self, subscription_id: int) -> bool:
        subscriptions = self._state()["subscriptions"]
        remaining = [s for s in subscriptions if s["id"] != subscription_id]
        if len(remaining) == len(subscriptions):
            return False
        self._state()["subscriptions"] = remaining
        self._changed()
        return True

    def enabled_subscriptions_for(self, event: str) -> list[Subscription]:
        return [
            self._subscription_from(s)
            for s in self._state()["subscriptions"]
            if s.get("enabled", True) and subscription_matches(s.get("events", []), event)
        ]

    def record_delivery(self, record: DeliveryRecord) -> None:
        deliveries = self._state()["deliveries"]
        deliveries.append(dataclasses.asdict(record))
        if len(deliveries) > self.MAX_DELIVERIES:
            del deliveries[: len(deliveries) - self.MAX_DELIVERIES]
        self._changed()

    def deliveries(self, subscription_id: Optional[int] = None) -> list[DeliveryRecord]:
        return [
            DeliveryRecord(**raw)
            for raw in self._state()["deliveries"]
            if subscription_id is None or raw["subscription_id"] == subscription_id
        ]

    def update_subscription_status(
        self,
        subscription_id: int,
        status: Optional[int],
        failure_count: Optional[int] = None,
    ) -> None:
        for raw in self._state()["subscriptions"]:
            if raw["id"] == subscription_id:
                raw["last_status"] = status
                raw["last_triggered"] = utc_now_iso()
                if failure_count is not None:
                    raw["failure_count"] = failure_count
                self._changed()
                return
        raise NotFoundError(
            code="subscription_not_found",
            message=f"Subscription {subscription_id} not found",
            details={"subscription_id": subscription_id},
        )

    # ---------------------------------------------------------- schedules

    def get_schedule(self, job_type: JobType) -> Optional[str]:
        return self._state()["schedules"].get(job_type.value)

    def set_schedule(self, job_type: JobType, expression: str) -> None:
        self._state()["schedules"][job_type.value] = expression
        self._changed()
