"""
Health probe pipeline.

A probe runs three independent network checks against one domain name:

- DNS: A record lookup through dnspython's async resolver
- HTTP: GET over https, falling back to plain http
- TLS: handshake on port 443 without verification, reading the peer
  certificate's expiry and issuer

The checks run concurrently and each has its own timeout. A network failure
in one check is logged and turned into empty fields; it never raises and
never hides the results of the other two.
"""

from __future__ import annotations

import asyncio
import ssl
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import dns.asyncresolver
import httpx
from cryptography import x509
from cryptography.x509.oid import NameOID

from .config import ProbeConfig
from .domain_validator import normalize_domain
from .event_logger import ComponentLogging, EventLogger
from .models import ProbeResult


@dataclass(frozen=True)
class DnsCheck:
    resolved: bool
    response_time_ms: float
    records: tuple[str, ...] = ()


@dataclass(frozen=True)
class HttpCheck:
    status: Optional[int] = None
    response_time_ms: Optional[float] = None


@dataclass(frozen=True)
class TlsCheck:
    valid: Optional[bool] = None
    expiry: Optional[str] = None
    issuer: Optional[str] = None


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _issuer_name(cert: x509.Certificate) -> Optional[str]:
    for oid in (NameOID.ORGANIZATION_NAME, NameOID.COMMON_NAME):
        attrs = cert.issuer.get_attributes_for_oid(oid)
        if attrs:
            return str(attrs[0].value)
    return None


def parse_certificate(der: bytes, now: Optional[datetime] = None) -> TlsCheck:
    """
    Extract expiry and issuer from a DER-encoded certificate.

    Raises:
        ValueError: If the bytes are not a certificate
    """
    cert = x509.load_der_x509_certificate(der)
    expiry = cert.not_valid_after_utc
    now = now or datetime.now(timezone.utc)
    return TlsCheck(
        valid=expiry > now,
        expiry=expiry.isoformat(),
        issuer=_issuer_name(cert),
    )


class ProbePipeline(ComponentLogging):
    """Runs the DNS, HTTP and TLS checks for a single domain name."""

    COMPONENT = "probes"

    def __init__(
        self,
        config: Optional[ProbeConfig] = None,
        logger: Optional[EventLogger] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            config: Timeouts, TLS port and User-Agent
            logger: Optional event logger
            http_transport: Optional httpx transport, used instead of the network
        """
        self._config = config or ProbeConfig()
        self._logger = logger
        self._http_transport = http_transport

    async def probe(self, name: str) -> ProbeResult:
        """
        Probe one domain.

        Raises:
            ValidationError: If `name` is empty or not a hostname
        """
        domain = normalize_domain(name)

        dns_check, http_check, tls_check = await asyncio.gather(
            self.check_dns(domain),
            self.check_http(domain),
            self.check_tls(domain),
        )

        return ProbeResult(
            dns_resolved=dns_check.resolved,
            dns_response_time_ms=dns_check.response_time_ms,
            dns_records=dns_check.records,
            http_status=http_check.status,
            http_response_time_ms=http_check.response_time_ms,
            tls_valid=tls_check.valid,
            tls_expiry=tls_check.expiry,
            tls_issuer=tls_check.issuer,
        )

    # ------------------------------------------------------------------ DNS

    async def _resolve_a(self, domain: str) -> list[str]:
        resolver = dns.asyncresolver.Resolver()
        resolver.timeout = self._config.dns_timeout_seconds
        resolver.lifetime = self._config.dns_timeout_seconds
        answer = await resolver.resolve(domain, "A")
        return [rr.to_text() for rr in answer]

    async def check_dns(self, domain: str) -> DnsCheck:
        started = time.perf_counter()
        try:
            records = await asyncio.wait_for(
                self._resolve_a(domain),
                timeout=self._config.dns_timeout_seconds,
            )
        except Exception as e:
            self._log_info("DNS check failed", {"domain": domain, "error": f"{type(e).__name__}: {e}"})
            return DnsCheck(resolved=False, response_time_ms=_elapsed_ms(started))

        return DnsCheck(
            resolved=bool(records),
            response_time_ms=_elapsed_ms(started),
            records=tuple(records),
        )

    # ----------------------------------------------------------------- HTTP

    async def _fetch_status(self, client: httpx.AsyncClient, url: str) -> int:
        async with client.stream("GET", url) as response:
            return response.status_code

    async def check_http(self, domain: str) -> HttpCheck:
        started = time.perf_counter()
        async with httpx.AsyncClient(
            transport=self._http_transport,
            timeout=self._config.http_timeout_seconds,
            follow_redirects=False,
            headers={"User-Agent": self._config.user_agent},
        ) as client:
            for scheme in ("https", "http"):
                url = f"{scheme}://{domain}"
                try:
                    status = await asyncio.wait_for(
                        self._fetch_status(client, url),
                        timeout=self._config.http_timeout_seconds,
                    )
                except (httpx.HTTPError, asyncio.TimeoutError) as e:
                    self._log_info("HTTP check failed", {"url": url, "error": f"{type(e).__name__}: {e}"})
                    continue
                return HttpCheck(status=status, response_time_ms=_elapsed_ms(started))

        return HttpCheck()

    # ------------------------------------------------------------------ TLS

    async def _fetch_peer_certificate(self, domain: str) -> Optional[bytes]:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE

        _, writer = await asyncio.open_connection(
            host=domain,
            port=self._config.tls_port,
            ssl=ctx,
            server_hostname=domain,
        )
        try:
            ssl_object = writer.get_extra_info("ssl_object")
            return ssl_object.getpeercert(binary_form=True) if ssl_object else None
        finally:
            # no close_notify exchange; the peer may never answer it
            writer.transport.abort()

    async def check_tls(self, domain: str) -> TlsCheck:
        try:
            der = await asyncio.wait_for(
                self._fetch_peer_certificate(domain),
                timeout=self._config.tls_timeout_seconds,
            )
        except Exception as e:
            self._log_info("TLS check failed", {"domain": domain, "error": f"{type(e).__name__}: {e}"})
            return TlsCheck()

        if not der:
            self._log_info("TLS check found no certificate", {"domain": domain})
            return TlsCheck()

        try:
            return parse_certificate(der)
        except ValueError as e:
            self._log_info("TLS certificate could not be parsed", {"domain": domain, "error": str(e)})
            return TlsCheck()
