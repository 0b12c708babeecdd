"""
Property-based tests for the probe pipeline.

DNS and the TLS handshake are replaced by a pipeline subclass; HTTP goes
through httpx.MockTransport. The timeout tests run against slow local
servers on 127.0.0.1.
"""

import asyncio
import ssl
import tempfile
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import dns.resolver
import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_monitor.config import ProbeConfig
from domain_monitor.exceptions import ValidationError
from domain_monitor.probes import ProbePipeline, parse_certificate


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.new_event_loop().run_until_complete(coro)


SIGNING_KEY = ec.generate_private_key(ec.SECP256R1())


def make_certificate(expiry: datetime, issuer_org: Optional[str] = "Test CA", issuer_cn: str = "Test CA R1") -> bytes:
    """DER bytes of a self-signed certificate with the given expiry and issuer."""
    issuer_attrs = []
    if issuer_org is not None:
        issuer_attrs.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, issuer_org))
    issuer_attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn))

    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example.com")]))
        .issuer_name(x509.Name(issuer_attrs))
        .public_key(SIGNING_KEY.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(expiry - timedelta(days=400))
        .not_valid_after(expiry)
        .sign(SIGNING_KEY, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


class StubbedPipeline(ProbePipeline):
    """Pipeline with scripted DNS answers and peer certificates."""

    def __init__(
        self,
        records: Optional[list[str]] = None,
        dns_error: Optional[Exception] = None,
        dns_delay: float = 0.0,
        certificate: Optional[bytes] = None,
        tls_error: Optional[Exception] = None,
        http_handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
        config: Optional[ProbeConfig] = None,
    ) -> None:
        super().__init__(
            config or ProbeConfig(dns_timeout_seconds=0.5, http_timeout_seconds=0.5, tls_timeout_seconds=0.5),
            http_transport=httpx.MockTransport(http_handler or unreachable),
        )
        self._records = records or []
        self._dns_error = dns_error
        self._dns_delay = dns_delay
        self._certificate = certificate
        self._tls_error = tls_error
        self.resolved_names: list[str] = []

    async def _resolve_a(self, domain: str) -> list[str]:
        self.resolved_names.append(domain)
        if self._dns_delay:
            await asyncio.sleep(self._dns_delay)
        if self._dns_error is not None:
            raise self._dns_error
        return list(self._records)

    async def _fetch_peer_certificate(self, domain: str) -> Optional[bytes]:
        if self._tls_error is not None:
            raise self._tls_error
        return self._certificate


def unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def status_handler(status: int) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status)

    return handler


ipv4_records = st.lists(
    st.ip_addresses(v=4).map(str),
    min_size=1,
    max_size=4,
    unique=True,
)


class TestProbeResultProperty:
    """
    Property-based tests for the combined probe result.
    """

    def test_unresolvable_domain_gives_empty_result(self) -> None:
        """A reserved .invalid name: no DNS, no HTTP, no TLS, and no exception."""
        pipeline = StubbedPipeline(
            dns_error=dns.resolver.NXDOMAIN(),
            tls_error=OSError("Name or service not known"),
        )

        result = run_async(pipeline.probe("example.invalid"))

        assert result.dns_resolved is False
        assert result.dns_records == ()
        assert result.http_status is None
        assert result.http_response_time_ms is None
        assert result.tls_valid is None
        assert result.tls_expiry is None
        assert result.tls_issuer is None

    @given(records=ipv4_records, status=st.sampled_from([200, 204, 301, 404, 500, 503]))
    @settings(max_examples=50)
    def test_dns_and_http_reported_together(self, records: list[str], status: int) -> None:
        """
        Property 1: DNS records and the HTTP status both reach the result unchanged.
        """
        pipeline = StubbedPipeline(records=records, http_handler=status_handler(status))

        result = run_async(pipeline.probe("example.com"))

        assert result.dns_resolved is True
        assert result.dns_records == tuple(records)
        assert result.dns_response_time_ms is not None and result.dns_response_time_ms >= 0
        assert result.http_status == status
        assert result.http_response_time_ms is not None

    def test_dns_failure_does_not_hide_http(self) -> None:
        pipeline = StubbedPipeline(
            dns_error=dns.resolver.NoNameservers(),
            http_handler=status_handler(200),
        )

        result = run_async(pipeline.probe("example.com"))

        assert result.dns_resolved is False
        assert result.dns_records == ()
        assert result.http_status == 200

    def test_dns_timeout_is_unresolved(self) -> None:
        pipeline = StubbedPipeline(
            records=["93.184.216.34"],
            dns_delay=1.0,
            http_handler=status_handler(200),
            config=ProbeConfig(dns_timeout_seconds=0.05, http_timeout_seconds=0.5, tls_timeout_seconds=0.5),
        )

        result = run_async(pipeline.probe("example.com"))

        assert result.dns_resolved is False
        assert result.http_status == 200

    def test_empty_answer_is_unresolved(self) -> None:
        pipeline = StubbedPipeline(records=[], http_handler=status_handler(200))
        result = run_async(pipeline.probe("example.com"))
        assert result.dns_resolved is False

    def test_tls_failure_does_not_hide_other_checks(self) -> None:
        pipeline = StubbedPipeline(
            records=["93.184.216.34"],
            http_handler=status_handler(200),
            tls_error=ConnectionResetError("reset"),
        )

        result = run_async(pipeline.probe("example.com"))

        assert result.dns_resolved is True
        assert result.http_status == 200
        assert result.tls_valid is None

    def test_name_is_normalized_before_probing(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(f"{request.url.scheme}://{request.url.host}")
            return httpx.Response(200)

        pipeline = StubbedPipeline(records=["93.184.216.34"], http_handler=handler)
        run_async(pipeline.probe("  Example.COM. "))

        assert pipeline.resolved_names == ["example.com"]
        assert seen == ["https://example.com"]

    @given(name=st.sampled_from(["", "   ", "localhost", "exa mple.com", "under_score.com", "-bad.com"]))
    @settings(max_examples=20)
    def test_invalid_names_raise(self, name: str) -> None:
        """
        Property 2: Names that are not hostnames are rejected before any network call.
        """
        pipeline = StubbedPipeline(records=["93.184.216.34"])
        try:
            run_async(pipeline.probe(name))
            assert False, "Expected ValidationError"
        except ValidationError:
            pass
        assert pipeline.resolved_names == []


class TestHttpCheckProperty:
    """
    Property-based tests for the https-then-http fallback.
    """

    @given(status=st.sampled_from([200, 301, 302, 403, 500]))
    @settings(max_examples=25)
    def test_falls_back_to_plain_http(self, status: int) -> None:
        """
        Property 3: When https is unreachable the plain http status is reported.
        """
        schemes: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            schemes.append(request.url.scheme)
            if request.url.scheme == "https":
                raise httpx.ConnectError("tls handshake failed", request=request)
            return httpx.Response(status)

        pipeline = StubbedPipeline(records=["93.184.216.34"], http_handler=handler)
        check = run_async(pipeline.check_http("example.com"))

        assert schemes == ["https", "http"]
        assert check.status == status
        assert check.response_time_ms is not None

    def test_https_success_skips_http(self) -> None:
        schemes: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            schemes.append(request.url.scheme)
            return httpx.Response(200)

        pipeline = StubbedPipeline(http_handler=handler)
        check = run_async(pipeline.check_http("example.com"))

        assert schemes == ["https"]
        assert check.status == 200

    def test_redirects_are_not_followed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(301, headers={"Location": "https://www.example.com/"})

        pipeline = StubbedPipeline(http_handler=handler)
        assert run_async(pipeline.check_http("example.com")).status == 301

    def test_user_agent_sent(self) -> None:
        agents: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            agents.append(request.headers["User-Agent"])
            return httpx.Response(200)

        pipeline = StubbedPipeline(http_handler=handler)
        run_async(pipeline.check_http("example.com"))

        assert agents == [ProbeConfig().user_agent]


class TestTlsCheckProperty:
    """
    Property-based tests for certificate inspection.
    """

    @given(days=st.integers(min_value=-400, max_value=800))
    @settings(max_examples=30, deadline=None)
    def test_validity_follows_expiry(self, days: int) -> None:
        """
        Property 4: A certificate is valid exactly when its expiry is in the future.
        """
        now = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
        expiry = now + timedelta(days=days, minutes=30)

        check = parse_certificate(make_certificate(expiry), now=now)

        assert check.valid is (expiry > now)
        assert check.expiry == expiry.isoformat()

    def test_issuer_prefers_organization(self) -> None:
        expiry = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=60)
        assert parse_certificate(make_certificate(expiry)).issuer == "Test CA"
        assert parse_certificate(make_certificate(expiry, issuer_org=None, issuer_cn="R3")).issuer == "R3"

    def test_garbage_bytes_raise_value_error(self) -> None:
        try:
            parse_certificate(b"not a certificate")
            assert False, "Expected ValueError"
        except ValueError:
            pass

    def test_probe_reports_certificate(self) -> None:
        expiry = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=90)
        pipeline = StubbedPipeline(
            records=["93.184.216.34"],
            http_handler=status_handler(200),
            certificate=make_certificate(expiry, issuer_org="Let's Encrypt"),
        )

        result = run_async(pipeline.probe("example.com"))

        assert result.tls_valid is True
        assert result.tls_expiry == expiry.isoformat()
        assert result.tls_issuer == "Let's Encrypt"

    def test_missing_or_unparseable_certificate_is_undetermined(self) -> None:
        for certificate in (None, b"\x30\x03\x02\x01\x00"):
            pipeline = StubbedPipeline(certificate=certificate)
            check = run_async(pipeline.check_tls("example.com"))
            assert check.valid is None
            assert check.expiry is None


def write_server_credentials() -> tuple[Path, Path]:
    """PEM certificate and key files for a local TLS listener."""
    expiry = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=30)
    cert = x509.load_der_x509_certificate(make_certificate(expiry))
    directory = Path(tempfile.mkdtemp(prefix="domain-monitor-tls-"))
    cert_path = directory / "cert.pem"
    key_path = directory / "key.pem"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(SIGNING_KEY.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))
    return cert_path, key_path


async def trickling_http_server(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, payload: bytes) -> None:
    """Answers plain GET requests one byte at a time; anything else is hung up on."""
    try:
        if await reader.read(4) != b"GET ":
            return
        await reader.readuntil(b"\r\n\r\n")
        for byte in payload:
            writer.write(bytes([byte]))
            await writer.drain()
            await asyncio.sleep(0.3)
    except (OSError, asyncio.IncompleteReadError):
        pass
    finally:
        writer.transport.abort()


async def silent_server(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Accepts the connection, then says nothing until the client goes away."""
    try:
        await reader.read()
    except OSError:
        pass
    finally:
        writer.transport.abort()


async def timed_against_server(handler, check, ssl_context: Optional[ssl.SSLContext] = None):
    server = await asyncio.start_server(handler, "127.0.0.1", 0, ssl=ssl_context)
    port = server.sockets[0].getsockname()[1]
    try:
        started = time.monotonic()
        result = await check(port)
        return result, time.monotonic() - started
    finally:
        server.close()


class TestCheckTimeoutProperty:
    """
    Tests that every check finishes within its timeout against slow peers.
    """

    def test_trickled_body_does_not_hold_http_check(self) -> None:
        payload = b"HTTP/1.1 200 OK\r\nContent-Length: 40\r\n\r\n" + b"x" * 40
        headers_end = payload.index(b"\r\n\r\n") + 4

        async def headers_then_trickle(reader, writer):
            try:
                if await reader.read(4) != b"GET ":
                    return
                await reader.readuntil(b"\r\n\r\n")
                writer.write(payload[:headers_end])
                await writer.drain()
                for byte in payload[headers_end:]:
                    await asyncio.sleep(0.5)
                    writer.write(bytes([byte]))
                    await writer.drain()
            except (OSError, asyncio.IncompleteReadError):
                pass
            finally:
                writer.transport.abort()

        pipeline = ProbePipeline(ProbeConfig(http_timeout_seconds=1.0))
        check, elapsed = run_async(timed_against_server(
            headers_then_trickle,
            lambda port: pipeline.check_http(f"127.0.0.1:{port}"),
        ))

        assert check.status == 200
        assert elapsed < 1.5

    def test_trickled_headers_hit_the_attempt_timeout(self) -> None:
        payload = b"HTTP/1.1 200 OK\r\n" + b"X-Padding: " + b"y" * 60 + b"\r\n\r\n"
        pipeline = ProbePipeline(ProbeConfig(http_timeout_seconds=1.0))

        check, elapsed = run_async(timed_against_server(
            lambda reader, writer: trickling_http_server(reader, writer, payload),
            lambda port: pipeline.check_http(f"127.0.0.1:{port}"),
        ))

        assert check.status is None
        assert check.response_time_ms is None
        # https is refused at once; the http attempt is cut off after one timeout
        assert 0.9 <= elapsed < 2.5

    def test_silent_tls_peer_does_not_hold_tls_check(self) -> None:
        cert_path, key_path = write_server_credentials()
        server_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        server_context.load_cert_chain(cert_path, key_path)

        async def check(port: int):
            pipeline = ProbePipeline(ProbeConfig(tls_timeout_seconds=1.0, tls_port=port))
            return await pipeline.check_tls("127.0.0.1")

        result, elapsed = run_async(timed_against_server(silent_server, check, server_context))

        assert result.valid is True
        assert result.issuer == "Test CA"
        assert elapsed < 1.5

    def test_stalled_handshake_hits_the_tls_timeout(self) -> None:
        async def check(port: int):
            pipeline = ProbePipeline(ProbeConfig(tls_timeout_seconds=1.0, tls_port=port))
            return await pipeline.check_tls("127.0.0.1")

        result, elapsed = run_async(timed_against_server(silent_server, check))

        assert result.valid is None
        assert result.expiry is None
        assert 0.9 <= elapsed < 1.5
