"""
Port-43 WHOIS client.

Queries the registry WHOIS server for a domain and extracts registrar,
creation date, expiry date and name servers. Any transport problem, an
explicit "no match" answer, or a response without registration fields
raises WhoisLookupError.
"""

import asyncio
import re
import socket
from datetime import datetime, timedelta, timezone
from typing import Optional

from .exceptions import WhoisLookupError
from .models import RegistrationData


class WhoisClient:
    """WHOIS lookup over TCP port 43."""

    WHOIS_SERVERS: dict[str, str] = {
        "com": "whois.verisign-grs.com",
        "net": "whois.verisign-grs.com",
        "org": "whois.pir.org",
        "info": "whois.afilias.net",
        "biz": "whois.biz",
        "io": "whois.nic.io",
        "co": "whois.nic.co",
        "dev": "whois.nic.google",
        "app": "whois.nic.google",
        "de": "whois.denic.de",
        "eu": "whois.eu",
        "uk": "whois.nic.uk",
        "nl": "whois.domain-registry.nl",
    }

    IANA_SERVER = "whois.iana.org"

    NO_MATCH_SIGNALS = (
        "no match for",
        "not found",
        "no data found",
        "status: free",
        "status: available",
        "no entries found",
    )

    REGISTRAR_KEYS = ("registrar", "sponsoring registrar", "registrar name")
    CREATED_KEYS = ("creation date", "created", "created on", "registered on", "domain registration date")
    EXPIRY_KEYS = (
        "registry expiry date",
        "registrar registration expiration date",
        "expiration date",
        "expiry date",
        "expires on",
        "paid-till",
    )
    NAME_SERVER_KEYS = ("name server", "nserver", "name servers")

    _LINE = re.compile(r"^\s*([A-Za-z][A-Za-z \-/]*?)\s*:\s*(.*?)\s*$")

    def __init__(
        self,
        custom_servers: Optional[dict[str, str]] = None,
        simulation_mode: bool = False,
    ) -> None:
        """
        Initialize the WHOIS client.

        Args:
            custom_servers: Optional WHOIS servers per TLD, merged over the defaults
            simulation_mode: If True, no real network requests are made
        """
        self._servers = dict(self.WHOIS_SERVERS)
        if custom_servers:
            self._servers.update({k.lower(): v for k, v in custom_servers.items()})
        self._simulation_mode = simulation_mode

    async def lookup(self, domain_name: str, timeout: float) -> RegistrationData:
        """
        Look up registration data for a domain.

        Raises:
            WhoisLookupError: On timeout, network error, no match or unparseable response
        """
        domain = domain_name.strip().lower()
        if self._simulation_mode:
            return self._simulated(domain)

        tld = domain.rsplit(".", 1)[-1]
        try:
            server = self._servers.get(tld) or await self._refer(tld, timeout)
            raw = await self._query(domain, server, timeout)
        except asyncio.TimeoutError as e:
            raise WhoisLookupError(
                code="timeout",
                message=f"WHOIS query timed out after {timeout}s",
                details={"domain": domain},
            ) from e
        except OSError as e:
            raise WhoisLookupError(
                code="network_error",
                message=f"Socket error: {e}",
                details={"domain": domain},
            ) from e

        return self.parse_response(domain, raw)

    async def _refer(self, tld: str, timeout: float) -> str:
        raw = await self._query(tld, self.IANA_SERVER, timeout)
        for line in raw.splitlines():
            key, _, value = line.partition(":")
            if key.strip().lower() in ("refer", "whois") and value.strip():
                server = value.strip()
                self._servers[tld] = server
                return server
        raise WhoisLookupError(
            code="no_server",
            message=f"No WHOIS server known for TLD: {tld}",
            details={"tld": tld},
        )

    async def _query(self, query: str, server: str, timeout: float) -> str:
        loop = asyncio.get_running_loop()

        def _sync_query() -> str:
            with socket.create_connection((server, 43), timeout=timeout) as sock:
                sock.sendall(f"{query}\r\n".encode("utf-8"))
                response_parts: list[bytes] = []
                while True:
                    data = sock.recv(4096)
                    if not data:
                        break
                    response_parts.append(data)
                return b"".join(response_parts).decode("utf-8", errors="replace")

        return await asyncio.wait_for(loop.run_in_executor(None, _sync_query), timeout=timeout)

    @classmethod
    def parse_response(cls, domain: str, raw: str) -> RegistrationData:
        """
        Extract registration fields from a raw WHOIS response.

        Raises:
            WhoisLookupError: If the response is empty, a "no match" answer, or has no known fields
        """
        if not raw or not raw.strip():
            raise WhoisLookupError(code="empty_response", message="Empty WHOIS response", details={"domain": domain})

        lowered = raw.lower()
        if any(lowered.lstrip().startswith(s) or f"\n{s}" in lowered for s in cls.NO_MATCH_SIGNALS):
            raise WhoisLookupError(
                code="not_found",
                message=f"No WHOIS record for {domain}",
                details={"domain": domain},
            )

        data = RegistrationData()
        name_servers: list[str] = []
        for line in raw.splitlines():
            match = cls._LINE.match(line)
            if not match:
                continue
            key, value = match.group(1).lower(), match.group(2)
            if not value:
                continue
            if key in cls.REGISTRAR_KEYS and not data.registrar:
                data.registrar = value
            elif key in cls.CREATED_KEYS and not data.created_date:
                data.created_date = value
            elif key in cls.EXPIRY_KEYS and not data.expiry_date:
                data.expiry_date = value
            elif key in cls.NAME_SERVER_KEYS:
                server = value.split()[0].rstrip(".").lower()
                if server not in name_servers:
                    name_servers.append(server)
        data.name_servers = name_servers

        if not (data.registrar or data.expiry_date or data.name_servers):
            raise WhoisLookupError(
                code="parse_error",
                message=f"WHOIS response for {domain} has no registration data",
                details={"domain": domain},
            )
        return data

    def _simulated(self, domain: str) -> RegistrationData:
        """
        Synthetic registration data.

        Second-level labels starting with 'failing-' raise, 'expired-' expired
        yesterday, 'expiring-' expire in 10 days; anything else in a year.
        """
        sld = domain.split(".")[0]
        if sld.startswith("failing-"):
            raise WhoisLookupError(
                code="simulated_failure",
                message=f"Simulated WHOIS failure for {domain}",
                details={"domain": domain},
            )

        now = datetime.now(timezone.utc).replace(microsecond=0)
        if sld.startswith("expired-"):
            expiry = now - timedelta(days=1)
        elif sld.startswith("expiring-"):
            expiry = now + timedelta(days=10)
        else:
            expiry = now + timedelta(days=365)

        return RegistrationData(
            registrar="Example Registrar",
            created_date="2020-01-01T00:00:00+00:00",
            expiry_date=expiry.isoformat(),
            name_servers=[f"ns1.{domain}", f"ns2.{domain}"],
        )
