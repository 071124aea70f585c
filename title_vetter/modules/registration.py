from __future__ import annotations

import asyncio
import logging
import re
import time
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping, Optional

from ..errors import LookupTimeoutError, NetworkError, WhoisLookupError
from ..models.results import RegistrationLookup, RegistrationMetadata, RegistrationReport
from ..utils.normalize import public_suffix, registrable_domain

logger = logging.getLogger(__name__)

ROOT_SERVER = "whois.iana.org"
WHOIS_PORT = 43

FALLBACK_SERVERS = {
    "com": "whois.verisign-grs.com",
    "net": "whois.verisign-grs.com",
    "org": "whois.pir.org",
    "info": "whois.afilias.net",
    "biz": "whois.biz",
    "us": "whois.nic.us",
    "uk": "whois.nic.uk",
    "co.uk": "whois.nic.uk",
    "ca": "whois.cira.ca",
    "au": "whois.auda.org.au",
    "com.au": "whois.auda.org.au",
    "de": "whois.denic.de",
    "fr": "whois.nic.fr",
    "it": "whois.nic.it",
    "es": "whois.nic.es",
    "nl": "whois.domain-registry.nl",
    "se": "whois.iis.se",
    "no": "whois.norid.no",
    "dk": "whois.dk-hostmaster.dk",
    "pl": "whois.dns.pl",
    "me": "whois.nic.me",
    "co": "whois.nic.co",
    "mx": "whois.mx",
    "br": "whois.registro.br",
    "com.br": "whois.registro.br",
    "za": "whois.registry.net.za",
    "co.za": "whois.registry.net.za",
    "io": "whois.nic.io",
    "ai": "whois.nic.ai",
}

# Servers that want the "domain" keyword to restrict matches to domain objects.
QUERY_FORMATS = {
    "whois.verisign-grs.com": "domain {domain}",
}

REGISTRY_REFERRAL_RE = re.compile(r"^\s*(?:whois|refer):\s*([\w.-]+)", re.IGNORECASE | re.MULTILINE)
REGISTRAR_REFERRAL_RE = re.compile(r"Registrar WHOIS Server:\s*([\w.-]+)", re.IGNORECASE)

TIER_PRIORITY = ("root", "registrar", "registry")

BOILERPLATE_FIELDS = (
    "TERMS OF USE",
    "NOTICE",
    "URL of the ICANN Whois Inaccuracy Complaint Form",
    "URL of the ICANN WHOIS Data Problem Reporting System",
    "% for more information on IANA, visit http",
    "% Error",
    "error",
    ">>> Last update of WHOIS database",
    "by the following terms of use",
    "to",
    "(1) allow, enable, or otherwise support the transmission of mass",
    "For more information on Whois status codes, please visit https",
)


class WhoisTransport:
    """Plain-text WHOIS over TCP port 43."""

    def __init__(self, port: int = WHOIS_PORT) -> None:
        self.port = port

    async def query(self, server: str, text: str, timeout: float) -> str:
        return await asyncio.wait_for(self._query(server, text), timeout=timeout)

    async def _query(self, server: str, text: str) -> str:
        reader, writer = await asyncio.open_connection(server, self.port)
        try:
            writer.write(f"{text}\r\n".encode("utf-8"))
            await writer.drain()
            data = await reader.read()
            return data.decode("utf-8", errors="replace")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass


def normalize_field_name(key: str) -> str:
    return re.sub(r"[\W_]+", "", key.lower())


_BOILERPLATE = {normalize_field_name(field) for field in BOILERPLATE_FIELDS}


def extract_tld(domain: str) -> str:
    return public_suffix(domain.lower())


def fallback_server(tld: str) -> Optional[str]:
    return FALLBACK_SERVERS.get(tld) or FALLBACK_SERVERS.get(tld.rsplit(".", 1)[-1])


def parse_whois_response(text: str) -> dict[str, str]:
    data: dict[str, str] = {}
    comments = 0
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if ":" in line and not line.startswith(("%", "#")):
            key, _, value = line.partition(":")
            key, value = key.strip(), value.strip()
            if not key or not value:
                continue
            existing = data.get(key)
            if existing is None:
                data[key] = value
            elif value not in existing.split(", "):
                data[key] = f"{existing}, {value}"
        elif line.startswith(("%", "#")):
            data[f"comment_{comments}"] = line
            comments += 1
    return data


def extract_registry_server(root_text: str) -> Optional[str]:
    match = REGISTRY_REFERRAL_RE.search(root_text)
    return match.group(1).lower() if match else None


def extract_registrar_server(registry_text: str) -> Optional[str]:
    match = REGISTRAR_REFERRAL_RE.search(registry_text)
    return match.group(1).lower() if match else None


def key_quality(key: str) -> int:
    score = 0
    if any(ch.isupper() for ch in key):
        score += 2
    if " " in key:
        score += 2
    if key == key.lower():
        score -= 1
    if len(key) < 50:
        score += 1
    return score


def is_boilerplate(key: str) -> bool:
    if key.startswith("comment_"):
        return True
    return normalize_field_name(key) in _BOILERPLATE


def merge_records(raw: Mapping[str, Mapping[str, str]]) -> Mapping[str, str]:
    """Overlay root < registrar < registry and collapse near-duplicate keys.

    The key name kept for a group is the best-formatted one; the value always
    comes from the highest-priority tier that supplied the field.
    """
    groups: dict[str, dict] = {}
    for tier in TIER_PRIORITY:
        for key, value in (raw.get(tier) or {}).items():
            if is_boilerplate(key):
                continue
            norm = normalize_field_name(key)
            if not norm:
                continue
            group = groups.setdefault(norm, {"keys": [], "value": value})
            if key not in group["keys"]:
                group["keys"].append(key)
            group["value"] = value

    merged: dict[str, str] = {}
    for group in groups.values():
        best = max(group["keys"], key=key_quality)
        merged[best] = group["value"]
    return MappingProxyType(merged)


def _query_text(server: str, domain: str) -> str:
    return QUERY_FORMATS.get(server, "{domain}").format(domain=domain)


async def _query_tier(
    transport: WhoisTransport,
    tier: str,
    server: str,
    text: str,
    timeout: float,
    lookup: RegistrationLookup,
    failures: list[BaseException],
) -> Optional[str]:
    lookup.servers_queried.append(server)
    try:
        response = await transport.query(server, text, timeout)
    except asyncio.TimeoutError as exc:
        failures.append(exc)
        lookup.warnings.append(f"{tier} server {server} timed out after {timeout:g}s")
        logger.warning("whois tier timed out", extra={"tier": tier, "server": server})
        return None
    except OSError as exc:
        failures.append(exc)
        lookup.warnings.append(f"{tier} server {server} failed: {exc}")
        logger.warning("whois tier failed", extra={"tier": tier, "server": server, "error": str(exc)})
        return None
    lookup.raw[tier] = parse_whois_response(response)
    return response


async def resolve(domain: str, transport: WhoisTransport, timeout: float = 30.0) -> RegistrationLookup:
    """Walk root, registry and registrar servers; raise only when nothing was collected."""
    domain = registrable_domain(domain.lower())
    tld = extract_tld(domain)
    lookup = RegistrationLookup(domain=domain, tld=tld, root_server=ROOT_SERVER)
    failures: list[BaseException] = []

    # The root directory only holds top-level zones.
    root_text = await _query_tier(transport, "root", ROOT_SERVER, tld.rsplit(".", 1)[-1], timeout, lookup, failures)
    registry_server = extract_registry_server(root_text) if root_text else None
    if not registry_server:
        registry_server = fallback_server(tld)
    if not registry_server:
        lookup.errors.append(f"No registry server found for TLD: {tld}")
        raise WhoisLookupError.no_server(tld)
    lookup.registry_server = registry_server

    registry_text = await _query_tier(
        transport, "registry", registry_server, _query_text(registry_server, domain), timeout, lookup, failures
    )
    registrar_server = extract_registrar_server(registry_text) if registry_text else None
    if registrar_server and registrar_server != registry_server:
        lookup.registrar_server = registrar_server
        await _query_tier(transport, "registrar", registrar_server, domain, timeout, lookup, failures)

    if "registry" not in lookup.raw and "registrar" not in lookup.raw:
        _raise_total_failure(domain, failures)
    return lookup


def _raise_total_failure(domain: str, failures: list[BaseException]) -> None:
    if failures and all(isinstance(exc, asyncio.TimeoutError) for exc in failures):
        raise LookupTimeoutError(f"WHOIS lookup timed out for {domain}")
    if failures:
        raise NetworkError(f"Network error during WHOIS lookup for {domain}")
    raise WhoisLookupError(f"No WHOIS data returned for {domain}")


async def run(domain: str, transport: WhoisTransport, timeout: float = 30.0) -> RegistrationReport:
    started = time.monotonic()
    lookup = await resolve(domain, transport, timeout)
    merged = merge_records(lookup.raw)
    return RegistrationReport(
        domain=lookup.domain,
        tld=lookup.tld,
        root_server=lookup.root_server,
        registry_server=lookup.registry_server,
        registrar_server=lookup.registrar_server,
        parsed_data=dict(merged),
        raw_data=lookup.raw,
        metadata=RegistrationMetadata(
            lookup_time_ms=int((time.monotonic() - started) * 1000),
            timestamp=datetime.now(timezone.utc).isoformat(),
            servers_queried=lookup.servers_queried,
            errors=lookup.errors,
            warnings=lookup.warnings,
            total_fields=len(merged),
        ),
    )
