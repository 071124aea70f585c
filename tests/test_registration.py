import asyncio

import pytest

from title_vetter.errors import LookupTimeoutError, NetworkError, WhoisLookupError
from title_vetter.modules import registration
from title_vetter.modules.registration import (
    extract_registrar_server,
    extract_registry_server,
    extract_tld,
    key_quality,
    merge_records,
    normalize_field_name,
    parse_whois_response,
)

IANA_COM = """% IANA WHOIS server
% for more information on IANA, visit http://www.iana.org

domain:       COM
organisation: VeriSign Global Registry Services
whois:        whois.verisign-grs.com
status:       ACTIVE
"""

REGISTRY_RESPONSE = """   Domain Name: ACMETITLE.COM
   Registry Domain ID: 123456_DOMAIN_COM-VRSN
   Registrar WHOIS Server: whois.godaddy.com
   Registrar: GoDaddy.com, LLC
   Creation Date: 2014-03-01T12:00:00Z
   Registry Expiry Date: 2030-03-01T12:00:00Z
   Name Server: NS1.ACMETITLE.COM
   Name Server: NS2.ACMETITLE.COM
>>> Last update of WHOIS database: 2026-10-01T00:00:00Z <<<
NOTICE: The expiration date displayed in this record is the date the registrar's sponsorship expires.
"""

REGISTRAR_RESPONSE = """Domain Name: acmetitle.com
Registrar: GODADDY
registrant name: Jane Doe
Registrant Email: owner@acmetitle.com
Registrant Phone: +1.3125550198
Registrant Country: US
Admin Name: Jane Doe
"""


class _Transport:
    def __init__(self, responses, failures=None):
        self.responses = responses
        self.failures = failures or {}
        self.calls = []

    async def query(self, server, text, timeout):
        self.calls.append((server, text))
        if server in self.failures:
            raise self.failures[server]
        return self.responses.get(server, "")


def test_parse_whois_response_joins_repeated_keys_and_numbers_comments():
    parsed = parse_whois_response("% comment one\nName Server: a\nName Server: b\n# comment two\nStatus: ok")
    assert parsed["Name Server"] == "a, b"
    assert parsed["comment_0"] == "% comment one"
    assert parsed["comment_1"] == "# comment two"
    assert parsed["Status"] == "ok"


def test_referral_extraction():
    assert extract_registry_server(IANA_COM) == "whois.verisign-grs.com"
    assert extract_registrar_server(REGISTRY_RESPONSE) == "whois.godaddy.com"
    assert extract_registry_server("% nothing here") is None


def test_extract_tld_prefers_known_multi_level_suffix():
    assert extract_tld("acme.co.uk") == "co.uk"
    assert extract_tld("acme.com") == "com"
    assert extract_tld("shop.acme.com") == "com"
    assert extract_tld("acme.com.mx") == "com.mx"


def test_key_quality_prefers_readable_keys():
    assert key_quality("Registrant Name") > key_quality("registrant_name")
    assert key_quality("registrantname") < key_quality("RegistrantName")


def test_merge_registry_value_wins_and_keys_are_unique():
    raw = {
        "root": {"registrar": "root value", "whois": "whois.verisign-grs.com"},
        "registrar": {"Registrar": "GODADDY", "registrant name": "Jane Doe"},
        "registry": {"REGISTRAR": "GoDaddy.com, LLC", "Registrant Name": "Jane Q. Doe"},
    }
    merged = merge_records(raw)
    normalized = [normalize_field_name(k) for k in merged]
    assert len(normalized) == len(set(normalized))
    values = {normalize_field_name(k): v for k, v in merged.items()}
    assert values["registrar"] == "GoDaddy.com, LLC"
    assert values["registrantname"] == "Jane Q. Doe"
    assert "Registrant Name" in merged


def test_merge_strips_boilerplate_and_is_immutable():
    raw = {
        "registry": {
            "TERMS OF USE": "You are not authorized...",
            "termsofuse": "dup",
            "NOTICE": "legal",
            "comment_0": "% header",
            "Domain Name": "ACMETITLE.COM",
        }
    }
    merged = merge_records(raw)
    assert dict(merged) == {"Domain Name": "ACMETITLE.COM"}
    with pytest.raises(TypeError):
        merged["Domain Name"] = "x"


def test_resolve_walks_all_three_tiers():
    transport = _Transport(
        {
            "whois.iana.org": IANA_COM,
            "whois.verisign-grs.com": REGISTRY_RESPONSE,
            "whois.godaddy.com": REGISTRAR_RESPONSE,
        }
    )
    report = asyncio.run(registration.run("acmetitle.com", transport, timeout=5))
    assert transport.calls == [
        ("whois.iana.org", "com"),
        ("whois.verisign-grs.com", "domain acmetitle.com"),
        ("whois.godaddy.com", "acmetitle.com"),
    ]
    assert report.registry_server == "whois.verisign-grs.com"
    assert report.registrar_server == "whois.godaddy.com"
    assert set(report.raw_data) == {"root", "registry", "registrar"}
    assert report.parsed_data["Registrar"] == "GoDaddy.com, LLC"
    assert report.parsed_data["Registrant Email"] == "owner@acmetitle.com"
    assert report.metadata.total_fields == len(report.parsed_data)
    assert report.metadata.warnings == []


def test_subdomains_are_looked_up_by_registered_domain():
    transport = _Transport({"whois.iana.org": IANA_COM, "whois.verisign-grs.com": REGISTRY_RESPONSE})
    report = asyncio.run(registration.run("www.portal.acmetitle.com", transport, timeout=5))
    assert report.domain == "acmetitle.com"
    assert transport.calls[:2] == [
        ("whois.iana.org", "com"),
        ("whois.verisign-grs.com", "domain acmetitle.com"),
    ]


def test_second_level_suffix_asks_root_for_top_level_zone():
    transport = _Transport(
        {"whois.mx": "Domain Name: acme.com.mx\nRegistrar: Akky"},
        failures={"whois.iana.org": ConnectionRefusedError("refused")},
    )
    report = asyncio.run(registration.run("acme.com.mx", transport, timeout=5))
    assert transport.calls == [("whois.iana.org", "mx"), ("whois.mx", "acme.com.mx")]
    assert report.tld == "com.mx"
    assert report.registry_server == "whois.mx"


def test_registrar_timeout_is_a_warning_not_a_failure():
    transport = _Transport(
        {"whois.iana.org": IANA_COM, "whois.verisign-grs.com": REGISTRY_RESPONSE},
        failures={"whois.godaddy.com": asyncio.TimeoutError()},
    )
    report = asyncio.run(registration.run("acmetitle.com", transport, timeout=5))
    assert "registrar" not in report.raw_data
    assert any("timed out" in w for w in report.metadata.warnings)
    assert report.parsed_data["Registrar"] == "GoDaddy.com, LLC"


def test_root_failure_falls_back_to_known_registry():
    transport = _Transport(
        {"whois.pir.org": "Domain Name: acme.org\nRegistrar: Porkbun LLC"},
        failures={"whois.iana.org": ConnectionRefusedError("refused")},
    )
    report = asyncio.run(registration.run("acme.org", transport, timeout=5))
    assert report.registry_server == "whois.pir.org"
    assert report.parsed_data["Registrar"] == "Porkbun LLC"
    assert len(report.metadata.warnings) == 1


def test_unknown_tld_without_referral_raises_lookup_error():
    transport = _Transport({"whois.iana.org": "% no referral"})
    with pytest.raises(WhoisLookupError) as excinfo:
        asyncio.run(registration.run("acme.zzz", transport, timeout=5))
    assert excinfo.value.status_code == 404


def test_all_tiers_timing_out_raises_timeout():
    transport = _Transport(
        {},
        failures={"whois.iana.org": asyncio.TimeoutError(), "whois.verisign-grs.com": asyncio.TimeoutError()},
    )
    with pytest.raises(LookupTimeoutError):
        asyncio.run(registration.run("acmetitle.com", transport, timeout=1))


def test_connection_failures_raise_network_error():
    transport = _Transport(
        {"whois.iana.org": IANA_COM},
        failures={"whois.verisign-grs.com": ConnectionResetError("reset")},
    )
    with pytest.raises(NetworkError):
        asyncio.run(registration.run("acmetitle.com", transport, timeout=1))
