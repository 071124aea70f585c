from __future__ import annotations

import re
from typing import Optional

from ..models.results import RegistrarEvidence

KNOWN_REGISTRARS = {
    "GoDaddy.com, LLC": 75,
    "NameCheap, Inc.": 90,
    "Google LLC": 95,
    "Cloudflare, Inc.": 92,
    "Porkbun LLC": 80,
    "Squarespace Domains II LLC": 85,
    "Network Solutions, LLC": 70,
    "Tucows Domains Inc.": 78,
}

SUSPICIOUS_REGISTRARS = ("unknown", "private", "anonymous", "hidden", "masked", "protected")

UNKNOWN_REGISTRAR_SCORE = 50
SUSPICIOUS_REGISTRAR_SCORE = 20


def _canonical(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


_KNOWN = {_canonical(name): (name, score) for name, score in KNOWN_REGISTRARS.items()}


def assess_registrar(name: Optional[str]) -> RegistrarEvidence:
    if not name or not name.strip():
        return RegistrarEvidence(name=None, reputation_score=0, is_known=False)
    known = _KNOWN.get(_canonical(name))
    if known:
        return RegistrarEvidence(name=known[0], reputation_score=known[1], is_known=True)
    lowered = name.lower()
    if any(pattern in lowered for pattern in SUSPICIOUS_REGISTRARS):
        return RegistrarEvidence(name=name, reputation_score=SUSPICIOUS_REGISTRAR_SCORE, is_known=False)
    return RegistrarEvidence(name=name, reputation_score=UNKNOWN_REGISTRAR_SCORE, is_known=False)
