"""
Finding Fingerprints.

A fingerprint is the logical identity of a finding across runs: a SHA-256
hex digest over (module code, category, resource id, normalized finding
text). It ignores severity, resource display names and recommendation
wording so that cosmetic changes in a module's output do not reopen
history as new findings.

Exports:
    normalize_finding_text: Canonical form of finding text
    compute_fingerprint: Fingerprint for the identity tuple
    to_raw_finding: Build a RawFinding from a module's FindingInput
"""

import hashlib
import re
from typing import Optional

from ..models.finding import FindingInput, RawFinding

_WHITESPACE = re.compile(r"\s+")
_FIELD_SEPARATOR = "\x1f"


def normalize_finding_text(text: Optional[str]) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip().lower()


def _normalize_token(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def compute_fingerprint(
    module_code: str,
    category: Optional[str],
    resource_id: Optional[str],
    finding_text: Optional[str]
) -> str:
    """
    Deterministic fingerprint for a finding.

    Resource ids are compared case-insensitively (cloud resource ids are
    case-insensitive). Fields are joined with a unit separator so that
    ("ab", "c") and ("a", "bc") hash differently.
    """
    parts = [
        (module_code or "").strip().upper(),
        _normalize_token(category),
        _normalize_token(resource_id),
        normalize_finding_text(finding_text),
    ]
    payload = _FIELD_SEPARATOR.join(parts).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def to_raw_finding(job_id: str, module_code: str, finding: FindingInput) -> RawFinding:
    """Attach job, module and fingerprint to a module's finding."""
    code = module_code.strip().upper()
    return RawFinding(
        job_id=job_id,
        module_code=code,
        fingerprint=compute_fingerprint(code, finding.category, finding.resource_id, finding.finding_text),
        severity=finding.severity,
        category=finding.category,
        resource_type=finding.resource_type,
        resource_id=finding.resource_id,
        resource_name=finding.resource_name,
        finding_text=finding.finding_text,
        recommendation=finding.recommendation,
    )
