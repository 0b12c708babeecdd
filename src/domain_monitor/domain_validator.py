"""
Domain name validation and normalization.

Every domain handed to the probe pipeline or stored in the registry goes
through `normalize_domain`, which returns the lowercase ASCII (IDNA) form or
raises ValidationError.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from domain_monitor.exceptions import ValidationError


# Control characters, whitespace and symbols that can never appear in a hostname
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~_]'
)

LABEL_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")

MAX_DOMAIN_LENGTH = 253


@dataclass
class DomainValidationResult:
    """Result of a non-raising validation."""

    valid: bool
    canonical_domain: Optional[str]
    error: Optional[ValidationError]


def _invalid(code: str, message: str, raw: str, **details) -> ValidationError:
    return ValidationError(code=code, message=message, details={"raw_input": raw, **details})


def normalize_domain(raw_domain: str) -> str:
    """
    Convert a domain to canonical form (lowercase, IDNA-encoded).

    Args:
        raw_domain: Domain as typed by a user or read from storage

    Returns:
        The canonical ASCII form, without a trailing dot

    Raises:
        ValidationError: If the input is empty or not a valid hostname
    """
    if not isinstance(raw_domain, str) or not raw_domain.strip():
        raise _invalid("empty_input", "Domain input is empty", str(raw_domain))

    domain = raw_domain.strip().rstrip(".").lower()

    found = FORBIDDEN_CHARS_PATTERN.findall(domain)
    if found:
        raise _invalid(
            "forbidden_chars",
            "Domain contains forbidden characters",
            raw_domain,
            forbidden_chars=found,
        )

    if any(ord(c) > 127 for c in domain):
        try:
            domain = idna.encode(domain, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise _invalid(
                "idna_error",
                f"IDNA encoding failed: {e}",
                raw_domain,
                idna_error=str(e),
            )

    if len(domain) > MAX_DOMAIN_LENGTH:
        raise _invalid("too_long", "Domain exceeds 253 characters", raw_domain)

    labels = domain.split(".")
    if len(labels) < 2:
        raise _invalid("missing_tld", "Domain must contain at least one dot", raw_domain)

    for label in labels:
        if not LABEL_PATTERN.match(label):
            raise _invalid(
                "invalid_label",
                f"Invalid label '{label}'",
                raw_domain,
                label=label,
            )

    return domain


def validate_domain(raw_domain: str) -> DomainValidationResult:
    """Validate without raising."""
    try:
        canonical = normalize_domain(raw_domain)
    except ValidationError as e:
        return DomainValidationResult(valid=False, canonical_domain=None, error=e)
    return DomainValidationResult(valid=True, canonical_domain=canonical, error=None)
