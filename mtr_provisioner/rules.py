"""Validation, normalisation and lookup rules shared by every handler.

Everything here is pure: no Graph calls, no logging, no configuration. The
service layer in :mod:`mtr_provisioner.services` sequences remote calls
around these decisions.
"""
from __future__ import annotations

import re
from typing import AbstractSet, List, Tuple

from .errors import InvalidUpnError
from .models import MatchedDomain, MembershipAction, MembershipDecision, UpnParts, ValidationResult


SERIAL_LENGTH = 12
SERIAL_SUFFIX = "2"
MAC_CANONICAL_LENGTH = 17
TENANT_DEFAULT_SUFFIX = ".onmicrosoft.com"

_NON_HEX = re.compile(r"[^0-9A-Fa-f]")
_COMPLETE_MAC = re.compile(r"^(?:[0-9A-F]{2}:){5}[0-9A-F]{2}$")


# ---------------------------------------------------------------------- #
# Device serial numbers                                                  #
# ---------------------------------------------------------------------- #
def validate_serial(serial: str) -> ValidationResult:
    """Check a Logitech Teams Rooms serial number.

    The length is measured on the value exactly as supplied. The first
    failing rule wins: too short, too long, then the required ``2`` suffix.
    """

    length = len(serial)
    if length < SERIAL_LENGTH:
        return ValidationResult(
            False, f"Serial number too short: {length}/{SERIAL_LENGTH} characters"
        )
    if length > SERIAL_LENGTH:
        return ValidationResult(
            False, f"Serial number too long: {length}/{SERIAL_LENGTH} characters"
        )
    if not serial.endswith(SERIAL_SUFFIX):
        return ValidationResult(False, f'Serial number must end with "{SERIAL_SUFFIX}"')
    return ValidationResult(True, "Valid Logitech device serial number")


# ---------------------------------------------------------------------- #
# MAC addresses                                                          #
# ---------------------------------------------------------------------- #
def normalize_mac(raw: str) -> str:
    """Return the canonical ``XX:XX:XX:XX:XX:XX`` form of ``raw``, possibly partial.

    A trailing odd digit is kept as the final group so that keystroke-by-
    keystroke entry keeps working.
    """

    digits = _NON_HEX.sub("", raw or "").upper()
    groups = [digits[index : index + 2] for index in range(0, len(digits), 2)]
    return ":".join(groups)[:MAC_CANONICAL_LENGTH]


def is_complete_mac(canonical: str) -> bool:
    return bool(_COMPLETE_MAC.match(canonical or ""))


# ---------------------------------------------------------------------- #
# User principal names                                                   #
# ---------------------------------------------------------------------- #
def split_upn(upn: str) -> UpnParts:
    """Split ``local@domain``; raises :class:`InvalidUpnError` otherwise."""

    parts = (upn or "").split("@")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidUpnError(f"Invalid UPN format: {upn}")
    return UpnParts(local=parts[0], domain=parts[1])


def tenant_default_domain(domain: str) -> str:
    """``banenor.no`` -> ``banenor.onmicrosoft.com``.

    A domain without a dot is used whole as the label.
    """

    label = domain.split(".", 1)[0]
    return f"{label}{TENANT_DEFAULT_SUFFIX}"


def lookup_order(upn: str) -> List[Tuple[MatchedDomain, str]]:
    """Candidate UPNs in the order they must be tried."""

    parts = split_upn(upn)
    fallback = UpnParts(local=parts.local, domain=tenant_default_domain(parts.domain))
    return [
        (MatchedDomain.ORIGINAL, parts.upn),
        (MatchedDomain.TENANT_DEFAULT, fallback.upn),
    ]


# ---------------------------------------------------------------------- #
# Group membership                                                       #
# ---------------------------------------------------------------------- #
def is_member(member_ids: AbstractSet[str], target_id: str) -> bool:
    return target_id in member_ids


def resolve_action(member: bool, action: MembershipAction) -> MembershipDecision:
    """Decide whether an add/remove request needs a remote call.

    Requests that are already satisfied are no-ops, not errors.
    """

    if action is MembershipAction.ADD:
        if member:
            return MembershipDecision(perform=False, reason="already a member")
        return MembershipDecision(perform=True)
    if not member:
        return MembershipDecision(perform=False, reason="not a member")
    return MembershipDecision(perform=True)


__all__ = [
    "MAC_CANONICAL_LENGTH",
    "SERIAL_LENGTH",
    "is_complete_mac",
    "is_member",
    "lookup_order",
    "normalize_mac",
    "resolve_action",
    "split_upn",
    "tenant_default_domain",
    "validate_serial",
]
