"""Data models for devices, resource accounts and group roles."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .config import GroupsConfig


T = TypeVar("T")


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    message: str


@dataclass(frozen=True)
class UpnParts:
    local: str
    domain: str

    @property
    def upn(self) -> str:
        return f"{self.local}@{self.domain}"


class MatchedDomain(str, Enum):
    """Which candidate UPN a resource account was found under.

    The values are the ``domain`` strings the front end already understands.
    """

    ORIGINAL = "original"
    TENANT_DEFAULT = "onmicrosoft"


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class MembershipAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class DeviceRecord:
    """An imported device identity in Intune."""

    identifier: str
    identity_type: str = "serialNumber"
    description: Optional[str] = None
    enrollment_state: Optional[str] = None
    platform: Optional[str] = None
    last_contacted: Optional[str] = None
    id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "DeviceRecord":
        return cls(
            identifier=str(data.get("importedDeviceIdentifier") or ""),
            identity_type=str(data.get("importedDeviceIdentityType") or "serialNumber"),
            description=data.get("description"),
            enrollment_state=data.get("enrollmentState"),
            platform=data.get("platform"),
            last_contacted=data.get("lastContactedDateTime"),
            id=data.get("id"),
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "importedDeviceIdentifier": self.identifier,
            "importedDeviceIdentityType": self.identity_type,
            "description": self.description,
            "enrollmentState": self.enrollment_state,
            "platform": self.platform,
            "lastContactedDateTime": self.last_contacted,
        }


@dataclass(frozen=True)
class TeamsDevice:
    """A device registered in Teams Admin Center."""

    id: str
    name: Optional[str] = None
    mac_address: Optional[str] = None
    location: Optional[str] = None
    last_seen: Optional[str] = None
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "macAddress": self.mac_address,
            "location": self.location,
            "lastSeen": self.last_seen,
            "status": self.status,
        }


@dataclass(frozen=True)
class Account:
    """A resource account (Entra ID user object)."""

    id: str
    user_principal_name: str
    display_name: Optional[str] = None
    account_enabled: Optional[bool] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "Account":
        enabled = data.get("accountEnabled")
        return cls(
            id=str(data.get("id") or ""),
            user_principal_name=str(data.get("userPrincipalName") or ""),
            display_name=data.get("displayName"),
            account_enabled=None if enabled is None else bool(enabled),
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = dict(self.raw)
        payload.update(
            {
                "id": self.id,
                "userPrincipalName": self.user_principal_name,
                "displayName": self.display_name,
            }
        )
        if self.account_enabled is not None:
            payload["accountEnabled"] = self.account_enabled
        return payload


@dataclass(frozen=True)
class AccountLookup:
    """Result of a single UPN lookup: found, not found, or failed."""

    status: LookupStatus
    upn: str
    account: Optional[Account] = None
    error: Optional[Exception] = None

    @classmethod
    def found(cls, upn: str, account: Account) -> "AccountLookup":
        return cls(LookupStatus.FOUND, upn, account=account)

    @classmethod
    def not_found(cls, upn: str) -> "AccountLookup":
        return cls(LookupStatus.NOT_FOUND, upn)

    @classmethod
    def failed(cls, upn: str, error: Exception) -> "AccountLookup":
        return cls(LookupStatus.ERROR, upn, error=error)


@dataclass(frozen=True)
class AccountResolution:
    exists: bool
    matched_domain: Optional[MatchedDomain] = None
    account: Optional[Account] = None
    attempted: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProvisioningOutcome(Generic[T]):
    already_existed: bool
    entity: Optional[T]


@dataclass(frozen=True)
class MembershipDecision:
    perform: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class MembershipChange:
    performed: bool
    is_member: bool
    message: str


@dataclass(frozen=True)
class PasswordStatus:
    is_valid: bool
    message: str


@dataclass(frozen=True)
class UnlockStatus:
    is_unlocked: bool
    message: str


@dataclass(frozen=True)
class GroupRole:
    """Descriptor for one of the fixed groups a resource account can join."""

    key: str
    display_name: str
    short_name: str
    group_id_lookup: Callable[[GroupsConfig], Optional[str]] = field(compare=False, repr=False)

    def group_id(self, groups: GroupsConfig) -> Optional[str]:
        return self.group_id_lookup(groups)


RESOURCE_ACCOUNT_ROLE = GroupRole(
    key="resource-account",
    display_name="MTR Resource Accounts",
    short_name="MTR",
    group_id_lookup=lambda groups: groups.resource_account,
)
ROOM_ACCOUNT_ROLE = GroupRole(
    key="room-account",
    display_name="Room Accounts",
    short_name="Room",
    group_id_lookup=lambda groups: groups.room_account,
)
PRO_LICENSE_ROLE = GroupRole(
    key="pro-license",
    display_name="MTR-Teams-Room-License-Teams Rooms Pro",
    short_name="Pro license",
    group_id_lookup=lambda groups: groups.pro_license,
)

GROUP_ROLES: Dict[str, GroupRole] = {
    role.key: role for role in (RESOURCE_ACCOUNT_ROLE, ROOM_ACCOUNT_ROLE, PRO_LICENSE_ROLE)
}


def get_group_role(key: str) -> GroupRole:
    try:
        return GROUP_ROLES[key]
    except KeyError as exc:
        known = ", ".join(sorted(GROUP_ROLES))
        raise ValueError(f"Unknown group role '{key}'. Expected one of: {known}.") from exc


__all__ = [
    "Account",
    "AccountLookup",
    "AccountResolution",
    "DeviceRecord",
    "GROUP_ROLES",
    "GroupRole",
    "LookupStatus",
    "MatchedDomain",
    "MembershipAction",
    "MembershipChange",
    "MembershipDecision",
    "PRO_LICENSE_ROLE",
    "PasswordStatus",
    "ProvisioningOutcome",
    "RESOURCE_ACCOUNT_ROLE",
    "ROOM_ACCOUNT_ROLE",
    "TeamsDevice",
    "UnlockStatus",
    "UpnParts",
    "ValidationResult",
    "get_group_role",
]
