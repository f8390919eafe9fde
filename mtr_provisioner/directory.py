"""Typed wrappers over the Graph endpoints used for devices and resource accounts."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set
from urllib.parse import quote

from .graph_client import GRAPH_ROOT_URL, GraphClient, GraphError
from .models import Account, AccountLookup, DeviceRecord, PasswordStatus, TeamsDevice
from .rules import normalize_mac


IMPORTED_DEVICES_PATH = "/deviceManagement/importedDeviceIdentities"
IMPORT_DEVICE_LIST_PATH = f"{IMPORTED_DEVICES_PATH}/importDeviceIdentityList"
TEAMWORK_DEVICES_PATH = "/teamwork/devices"
USER_SELECT = "id,userPrincipalName,displayName,accountEnabled,userType"
PASSWORD_SELECT = "id,userPrincipalName,passwordPolicies,lastPasswordChangeDateTime"
NON_EXPIRING_POLICY = "DisablePasswordExpiration"

logger = logging.getLogger(__name__)


def _user_path(upn: str) -> str:
    return f"/users/{quote(upn, safe='@')}"


def teams_mac_addresses(device: Dict[str, Any]) -> List[str]:
    """Canonical MAC addresses reported by a Teams device, in Graph order."""

    hardware = device.get("hardwareDetail") or {}
    addresses = list(hardware.get("macAddresses") or [])
    if device.get("macAddress"):
        addresses.append(device["macAddress"])
    return [normalize_mac(str(address)) for address in addresses if address]


def summarize_teams_device(device: Dict[str, Any]) -> TeamsDevice:
    location = device.get("location")
    if isinstance(location, dict):
        location = location.get("displayName")
    addresses = teams_mac_addresses(device)
    return TeamsDevice(
        id=str(device.get("id") or ""),
        name=device.get("name") or device.get("displayName"),
        mac_address=addresses[0] if addresses else None,
        location=location,
        last_seen=device.get("lastSeen") or device.get("lastModifiedDateTime"),
        status=device.get("status") or device.get("healthStatus"),
    )


class DeviceDirectoryClient:
    """Intune imported device identities and Teams Admin Center devices."""

    def __init__(self, graph: GraphClient) -> None:
        self._graph = graph

    def list_imported_devices(self) -> List[DeviceRecord]:
        return [
            DeviceRecord.from_graph(item)
            for item in self._graph.iter_collection(IMPORTED_DEVICES_PATH, version="beta")
        ]

    def find_by_serial(self, serial: str) -> Optional[DeviceRecord]:
        """Return the imported identity whose identifier equals ``serial``.

        ``$filter`` on importedDeviceIdentifier does not return reliable
        results, so the whole collection is read and scanned.
        """

        devices = self.list_imported_devices()
        logger.debug("Scanning %s imported device identities for %s", len(devices), serial)
        for device in devices:
            if device.identifier == serial:
                return device
        return None

    def create_by_serial(self, serial: str, description: str) -> None:
        payload = {
            "importedDeviceIdentities": [
                {
                    "importedDeviceIdentifier": serial,
                    "importedDeviceIdentityType": "serialNumber",
                    "description": description,
                }
            ],
            "overwriteImportedDeviceIdentities": False,
        }
        result = self._graph.request("POST", IMPORT_DEVICE_LIST_PATH, version="beta", json=payload)
        for entry in result.get("value") or []:
            if entry.get("status") is False:
                logger.warning(
                    "Intune reported import status false for %s",
                    entry.get("importedDeviceIdentifier") or serial,
                )

    def list_teams_devices(self) -> List[Dict[str, Any]]:
        return self._graph.list_collection(TEAMWORK_DEVICES_PATH, version="beta")

    def find_teams_device_by_mac(self, canonical_mac: str) -> Optional[Dict[str, Any]]:
        """Find a Teams device reporting ``canonical_mac`` among its MAC addresses."""

        for device in self.list_teams_devices():
            if canonical_mac in teams_mac_addresses(device):
                return device
        return None


class IdentityDirectoryClient:
    """Entra ID users and group membership."""

    def __init__(self, graph: GraphClient) -> None:
        self._graph = graph

    # ------------------------------------------------------------------ #
    # Users                                                              #
    # ------------------------------------------------------------------ #
    def lookup(self, upn: str) -> AccountLookup:
        """Look up one UPN, keeping absence and failure apart."""

        try:
            data = self._graph.request("GET", _user_path(upn), params={"$select": USER_SELECT})
        except GraphError as exc:
            if exc.is_not_found:
                return AccountLookup.not_found(upn)
            return AccountLookup.failed(upn, exc)
        if not data or not data.get("id"):
            return AccountLookup.not_found(upn)
        return AccountLookup.found(upn, Account.from_graph(data))

    def find_by_upn(self, upn: str) -> Optional[Account]:
        result = self.lookup(upn)
        if result.error is not None:
            raise result.error
        return result.account

    def create_account(
        self,
        display_name: str,
        upn: str,
        password: str,
        usage_location: Optional[str] = None,
    ) -> Account:
        payload: Dict[str, Any] = {
            "accountEnabled": True,
            "displayName": display_name,
            "mailNickname": upn.split("@", 1)[0],
            "userPrincipalName": upn,
            "passwordProfile": {
                "password": password,
                "forceChangePasswordNextSignIn": False,
            },
            "passwordPolicies": NON_EXPIRING_POLICY,
        }
        if usage_location:
            payload["usageLocation"] = usage_location
        return Account.from_graph(self._graph.request("POST", "/users", json=payload))

    def patch_display_name(self, upn: str, display_name: str) -> None:
        self._graph.request("PATCH", _user_path(upn), json={"displayName": display_name})

    def reset_password(self, upn: str, new_password: str) -> None:
        payload = {
            "passwordProfile": {
                "password": new_password,
                "forceChangePasswordNextSignIn": False,
            },
            "passwordPolicies": NON_EXPIRING_POLICY,
        }
        self._graph.request("PATCH", _user_path(upn), json=payload)

    def get_password_status(self, upn: str) -> PasswordStatus:
        data = self._graph.request("GET", _user_path(upn), params={"$select": PASSWORD_SELECT})
        policies = [
            policy.strip()
            for policy in str(data.get("passwordPolicies") or "").split(",")
            if policy.strip()
        ]
        changed = data.get("lastPasswordChangeDateTime")
        if NON_EXPIRING_POLICY in policies:
            message = "Password is set to never expire"
            if changed:
                message += f" (last changed {changed})"
            return PasswordStatus(is_valid=True, message=message)
        return PasswordStatus(
            is_valid=False,
            message="Password expires; reset it to apply the non-expiring password policy",
        )

    # ------------------------------------------------------------------ #
    # Groups                                                             #
    # ------------------------------------------------------------------ #
    def list_group_members(self, group_id: str) -> Set[str]:
        members = self._graph.iter_collection(
            f"/groups/{group_id}/members", params={"$select": "id"}
        )
        return {str(member["id"]) for member in members if member.get("id")}

    def add_member(self, group_id: str, object_id: str) -> None:
        payload = {"@odata.id": f"{GRAPH_ROOT_URL}/v1.0/directoryObjects/{object_id}"}
        self._graph.request("POST", f"/groups/{group_id}/members/$ref", json=payload)

    def remove_member(self, group_id: str, object_id: str) -> None:
        self._graph.request("DELETE", f"/groups/{group_id}/members/{object_id}/$ref")


__all__ = [
    "DeviceDirectoryClient",
    "IdentityDirectoryClient",
    "summarize_teams_device",
    "teams_mac_addresses",
]
