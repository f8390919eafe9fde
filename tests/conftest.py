"""Shared fixtures: in-memory stand-ins for the Graph-backed directories."""
from typing import Dict, List, Optional, Set

import pytest

from mtr_provisioner.config import AccountsConfig, GroupsConfig
from mtr_provisioner.graph_client import GraphError
from mtr_provisioner.models import Account, AccountLookup, DeviceRecord, PasswordStatus
from mtr_provisioner.services import ProvisioningService


class FakeDeviceDirectory:
    def __init__(self, serials: Optional[List[str]] = None, visible_after_create: bool = True):
        self.devices = [DeviceRecord(identifier=serial, id=f"id-{serial}") for serial in serials or []]
        self.visible_after_create = visible_after_create
        self.created: List[str] = []
        self.read_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.teams_devices: List[Dict] = []

    def find_by_serial(self, serial):
        if self.read_error is not None:
            raise self.read_error
        return next((device for device in self.devices if device.identifier == serial), None)

    def create_by_serial(self, serial, description):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(serial)
        if self.visible_after_create:
            self.devices.append(
                DeviceRecord(identifier=serial, description=description, id=f"id-{serial}")
            )

    def list_teams_devices(self):
        if self.read_error is not None:
            raise self.read_error
        return list(self.teams_devices)

    def find_teams_device_by_mac(self, canonical_mac):
        for device in self.teams_devices:
            if device.get("macAddress") == canonical_mac:
                return device
        return None


class FakeIdentityDirectory:
    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.errors: Dict[str, Exception] = {}
        self.members: Dict[str, Set[str]] = {}
        self.password_policies: Dict[str, str] = {}
        self.lookups: List[str] = []
        self.added: List[tuple] = []
        self.removed: List[tuple] = []
        self.passwords: Dict[str, str] = {}

    def add_account(self, upn, object_id=None, display_name=None, enabled=True):
        account = Account(
            id=object_id or f"obj-{upn}",
            user_principal_name=upn,
            display_name=display_name or upn.split("@")[0],
            account_enabled=enabled,
        )
        self.accounts[upn] = account
        return account

    def lookup(self, upn):
        self.lookups.append(upn)
        if upn in self.errors:
            return AccountLookup.failed(upn, self.errors[upn])
        if upn in self.accounts:
            return AccountLookup.found(upn, self.accounts[upn])
        return AccountLookup.not_found(upn)

    def find_by_upn(self, upn):
        return self.accounts.get(upn)

    def create_account(self, display_name, upn, password, usage_location=None):
        self.passwords[upn] = password
        return self.add_account(upn, display_name=display_name)

    def patch_display_name(self, upn, display_name):
        current = self.accounts[upn]
        self.accounts[upn] = Account(
            id=current.id,
            user_principal_name=upn,
            display_name=display_name,
            account_enabled=current.account_enabled,
        )

    def reset_password(self, upn, new_password):
        self.passwords[upn] = new_password

    def get_password_status(self, upn):
        if self.password_policies.get(upn) == "DisablePasswordExpiration":
            return PasswordStatus(is_valid=True, message="Password is set to never expire")
        return PasswordStatus(is_valid=False, message="Password expires")

    def list_group_members(self, group_id):
        return set(self.members.get(group_id, set()))

    def add_member(self, group_id, object_id):
        self.added.append((group_id, object_id))
        self.members.setdefault(group_id, set()).add(object_id)

    def remove_member(self, group_id, object_id):
        self.removed.append((group_id, object_id))
        self.members.setdefault(group_id, set()).discard(object_id)


def graph_error(status_code, code="Error", message="failed"):
    return GraphError(status_code, code, message)


@pytest.fixture
def devices():
    return FakeDeviceDirectory()


@pytest.fixture
def identities():
    return FakeIdentityDirectory()


@pytest.fixture
def groups():
    return GroupsConfig(resource_account="grp-mtr", room_account="grp-room", pro_license="grp-pro")


@pytest.fixture
def service(devices, identities, groups):
    return ProvisioningService(
        devices,
        identities,
        groups=groups,
        accounts=AccountsConfig(password_length=16),
        password_factory=lambda length: "P" * length,
        connection_probe=lambda: {"id": "org-1", "displayName": "Contoso"},
    )
