"""Provisioning workflows for Teams Rooms devices and resource accounts."""
from __future__ import annotations

import contextlib
import logging
import secrets
import string
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type

from .config import AccountsConfig, AppConfig, GroupsConfig
from .directory import DeviceDirectoryClient, IdentityDirectoryClient, summarize_teams_device
from .errors import (
    AccountExistsError,
    AccountNotFoundError,
    DirectoryCreateError,
    DirectoryError,
    DirectoryReadError,
    DirectoryWriteError,
    GroupNotConfiguredError,
    InconsistentStateError,
    MacAddressError,
    SerialValidationError,
)
from .graph_client import GraphClient, GraphClientError
from .models import (
    PRO_LICENSE_ROLE,
    RESOURCE_ACCOUNT_ROLE,
    ROOM_ACCOUNT_ROLE,
    Account,
    AccountResolution,
    DeviceRecord,
    GroupRole,
    LookupStatus,
    MembershipAction,
    MembershipChange,
    PasswordStatus,
    ProvisioningOutcome,
    TeamsDevice,
    UnlockStatus,
    ValidationResult,
)
from .rules import (
    is_complete_mac,
    is_member,
    lookup_order,
    normalize_mac,
    resolve_action,
    validate_serial,
)


DEFAULT_DEVICE_DESCRIPTION = "Microsoft Teams Rooms device"
PASSWORD_SYMBOLS = "!@#$%^&*"
PASSWORD_ALPHABET = string.ascii_letters + string.digits + PASSWORD_SYMBOLS

logger = logging.getLogger(__name__)


def generate_password(length: int = 16) -> str:
    """Random password containing lower, upper, digit and symbol characters."""

    if length < 4:
        raise ValueError("Password length must be at least 4.")
    while True:
        candidate = "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
        if (
            any(char.islower() for char in candidate)
            and any(char.isupper() for char in candidate)
            and any(char.isdigit() for char in candidate)
            and any(char in PASSWORD_SYMBOLS for char in candidate)
        ):
            return candidate


def group_diagnostics(groups: GroupsConfig) -> Dict[str, str]:
    """Configured group ids under the keys the front end reads."""

    return {
        "mtrGroupId": RESOURCE_ACCOUNT_ROLE.group_id(groups) or "not set",
        "sharedGroupId": ROOM_ACCOUNT_ROLE.group_id(groups) or "not set",
        "proGroupId": PRO_LICENSE_ROLE.group_id(groups) or "not set",
    }


@contextlib.contextmanager
def _directory_call(error_cls: Type[DirectoryError], action: str) -> Iterator[None]:
    try:
        yield
    except GraphClientError as exc:
        status_code = getattr(exc, "status_code", None) or None
        logger.error("%s failed: %s", action, exc)
        raise error_cls(f"{action} failed: {exc}", status_code=status_code) from exc


class ProvisioningService:
    """Sequences Graph calls around the provisioning rules.

    Holds no state between calls apart from the injected clients; every
    decision is re-derived from a fresh read of the remote directory.
    """

    def __init__(
        self,
        devices: Optional[DeviceDirectoryClient],
        identities: Optional[IdentityDirectoryClient],
        groups: Optional[GroupsConfig] = None,
        accounts: Optional[AccountsConfig] = None,
        password_factory: Optional[Callable[[int], str]] = None,
        connection_probe: Optional[Callable[[], Dict[str, Any]]] = None,
    ) -> None:
        self._devices = devices
        self._identities = identities
        self._groups = groups or GroupsConfig()
        self._accounts = accounts or AccountsConfig()
        self._password_factory = password_factory or generate_password
        self._connection_probe = connection_probe

    # ------------------------------------------------------------------ #
    # Devices                                                            #
    # ------------------------------------------------------------------ #
    def validate_device(self, serial: str) -> ValidationResult:
        return validate_serial(serial)

    def _require_valid_serial(self, serial: str) -> None:
        result = validate_serial(serial)
        if not result.is_valid:
            raise SerialValidationError(result.message)

    def check_device(self, serial: str) -> Optional[DeviceRecord]:
        self._require_valid_serial(serial)
        with _directory_call(DirectoryReadError, f"Looking up device {serial}"):
            device = self._devices.find_by_serial(serial)
        logger.info("Device %s %s in Intune", serial, "found" if device else "not found")
        return device

    def provision_device(
        self, serial: str, description: Optional[str] = None
    ) -> ProvisioningOutcome[DeviceRecord]:
        """Import ``serial`` into Intune unless it is already there.

        The import call runs at most once per existence check, and its
        response is not used: a second read confirms the created record.
        """

        self._require_valid_serial(serial)
        with _directory_call(DirectoryReadError, f"Looking up device {serial}"):
            existing = self._devices.find_by_serial(serial)
        if existing is not None:
            logger.info("Device already exists in Intune: %s", serial)
            return ProvisioningOutcome(already_existed=True, entity=existing)

        with _directory_call(DirectoryCreateError, f"Importing device {serial}"):
            self._devices.create_by_serial(serial, description or DEFAULT_DEVICE_DESCRIPTION)
        with _directory_call(DirectoryReadError, f"Re-reading device {serial}"):
            created = self._devices.find_by_serial(serial)
        if created is None:
            raise InconsistentStateError(
                f"Device {serial} was imported but is not visible in Intune yet. "
                "Check again in a few minutes."
            )
        logger.info("Device provisioned successfully: %s", serial)
        return ProvisioningOutcome(already_existed=False, entity=created)

    def list_teams_devices(self) -> List[TeamsDevice]:
        with _directory_call(DirectoryReadError, "Listing Teams devices"):
            devices = self._devices.list_teams_devices()
        logger.info("Found %s devices in Teams Admin Center", len(devices))
        return [summarize_teams_device(device) for device in devices]

    def check_teams_device(self, mac_address: str) -> Tuple[str, Optional[Dict[str, Any]]]:
        canonical = normalize_mac(mac_address)
        if not is_complete_mac(canonical):
            raise MacAddressError(f"Incomplete MAC address: '{canonical}'")
        with _directory_call(DirectoryReadError, f"Looking up Teams device {canonical}"):
            device = self._devices.find_teams_device_by_mac(canonical)
        logger.info("Device %s %s in Teams Admin Center", canonical, "found" if device else "not found")
        return canonical, device

    # ------------------------------------------------------------------ #
    # Resource accounts                                                  #
    # ------------------------------------------------------------------ #
    def resolve_account(self, upn: str) -> AccountResolution:
        """Find ``upn`` under its own domain, then under the tenant default.

        Only a not-found answer moves on to the next candidate; a failed
        lookup is raised instead of being read as absence.
        """

        attempted = []
        for matched_domain, candidate in lookup_order(upn):
            if candidate in attempted:
                continue
            attempted.append(candidate)
            result = self._identities.lookup(candidate)
            if result.status is LookupStatus.FOUND:
                logger.info(
                    "Resource account found with %s domain: %s", matched_domain.value, candidate
                )
                return AccountResolution(
                    exists=True,
                    matched_domain=matched_domain,
                    account=result.account,
                    attempted=list(attempted),
                )
            if result.status is LookupStatus.ERROR:
                error = result.error
                logger.error("Looking up resource account %s failed: %s", candidate, error)
                raise DirectoryReadError(
                    f"Looking up resource account {candidate} failed: {error}",
                    status_code=getattr(error, "status_code", None) or None,
                ) from error
            logger.info(
                "Resource account not found with %s domain: %s", matched_domain.value, candidate
            )
        return AccountResolution(exists=False, attempted=list(attempted))

    def require_account(self, upn: str) -> Account:
        resolution = self.resolve_account(upn)
        if not resolution.exists or resolution.account is None:
            raise AccountNotFoundError(f"Resource account {upn} does not exist")
        return resolution.account

    def create_account(
        self, upn: str, display_name: str, password: Optional[str] = None
    ) -> Tuple[Account, str]:
        resolution = self.resolve_account(upn)
        if resolution.exists:
            found = resolution.account.user_principal_name if resolution.account else upn
            raise AccountExistsError(f"Resource account {found} already exists")

        secret = password or self._password_factory(self._accounts.password_length)
        with _directory_call(DirectoryCreateError, f"Creating resource account {upn}"):
            account = self._identities.create_account(
                display_name or upn.split("@", 1)[0],
                upn,
                secret,
                usage_location=self._accounts.usage_location,
            )
        logger.info("Resource account created: %s", upn)
        return account, secret

    def update_display_name(self, upn: str, display_name: str) -> Account:
        account = self.require_account(upn)
        target = account.user_principal_name or upn
        logger.info('Updating display name for %s to "%s"', target, display_name)
        with _directory_call(DirectoryWriteError, f"Updating resource account {target}"):
            self._identities.patch_display_name(target, display_name)
        with _directory_call(DirectoryReadError, f"Re-reading resource account {target}"):
            updated = self._identities.find_by_upn(target)
        if updated is None:
            raise InconsistentStateError(f"Resource account {target} is not visible after the update")
        return updated

    def reset_password(self, upn: str) -> Tuple[Account, str]:
        account = self.require_account(upn)
        target = account.user_principal_name or upn
        secret = self._password_factory(self._accounts.password_length)
        with _directory_call(DirectoryWriteError, f"Resetting password for {target}"):
            self._identities.reset_password(target, secret)
        logger.info("Password reset for resource account %s", target)
        return account, secret

    def verify_password(self, upn: str) -> PasswordStatus:
        account = self.require_account(upn)
        target = account.user_principal_name or upn
        with _directory_call(DirectoryReadError, f"Reading password policy for {target}"):
            return self._identities.get_password_status(target)

    def check_account_unlock(self, upn: str) -> UnlockStatus:
        account = self.require_account(upn)
        if account.account_enabled is None:
            return UnlockStatus(is_unlocked=False, message="Account sign-in status is unknown")
        if account.account_enabled is False:
            return UnlockStatus(is_unlocked=False, message="Account is blocked/disabled")
        return UnlockStatus(is_unlocked=True, message="Account is active and not blocked")

    # ------------------------------------------------------------------ #
    # Group membership                                                   #
    # ------------------------------------------------------------------ #
    def _membership_context(self, upn: str, role: GroupRole) -> Tuple[Account, str]:
        group_id = role.group_id(self._groups)
        if not group_id:
            logger.error("%s group ID not configured", role.display_name)
            raise GroupNotConfiguredError(f"{role.display_name} group ID not configured")
        return self.require_account(upn), group_id

    def _member_ids(self, role: GroupRole, group_id: str) -> set:
        with _directory_call(DirectoryReadError, f"Listing members of {role.display_name}"):
            return set(self._identities.list_group_members(group_id))

    def check_membership(self, upn: str, role: GroupRole) -> Tuple[bool, str]:
        logger.info("Checking %s group membership for: %s", role.short_name, upn)
        account, group_id = self._membership_context(upn, role)
        member = is_member(self._member_ids(role, group_id), account.id)
        if member:
            return True, f"Member of {role.display_name}"
        return False, f"Not a member of {role.display_name}"

    def change_membership(
        self, upn: str, role: GroupRole, action: MembershipAction
    ) -> MembershipChange:
        """Add or remove ``upn``; a request already satisfied is a no-op."""

        account, group_id = self._membership_context(upn, role)
        member = is_member(self._member_ids(role, group_id), account.id)
        decision = resolve_action(member, action)
        if not decision.perform:
            logger.info("%s: %s %s", upn, decision.reason, role.display_name)
            return MembershipChange(
                performed=False,
                is_member=member,
                message=f"User {upn} is {decision.reason} of {role.display_name}",
            )

        if action is MembershipAction.ADD:
            with _directory_call(DirectoryWriteError, f"Adding {upn} to {role.display_name}"):
                self._identities.add_member(group_id, account.id)
            message = f"User {upn} added to {role.display_name} successfully"
        else:
            with _directory_call(DirectoryWriteError, f"Removing {upn} from {role.display_name}"):
                self._identities.remove_member(group_id, account.id)
            message = f"User {upn} removed from {role.display_name} successfully"
        logger.info(message)
        return MembershipChange(
            performed=True, is_member=action is MembershipAction.ADD, message=message
        )

    def diagnostic_info(self) -> Dict[str, str]:
        return group_diagnostics(self._groups)

    def test_connection(self) -> Dict[str, Any]:
        if self._connection_probe is None:
            return {}
        with _directory_call(DirectoryReadError, "Graph connection test"):
            return self._connection_probe()


def build_service(config: AppConfig, graph: Optional[GraphClient] = None) -> ProvisioningService:
    """Wire one shared Graph client into a :class:`ProvisioningService`."""

    graph = graph or GraphClient(config.graph)
    return ProvisioningService(
        DeviceDirectoryClient(graph),
        IdentityDirectoryClient(graph),
        groups=config.groups,
        accounts=config.accounts,
        connection_probe=graph.test_connection,
    )


def build_local_service(config: AppConfig) -> ProvisioningService:
    """Service for the channels that never reach Graph.

    Has no directory clients, so it works without Graph credentials.
    """

    return ProvisioningService(None, None, groups=config.groups, accounts=config.accounts)


__all__ = [
    "ProvisioningService",
    "build_local_service",
    "build_service",
    "generate_password",
    "group_diagnostics",
]
