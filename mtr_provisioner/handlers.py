"""Request handlers returning the ``{"success": ..., "error": ...}`` envelope.

Each handler is registered under the channel name the desktop front end
invokes. Handlers never raise: every failure becomes an envelope with
``success`` false, an ``error`` message and an ``errorType``.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, List, Mapping

from .errors import DirectoryError, ProvisioningError, ValidationError
from .models import GROUP_ROLES, GroupRole, MembershipAction, get_group_role
from .rules import is_complete_mac, normalize_mac
from .services import ProvisioningService


Envelope = Dict[str, Any]
Handler = Callable[[ProvisioningService, Mapping[str, Any]], Envelope]

logger = logging.getLogger(__name__)

CHANNELS: Dict[str, Handler] = {}
# Channels answered from local rules and configuration alone.
LOCAL_CHANNELS = frozenset({"validate-device", "format-mac-address", "group-diagnostic"})
_BARE_FIELDS = {
    "validate-device": "serialNumber",
    "check-intune-device": "serialNumber",
    "check-tac-device": "macAddress",
    "format-mac-address": "macAddress",
}


class UnknownChannelError(KeyError):
    """Raised when a channel is not on the allow-list."""


def _failure(message: str, error_type: str = "error", **extra: Any) -> Envelope:
    payload: Envelope = {"success": False, "error": message, "errorType": error_type}
    payload.update(extra)
    return payload


def channel(name: str, failure_prefix: str) -> Callable[[Handler], Handler]:
    """Register a handler and convert raised errors into failure envelopes."""

    def decorator(func: Handler) -> Handler:
        @functools.wraps(func)
        def wrapper(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
            try:
                return func(service, payload)
            except DirectoryError as exc:
                extra = {"statusCode": exc.status_code} if exc.status_code else {}
                return _failure(f"{failure_prefix}: {exc}", exc.error_type, **extra)
            except ProvisioningError as exc:
                return _failure(str(exc), exc.error_type)
            except Exception as exc:
                logger.exception("Unexpected error in %s", name)
                return _failure(f"{failure_prefix}: {exc}")

        CHANNELS[name] = wrapper
        return wrapper

    return decorator


def _text(payload: Mapping[str, Any], key: str, required: bool = True) -> str:
    value = payload.get(key)
    text = "" if value is None else str(value)
    if required and not text.strip():
        raise ValidationError(f"Missing required field '{key}'")
    return text


def _upn(payload: Mapping[str, Any]) -> str:
    return _text(payload, "upn").strip()


# ---------------------------------------------------------------------- #
# Intune devices                                                         #
# ---------------------------------------------------------------------- #
@channel("validate-device", "Failed to validate device")
def validate_device(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    result = service.validate_device(_text(payload, "serialNumber", required=False))
    return {"success": True, "isValid": result.is_valid, "message": result.message}


@channel("check-intune-device", "Graph API error")
def check_intune_device(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    serial = _text(payload, "serialNumber", required=False)
    logger.info("Checking if device exists in Intune: %s", serial)
    device = service.check_device(serial)
    return {
        "success": True,
        "exists": device is not None,
        "device": device.to_dict() if device else None,
    }


@channel("provision-intune", "Failed to provision device")
def provision_intune(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    serial = _text(payload, "serialNumber", required=False)
    logger.info("Provisioning device in Intune: %s", serial)
    outcome = service.provision_device(serial, _text(payload, "description", required=False))
    return {
        "success": True,
        "alreadyExisted": outcome.already_existed,
        "device": outcome.entity.to_dict() if outcome.entity else None,
    }


@channel("check-tac-device", "Failed to check Teams device")
def check_tac_device(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    canonical, device = service.check_teams_device(_text(payload, "macAddress"))
    return {"success": True, "exists": device is not None, "macAddress": canonical, "device": device}


@channel("get-tac-devices", "Failed to get Teams devices")
def get_tac_devices(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    logger.info("Fetching provisioned devices from Teams Admin Center")
    devices = service.list_teams_devices()
    return {"success": True, "devices": [device.to_dict() for device in devices]}


@channel("format-mac-address", "Failed to format MAC address")
def format_mac_address(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    canonical = normalize_mac(_text(payload, "macAddress", required=False))
    return {"success": True, "macAddress": canonical, "isComplete": is_complete_mac(canonical)}


# ---------------------------------------------------------------------- #
# Resource accounts                                                      #
# ---------------------------------------------------------------------- #
@channel("check-resource-account", "Failed to check resource account")
def check_resource_account(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    upn = _upn(payload)
    logger.info("Checking if resource account exists: %s", upn)
    resolution = service.resolve_account(upn)
    if not resolution.exists or resolution.account is None:
        return {"success": True, "exists": False}
    return {
        "success": True,
        "exists": True,
        "account": resolution.account.to_dict(),
        "domain": resolution.matched_domain.value if resolution.matched_domain else None,
    }


@channel("create-resource-account", "Failed to create resource account")
def create_resource_account(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    upn = _upn(payload)
    logger.info("Creating resource account: %s", upn)
    account, password = service.create_account(
        upn,
        _text(payload, "displayName", required=False).strip(),
        password=_text(payload, "password", required=False) or None,
    )
    return {"success": True, "account": account.to_dict(), "password": password}


@channel("update-resource-account", "Failed to update resource account")
def update_resource_account(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    upn = _upn(payload)
    display_name = _text(payload, "displayName").strip()
    account = service.update_display_name(upn, display_name)
    return {
        "success": True,
        "account": account.to_dict(),
        "message": f"Display name updated to: {display_name}",
    }


@channel("verify-account-password", "Failed to verify password")
def verify_account_password(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    upn = _upn(payload)
    logger.info("Verifying password for resource account: %s", upn)
    status = service.verify_password(upn)
    return {"success": True, "isValid": status.is_valid, "message": status.message}


@channel("reset-account-password", "Failed to reset password")
def reset_account_password(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    upn = _upn(payload)
    logger.info("Resetting password for resource account: %s", upn)
    _, password = service.reset_password(upn)
    return {"success": True, "message": "Password reset successful", "password": password}


@channel("check-account-unlock", "Failed to check account status")
def check_account_unlock(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    upn = _upn(payload)
    logger.info("Checking if account is unlocked: %s", upn)
    status = service.check_account_unlock(upn)
    return {"success": True, "isUnlocked": status.is_unlocked, "message": status.message}


# ---------------------------------------------------------------------- #
# Group membership                                                       #
# ---------------------------------------------------------------------- #
def check_membership(
    service: ProvisioningService, payload: Mapping[str, Any], role: GroupRole
) -> Envelope:
    is_member, message = service.check_membership(_upn(payload), role)
    return {"success": True, "isMember": is_member, "message": message}


def change_membership(
    service: ProvisioningService,
    payload: Mapping[str, Any],
    role: GroupRole,
    action: MembershipAction,
) -> Envelope:
    change = service.change_membership(_upn(payload), role, action)
    return {
        "success": True,
        "message": change.message,
        "changed": change.performed,
        "isMember": change.is_member,
    }


def _register_group_channels() -> None:
    # Channel names used by the front end for each group role.
    names = {
        "resource-account": ("check-group-membership", "add-to-mtr-group", "remove-from-mtr-group"),
        "room-account": ("check-room-membership", "add-to-room-group", "remove-from-room-group"),
        "pro-license": ("check-pro-membership", "add-to-pro-group", "remove-from-pro-group"),
    }
    for key, (check_name, add_name, remove_name) in names.items():
        role = GROUP_ROLES[key]
        channel(check_name, f"Failed to check {role.short_name} group membership")(
            functools.partial(check_membership, role=role)
        )
        channel(add_name, f"Failed to add user to {role.short_name} group")(
            functools.partial(change_membership, role=role, action=MembershipAction.ADD)
        )
        channel(remove_name, f"Failed to remove user from {role.short_name} group")(
            functools.partial(change_membership, role=role, action=MembershipAction.REMOVE)
        )


_register_group_channels()


@channel("group-membership", "Failed to update group membership")
def group_membership(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    """Generic form: ``{"upn", "role", "action": "check" | "add" | "remove"}``."""

    try:
        role = get_group_role(_text(payload, "role"))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    action = _text(payload, "action", required=False).strip().lower() or "check"
    if action == "check":
        return check_membership(service, payload, role)
    try:
        membership_action = MembershipAction(action)
    except ValueError as exc:
        raise ValidationError(f"Unknown membership action '{action}'") from exc
    return change_membership(service, payload, role, membership_action)


@channel("group-diagnostic", "Failed to get diagnostic info")
def group_diagnostic(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    return {"success": True, "diagnosticInfo": service.diagnostic_info()}


@channel("test-connection", "Graph API connection test failed")
def test_connection(service: ProvisioningService, payload: Mapping[str, Any]) -> Envelope:
    organization = service.test_connection()
    return {"success": True, "organization": organization.get("displayName")}


# ---------------------------------------------------------------------- #
# Dispatch                                                               #
# ---------------------------------------------------------------------- #
def list_channels() -> List[str]:
    return sorted(CHANNELS)


def coerce_payload(name: str, payload: Any) -> Mapping[str, Any]:
    """Accept the bare-argument form used by the desktop front end.

    ``invoke("check-resource-account", "room@contoso.com")`` passes the UPN
    itself rather than a mapping.
    """

    if payload is None:
        return {}
    if isinstance(payload, Mapping):
        return payload
    return {_BARE_FIELDS.get(name, "upn"): payload}


def dispatch(service: ProvisioningService, name: str, payload: Any = None) -> Envelope:
    """Invoke the handler registered for ``name``.

    Raises :class:`UnknownChannelError` for names not on the allow-list.
    """

    try:
        handler = CHANNELS[name]
    except KeyError as exc:
        raise UnknownChannelError(name) from exc
    return handler(service, coerce_payload(name, payload))


__all__ = [
    "CHANNELS",
    "LOCAL_CHANNELS",
    "UnknownChannelError",
    "coerce_payload",
    "dispatch",
    "list_channels",
]
