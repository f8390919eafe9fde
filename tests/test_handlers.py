import pytest

from conftest import graph_error
from mtr_provisioner.handlers import (
    LOCAL_CHANNELS,
    UnknownChannelError,
    coerce_payload,
    dispatch,
    list_channels,
)
from mtr_provisioner.services import ProvisioningService

SERIAL = "ABCDEFGHIJK2"


def test_channel_allow_list():
    channels = list_channels()
    for name in (
        "validate-device",
        "check-intune-device",
        "provision-intune",
        "check-resource-account",
        "create-resource-account",
        "check-group-membership",
        "add-to-room-group",
        "remove-from-pro-group",
        "group-diagnostic",
    ):
        assert name in channels


def test_unknown_channel(service):
    with pytest.raises(UnknownChannelError):
        dispatch(service, "format-disk", {})


@pytest.mark.parametrize(
    "name, payload, expected",
    [
        ("check-resource-account", "room1@banenor.no", {"upn": "room1@banenor.no"}),
        ("validate-device", SERIAL, {"serialNumber": SERIAL}),
        ("check-tac-device", "aa-bb", {"macAddress": "aa-bb"}),
        ("group-diagnostic", None, {}),
    ],
)
def test_bare_payloads(name, payload, expected):
    assert dict(coerce_payload(name, payload)) == expected


def test_validate_device(service):
    envelope = dispatch(service, "validate-device", "ABC")
    assert envelope == {
        "success": True,
        "isValid": False,
        "message": "Serial number too short: 3/12 characters",
    }


def test_provision_envelopes(service):
    first = dispatch(service, "provision-intune", {"serialNumber": SERIAL})
    assert first["success"] is True
    assert first["alreadyExisted"] is False
    assert first["device"]["importedDeviceIdentifier"] == SERIAL

    second = dispatch(service, "provision-intune", {"serialNumber": SERIAL})
    assert second["alreadyExisted"] is True


def test_provision_invalid_serial_envelope(service):
    envelope = dispatch(service, "provision-intune", {"serialNumber": "bad"})
    assert envelope["success"] is False
    assert envelope["errorType"] == "validation"
    assert "too short" in envelope["error"]


def test_directory_failure_carries_status_code(service, devices):
    devices.read_error = graph_error(403, "Authorization_RequestDenied", "Insufficient privileges")
    envelope = dispatch(service, "check-intune-device", SERIAL)
    assert envelope["success"] is False
    assert envelope["errorType"] == "directory"
    assert envelope["statusCode"] == 403
    assert envelope["error"].startswith("Graph API error: ")


def test_check_resource_account_domain(service, identities):
    identities.add_account("room1@banenor.onmicrosoft.com")
    envelope = dispatch(service, "check-resource-account", "room1@banenor.no")
    assert envelope["success"] is True
    assert envelope["exists"] is True
    assert envelope["domain"] == "onmicrosoft"
    assert envelope["account"]["userPrincipalName"] == "room1@banenor.onmicrosoft.com"


def test_check_resource_account_missing(service):
    assert dispatch(service, "check-resource-account", "room1@banenor.no") == {
        "success": True,
        "exists": False,
    }


def test_check_resource_account_invalid_upn(service):
    envelope = dispatch(service, "check-resource-account", "room1")
    assert envelope == {
        "success": False,
        "error": "Invalid UPN format: room1",
        "errorType": "validation",
    }


def test_missing_upn(service):
    envelope = dispatch(service, "reset-account-password", {})
    assert envelope["success"] is False
    assert envelope["error"] == "Missing required field 'upn'"


def test_create_resource_account(service):
    envelope = dispatch(
        service, "create-resource-account", {"upn": "room1@banenor.no", "displayName": "Room 1"}
    )
    assert envelope["success"] is True
    assert envelope["password"] == "P" * 16
    assert envelope["account"]["displayName"] == "Room 1"


def test_create_existing_account_is_conflict(service, identities):
    identities.add_account("room1@banenor.no")
    envelope = dispatch(service, "create-resource-account", {"upn": "room1@banenor.no"})
    assert envelope["success"] is False
    assert envelope["errorType"] == "conflict"


def test_group_channels(service, identities):
    identities.add_account("room1@banenor.no", object_id="u1")
    added = dispatch(service, "add-to-room-group", "room1@banenor.no")
    assert added == {
        "success": True,
        "message": "User room1@banenor.no added to Room Accounts successfully",
        "changed": True,
        "isMember": True,
    }
    check = dispatch(service, "check-room-membership", "room1@banenor.no")
    assert check == {"success": True, "isMember": True, "message": "Member of Room Accounts"}

    again = dispatch(service, "add-to-room-group", "room1@banenor.no")
    assert again["success"] is True
    assert again["changed"] is False


def test_group_channel_for_missing_account(service):
    envelope = dispatch(service, "check-group-membership", "ghost@banenor.no")
    assert envelope["success"] is False
    assert envelope["errorType"] == "not_found"
    assert envelope["error"] == "Resource account ghost@banenor.no does not exist"


def test_generic_group_membership(service, identities):
    identities.add_account("room1@banenor.no", object_id="u1")
    envelope = dispatch(
        service,
        "group-membership",
        {"upn": "room1@banenor.no", "role": "pro-license", "action": "add"},
    )
    assert envelope["changed"] is True
    assert identities.added == [("grp-pro", "u1")]


def test_generic_group_membership_rejects_unknown_role(service):
    envelope = dispatch(service, "group-membership", {"upn": "room1@banenor.no", "role": "admins"})
    assert envelope["success"] is False
    assert envelope["errorType"] == "validation"


def test_unexpected_error_becomes_envelope(service, monkeypatch):
    def boom(upn):
        raise RuntimeError("boom")

    monkeypatch.setattr(service, "check_account_unlock", boom)
    envelope = dispatch(service, "check-account-unlock", "room1@banenor.no")
    assert envelope == {
        "success": False,
        "error": "Failed to check account status: boom",
        "errorType": "error",
    }


def test_group_diagnostic(service):
    envelope = dispatch(service, "group-diagnostic")
    assert envelope["diagnosticInfo"]["proGroupId"] == "grp-pro"


def test_format_mac_address(service):
    assert dispatch(service, "format-mac-address", "aabbccddeeff") == {
        "success": True,
        "macAddress": "AA:BB:CC:DD:EE:FF",
        "isComplete": True,
    }


def test_get_tac_devices(service, devices):
    devices.teams_devices.append({"id": "t1", "name": "Board room", "macAddress": "aabbccddeeff"})
    envelope = dispatch(service, "get-tac-devices")
    assert envelope["success"] is True
    assert envelope["devices"] == [
        {
            "id": "t1",
            "name": "Board room",
            "macAddress": "AA:BB:CC:DD:EE:FF",
            "location": None,
            "lastSeen": None,
            "status": None,
        }
    ]


def test_get_tac_devices_failure(service, devices):
    devices.read_error = graph_error(403, "Forbidden")
    envelope = dispatch(service, "get-tac-devices")
    assert envelope["success"] is False
    assert envelope["statusCode"] == 403
    assert envelope["error"].startswith("Failed to get Teams devices: ")


def test_local_channels_work_without_directories(groups):
    local = ProvisioningService(None, None, groups=groups)
    for name, payload in (
        ("validate-device", SERIAL),
        ("format-mac-address", "aa-bb"),
        ("group-diagnostic", None),
    ):
        assert name in LOCAL_CHANNELS
        assert dispatch(local, name, payload)["success"] is True
