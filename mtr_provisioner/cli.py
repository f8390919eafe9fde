"""Command line interface for the Teams Rooms provisioning console."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from .config import AppConfig, ConfigurationError, load_config, resolve_config_path
from .graph_client import GraphClientError
from .handlers import LOCAL_CHANNELS, dispatch, list_channels
from .logging_setup import configure_logging
from .models import GROUP_ROLES
from .rules import is_complete_mac, normalize_mac, validate_serial
from .services import ProvisioningService, build_local_service, build_service

app = typer.Typer(help="Provision Teams Rooms devices and resource accounts through Microsoft Graph.")
device_app = typer.Typer(help="Intune and Teams Admin Center device operations.")
account_app = typer.Typer(help="Resource account operations.")
group_app = typer.Typer(help="Group membership for resource accounts.")
app.add_typer(device_app, name="device")
app.add_typer(account_app, name="account")
app.add_typer(group_app, name="group")

_CONFIG_OPTION = typer.Option(
    None, "--config", help="Path to a specific settings file (overrides default)."
)
_ROLE_HELP = "Group role: " + ", ".join(sorted(GROUP_ROLES))


def _load_configuration(config_path: Optional[Path]) -> AppConfig:
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)
    configure_logging(config.logging)
    return config


def _build_service(config: AppConfig) -> ProvisioningService:
    try:
        return build_service(config)
    except GraphClientError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _run(channel_name: str, payload: Any, config_path: Optional[Path]) -> None:
    config = _load_configuration(config_path)
    if channel_name in LOCAL_CHANNELS and not config.graph.has_credentials:
        service = build_local_service(config)
    else:
        service = _build_service(config)
    envelope = dispatch(service, channel_name, payload)
    typer.echo(json.dumps(envelope, indent=2, default=str))
    if not envelope.get("success"):
        raise typer.Exit(code=1)


def _role_key(role: str) -> str:
    if role not in GROUP_ROLES:
        raise typer.BadParameter(_ROLE_HELP, param_hint="--role")
    return role


# ---------------------------------------------------------------------- #
# Devices                                                                #
# ---------------------------------------------------------------------- #
@device_app.command("validate")
def validate_device(serial: str = typer.Argument(..., help="Device serial number.")) -> None:
    """Validate a serial number locally without contacting Graph."""

    result = validate_serial(serial)
    typer.echo(result.message)
    if not result.is_valid:
        raise typer.Exit(code=1)


@device_app.command("check")
def check_device(
    serial: str = typer.Argument(..., help="Device serial number."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Check whether a serial number is imported into Intune."""

    _run("check-intune-device", {"serialNumber": serial}, config_path)


@device_app.command("provision")
def provision_device(
    serial: str = typer.Argument(..., help="Device serial number."),
    description: Optional[str] = typer.Option(None, "--description", help="Intune description."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Import a serial number into Intune unless it already exists."""

    _run("provision-intune", {"serialNumber": serial, "description": description}, config_path)


@device_app.command("format-mac")
def format_mac(mac_address: str = typer.Argument(..., help="MAC address in any notation.")) -> None:
    """Print the canonical form of a MAC address."""

    canonical = normalize_mac(mac_address)
    typer.echo(canonical)
    if not is_complete_mac(canonical):
        typer.echo("MAC address is incomplete.", err=True)
        raise typer.Exit(code=1)


@device_app.command("tac")
def check_tac_device(
    mac_address: str = typer.Argument(..., help="MAC address of the Teams device."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Check whether a device is registered in Teams Admin Center."""

    _run("check-tac-device", {"macAddress": mac_address}, config_path)


@device_app.command("tac-list")
def list_tac_devices(config_path: Optional[Path] = _CONFIG_OPTION) -> None:
    """List the devices registered in Teams Admin Center."""

    _run("get-tac-devices", None, config_path)


# ---------------------------------------------------------------------- #
# Accounts                                                               #
# ---------------------------------------------------------------------- #
@account_app.command("check")
def check_account(
    upn: str = typer.Argument(..., help="Resource account UPN."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Look up a resource account under its own and the tenant default domain."""

    _run("check-resource-account", {"upn": upn}, config_path)


@account_app.command("create")
def create_account(
    upn: str = typer.Argument(..., help="Resource account UPN."),
    display_name: str = typer.Option(..., "--display-name", help="Display name of the room."),
    password: Optional[str] = typer.Option(
        None, "--password", help="Initial password; generated when omitted."
    ),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Create a resource account that does not exist yet."""

    payload = {"upn": upn, "displayName": display_name, "password": password}
    _run("create-resource-account", payload, config_path)


@account_app.command("update")
def update_account(
    upn: str = typer.Argument(..., help="Resource account UPN."),
    display_name: str = typer.Argument(..., help="New display name."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Change the display name of a resource account."""

    _run("update-resource-account", {"upn": upn, "displayName": display_name}, config_path)


@account_app.command("reset-password")
def reset_password(
    upn: str = typer.Argument(..., help="Resource account UPN."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Set a new random, non-expiring password."""

    _run("reset-account-password", {"upn": upn}, config_path)


@account_app.command("verify-password")
def verify_password(
    upn: str = typer.Argument(..., help="Resource account UPN."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Check that the account password is set to never expire."""

    _run("verify-account-password", {"upn": upn}, config_path)


@account_app.command("unlock-status")
def unlock_status(
    upn: str = typer.Argument(..., help="Resource account UPN."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Check that sign-in is not blocked for the account."""

    _run("check-account-unlock", {"upn": upn}, config_path)


# ---------------------------------------------------------------------- #
# Groups                                                                 #
# ---------------------------------------------------------------------- #
@group_app.command("check")
def check_group(
    upn: str = typer.Argument(..., help="Resource account UPN."),
    role: str = typer.Option(..., "--role", help=_ROLE_HELP),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Report whether the account is a member of the group."""

    payload = {"upn": upn, "role": _role_key(role), "action": "check"}
    _run("group-membership", payload, config_path)


@group_app.command("add")
def add_to_group(
    upn: str = typer.Argument(..., help="Resource account UPN."),
    role: str = typer.Option(..., "--role", help=_ROLE_HELP),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Add the account to the group; no-op when already a member."""

    payload = {"upn": upn, "role": _role_key(role), "action": "add"}
    _run("group-membership", payload, config_path)


@group_app.command("remove")
def remove_from_group(
    upn: str = typer.Argument(..., help="Resource account UPN."),
    role: str = typer.Option(..., "--role", help=_ROLE_HELP),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Remove the account from the group; no-op when not a member."""

    payload = {"upn": upn, "role": _role_key(role), "action": "remove"}
    _run("group-membership", payload, config_path)


# ---------------------------------------------------------------------- #
# Diagnostics / bridge                                                   #
# ---------------------------------------------------------------------- #
@app.command("diagnostics")
def diagnostics(config_path: Optional[Path] = _CONFIG_OPTION) -> None:
    """Show configured group ids and test the Graph connection."""

    config = _load_configuration(config_path)
    service = _build_service(config)
    typer.echo(json.dumps(dispatch(service, "group-diagnostic"), indent=2))
    connection = dispatch(service, "test-connection")
    typer.echo(json.dumps(connection, indent=2))
    if not connection.get("success"):
        raise typer.Exit(code=1)


@app.command("check-env")
def check_env(config_path: Optional[Path] = _CONFIG_OPTION) -> None:
    """Show which credentials and group ids are set, without their values."""

    resolved = resolve_config_path(config_path)
    if resolved.exists():
        typer.echo(f"Configuration file: {resolved}")
    else:
        typer.echo(f"Configuration file not found at {resolved}; using environment only.")

    config = _load_configuration(config_path)
    values: Dict[str, Optional[str]] = {
        "graph.tenant_id": config.graph.tenant_id,
        "graph.client_id": config.graph.client_id,
        "graph.client_secret": config.graph.client_secret,
        "groups.resource_account": config.groups.resource_account,
        "groups.room_account": config.groups.room_account,
        "groups.pro_license": config.groups.pro_license,
    }
    missing = False
    for name, value in values.items():
        if value:
            typer.echo(f"  [ok] {name} is set ({len(value)} characters)")
        else:
            missing = True
            typer.echo(f"  [missing] {name} is NOT SET")
    if missing:
        raise typer.Exit(code=1)


@app.command("invoke")
def invoke(
    channel_name: str = typer.Argument(..., help="Handler channel, e.g. check-resource-account."),
    data: Optional[str] = typer.Argument(
        None, help="JSON payload, or a bare value such as a UPN or serial number."
    ),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Call any handler by its channel name."""

    if channel_name not in list_channels():
        typer.echo(f"Invalid channel: {channel_name}")
        raise typer.Exit(code=1)
    payload: Any = data
    if data is not None:
        try:
            parsed = json.loads(data)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            payload = parsed
    _run(channel_name, payload, config_path)


@app.command("serve")
def serve(
    config_path: Optional[Path] = _CONFIG_OPTION,
    host: Optional[str] = typer.Option(None, help="Interface to bind (default from settings)."),
    port: Optional[int] = typer.Option(None, help="Port to bind (default from settings)."),
) -> None:
    """Run the local JSON bridge used by the console front end."""

    from .web import create_app

    config = _load_configuration(config_path)
    web_app = create_app(config_path)
    web_app.run(host=host or config.web.host, port=port or config.web.port, threaded=True)


def run():
    app()


if __name__ == "__main__":
    run()
