"""Flask-powered JSON bridge between the console front end and the handlers."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from flask import Flask, g, has_request_context, jsonify, request

from .config import AppConfig, ConfigurationError, load_config
from .graph_client import GraphConfigurationError
from .handlers import LOCAL_CHANNELS, UnknownChannelError, dispatch, list_channels
from .services import (
    ProvisioningService,
    build_local_service,
    build_service,
    group_diagnostics,
)


def create_app(
    config_path: Optional[Path | str] = None,
    service: Optional[ProvisioningService] = None,
) -> Flask:
    """Create and configure the Flask application.

    ``service`` replaces the Graph-backed service, mainly for tests.
    """

    app = Flask(__name__)
    app.config["CONFIG_PATH"] = Path(config_path) if config_path else None
    app.config["JSON_SORT_KEYS"] = False
    if service is not None:
        app.config["_PROVISIONING_SERVICE"] = service
        app.config["_SERVICE_INJECTED"] = True

    register_routes(app)
    return app


def register_routes(app: Flask) -> None:
    """Attach all API routes to the provided Flask app."""

    @app.get("/api/channels")
    def api_channels() -> Any:
        return jsonify({"items": list_channels()})

    @app.get("/api/status")
    def api_status() -> Any:
        return jsonify(_build_status(app))

    @app.post("/api/<string:channel_name>")
    def api_invoke(channel_name: str) -> Any:
        payload = request.get_json(silent=True)
        if channel_name not in list_channels():
            return _unknown_channel(app, channel_name)
        try:
            service = _get_service(app, local=channel_name in LOCAL_CHANNELS)
        except (ConfigurationError, GraphConfigurationError) as exc:
            app.logger.error("Cannot serve %s: %s", channel_name, exc)
            return jsonify({"success": False, "error": str(exc), "errorType": "configuration"}), 503

        try:
            envelope = dispatch(service, channel_name, payload)
        except UnknownChannelError:
            return _unknown_channel(app, channel_name)

        if not envelope.get("success"):
            app.logger.info("%s failed: %s", channel_name, envelope.get("error"))
        return jsonify(envelope)


def _unknown_channel(app: Flask, channel_name: str) -> Any:
    app.logger.warning("Rejected unknown channel %s", channel_name)
    payload = {
        "success": False,
        "error": f"Invalid channel: {channel_name}",
        "errorType": "channel",
    }
    return jsonify(payload), 404


def _load_app_config(app: Flask) -> AppConfig:
    if has_request_context():
        cached = getattr(g, "_app_config", None)
        if cached is None:
            cached = load_config(app.config.get("CONFIG_PATH"))
            g._app_config = cached
        return cached
    return load_config(app.config.get("CONFIG_PATH"))


def _service_signature(config: AppConfig) -> Tuple[Any, ...]:
    return (
        config.graph.tenant_id,
        config.graph.client_id,
        config.graph.client_secret,
        config.graph.timeout,
        config.groups.resource_account,
        config.groups.room_account,
        config.groups.pro_license,
        config.accounts.password_length,
        config.accounts.usage_location,
    )


def _get_service(app: Flask, local: bool = False) -> ProvisioningService:
    if app.config.get("_SERVICE_INJECTED"):
        return app.config["_PROVISIONING_SERVICE"]

    config = _load_app_config(app)
    if local and not config.graph.has_credentials:
        return build_local_service(config)

    signature = _service_signature(config)
    cached_signature = app.config.get("_SERVICE_SIGNATURE")
    cached_service = app.config.get("_PROVISIONING_SERVICE")
    if cached_service and cached_signature == signature:
        return cached_service

    service = build_service(config)
    app.config["_PROVISIONING_SERVICE"] = service
    app.config["_SERVICE_SIGNATURE"] = signature
    return service


def _build_status(app: Flask) -> Dict[str, Any]:
    status: Dict[str, Any] = {
        "configured": False,
        "error": None,
        "message": "Microsoft Graph integration is not configured.",
        "groups": {},
    }
    if app.config.get("_SERVICE_INJECTED"):
        status.update(configured=True, message="Using injected provisioning service.")
        status["groups"] = app.config["_PROVISIONING_SERVICE"].diagnostic_info()
        return status

    try:
        config = _load_app_config(app)
    except ConfigurationError as exc:
        status["error"] = str(exc)
        return status

    status["groups"] = group_diagnostics(config.groups)
    if config.graph.has_credentials:
        status["configured"] = True
        status["message"] = "Microsoft Graph credentials configured."
    return status


__all__ = ["create_app", "register_routes"]
