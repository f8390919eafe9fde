"""Microsoft Graph HTTP client shared by the device and identity directories."""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterator, List, Optional

import msal
import requests

from .config import GraphConfig


GRAPH_SCOPE = ["https://graph.microsoft.com/.default"]
GRAPH_ROOT_URL = "https://graph.microsoft.com"
REQUEST_TIMEOUT = 30

logger = logging.getLogger(__name__)


class GraphClientError(RuntimeError):
    """Base exception for Microsoft Graph client operations."""


class GraphConfigurationError(GraphClientError):
    """Raised when the Graph app registration is not configured."""


class GraphError(GraphClientError):
    """Raised when the Microsoft Graph API returns an error."""

    def __init__(self, status_code: int, error: str, description: str) -> None:
        super().__init__(f"{status_code}: {error} - {description}")
        self.status_code = status_code
        self.error = error
        self.description = description

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class GraphClient:
    """Client-credential Graph client; one instance is shared per process."""

    def __init__(self, config: GraphConfig, session: Optional[requests.Session] = None) -> None:
        if not config.has_credentials:
            raise GraphConfigurationError(
                "Microsoft Graph credentials are not configured. "
                "Provide tenant_id, client_id, and client_secret."
            )

        self._config = config
        self._authority = f"https://login.microsoftonline.com/{config.tenant_id}"
        self._app = msal.ConfidentialClientApplication(
            client_id=config.client_id,
            client_credential=config.client_secret,
            authority=self._authority,
        )
        self._token_lock = threading.Lock()
        self._session = session or requests.Session()
        self._timeout = config.timeout or REQUEST_TIMEOUT

    # ------------------------------------------------------------------ #
    # Token handling / HTTP helpers                                      #
    # ------------------------------------------------------------------ #
    def _acquire_token(self) -> str:
        with self._token_lock:
            result = self._app.acquire_token_silent(GRAPH_SCOPE, account=None)
            if not result:
                result = self._app.acquire_token_for_client(scopes=GRAPH_SCOPE)

        if "access_token" not in result:
            logger.error("Unable to acquire Graph token: %s", result.get("error"))
            raise GraphError(
                status_code=0,
                error=result.get("error", "token_error"),
                description=result.get("error_description", "Unable to acquire Graph token."),
            )
        return str(result["access_token"])

    def _url(self, path: str, version: str) -> str:
        if path.startswith("https://"):
            return path
        return f"{GRAPH_ROOT_URL}/{version}{path}"

    def request(self, method: str, path: str, version: str = "v1.0", **kwargs: Any) -> Dict[str, Any]:
        url = self._url(path, version)
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Authorization", f"Bearer {self._acquire_token()}")
        headers.setdefault("Accept", "application/json")
        if "json" in kwargs:
            headers.setdefault("Content-Type", "application/json")

        logger.debug("Graph %s %s", method, url)
        try:
            response = self._session.request(
                method,
                url,
                timeout=self._timeout,
                headers=headers,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise GraphError(0, "TransportError", str(exc)) from exc

        if response.status_code == 204:
            return {}

        if response.status_code >= 400:
            try:
                payload = response.json()
                error = payload.get("error", {})
                if isinstance(error, dict):
                    code = error.get("code", "GraphError")
                    message = error.get("message", response.text)
                else:
                    code = str(error) or "GraphError"
                    message = payload.get("error_description", response.text)
            except (ValueError, AttributeError):
                code = "GraphError"
                message = response.text or "Unknown Graph error."
            raise GraphError(response.status_code, code, message)

        if not response.content:
            return {}
        return response.json()

    def iter_collection(self, path: str, version: str = "v1.0", **kwargs: Any) -> Iterator[Dict[str, Any]]:
        """Yield every item of a collection, following ``@odata.nextLink`` pages."""

        result = self.request("GET", path, version=version, **kwargs)
        while True:
            for item in result.get("value") or []:
                yield item
            next_link = result.get("@odata.nextLink")
            if not next_link:
                return
            result = self.request("GET", next_link)

    def list_collection(self, path: str, version: str = "v1.0", **kwargs: Any) -> List[Dict[str, Any]]:
        return list(self.iter_collection(path, version=version, **kwargs))

    def test_connection(self) -> Dict[str, Any]:
        """Read the tenant organisation record; raises on failure."""

        result = self.request("GET", "/organization", params={"$select": "id,displayName"})
        organizations = result.get("value") or []
        return organizations[0] if organizations else {}


__all__ = [
    "GRAPH_ROOT_URL",
    "GraphClient",
    "GraphClientError",
    "GraphConfigurationError",
    "GraphError",
]
