"""Thin Redfish REST client.

All HTTP goes through a requests.Session. Calls are synchronous, so the
async wrappers hand them to the default executor under asyncio.wait_for.
requests applies the configured timeout to connect and read separately;
the whole call is bounded by twice that.

Only the document shapes the reconciler needs are interpreted here:
collection members, the first ComputerSystem/Manager, and the server
generation reported by Dell systems.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import requests
from requests.auth import HTTPBasicAuth

from .config import DEFAULT_HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

SERVICE_ROOT = "/redfish/v1"
SYSTEMS_COLLECTION = f"{SERVICE_ROOT}/Systems"
MANAGERS_COLLECTION = f"{SERVICE_ROOT}/Managers"
REGISTRIES_COLLECTION = f"{SERVICE_ROOT}/Registries"
ACCOUNT_SERVICE = f"{SERVICE_ROOT}/AccountService"

_GENERATION_PATTERN = re.compile(r"^\s*(\d+)G")


class RedfishError(Exception):
    """Raised on transport failures or HTTP error responses."""

    def __init__(self, message: str, uri: str = "", status_code: int | None = None) -> None:
        self.uri = uri
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class ManagedEndpoint:
    """One BMC: address, credentials and TLS policy.

    The normalised address is the endpoint lock key.
    """

    address: str
    username: str
    password: str = field(repr=False)
    ssl_insecure: bool = False

    @property
    def base_url(self) -> str:
        address = self.address.strip().rstrip("/")
        if not address.startswith(("http://", "https://")):
            address = f"https://{address}"
        return address

    @property
    def key(self) -> str:
        return urlsplit(self.base_url).netloc.lower()


@dataclass
class RedfishResponse:
    """Result of a PATCH/POST."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
    location: str | None = None


def _extract_error_message(response: requests.Response) -> str:
    """Pull the most specific message out of a Redfish error document."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason or f"HTTP {response.status_code}"

    error = payload.get("error", {}) if isinstance(payload, dict) else {}
    extended = error.get("@Message.ExtendedInfo") or []
    messages = [info.get("Message", "") for info in extended if isinstance(info, dict)]
    messages = [m for m in messages if m]
    if messages:
        return "; ".join(messages)
    return error.get("message") or response.reason or f"HTTP {response.status_code}"


def to_path(uri: str) -> str:
    """Reduce an absolute Location URL to its path component."""
    if uri.startswith(("http://", "https://")):
        return urlsplit(uri).path
    return uri


class RedfishClient:
    """Session-backed client for one ManagedEndpoint."""

    def __init__(
        self,
        endpoint: ManagedEndpoint,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout_seconds
        # requests bounds connect and read separately
        self._call_timeout = 2 * timeout_seconds
        self._session = requests.Session()
        self._session.auth = HTTPBasicAuth(endpoint.username, endpoint.password)
        self._session.verify = not endpoint.ssl_insecure
        self._session.headers.update(
            {"Accept": "application/json", "Content-Type": "application/json"}
        )

    @property
    def endpoint(self) -> ManagedEndpoint:
        return self._endpoint

    def close(self) -> None:
        self._session.close()

    def _request(self, method: str, path: str, body: dict[str, Any] | None) -> requests.Response:
        url = f"{self._endpoint.base_url}{to_path(path)}"
        try:
            response = self._session.request(method, url, json=body, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise RedfishError(f"{method} {path} failed: {e}", uri=path) from e

        if response.status_code >= 400:
            raise RedfishError(
                _extract_error_message(response),
                uri=path,
                status_code=response.status_code,
            )
        return response

    async def _run(self, method: str, path: str, body: dict[str, Any] | None) -> requests.Response:
        loop = asyncio.get_running_loop()
        logger.debug(
            "Redfish request",
            extra={"method": method, "uri": path, "endpoint": self._endpoint.key},
        )
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self._request, method, path, body),
                timeout=self._call_timeout,
            )
        except TimeoutError as e:
            logger.error(
                "Redfish request timed out",
                extra={"method": method, "uri": path, "timeout_seconds": self._call_timeout},
            )
            raise RedfishError(
                f"{method} {path} timed out after {self._call_timeout}s", uri=path
            ) from e

    async def get(self, path: str) -> dict[str, Any]:
        """GET a resource document."""
        response = await self._run("GET", path, None)
        try:
            document = response.json()
        except ValueError as e:
            raise RedfishError(f"GET {path} returned a non-JSON body", uri=path) from e
        if not isinstance(document, dict):
            raise RedfishError(f"GET {path} returned a non-object document", uri=path)
        return document

    async def patch(self, path: str, body: dict[str, Any]) -> RedfishResponse:
        return self._wrap(await self._run("PATCH", path, body))

    async def post(self, path: str, body: dict[str, Any]) -> RedfishResponse:
        return self._wrap(await self._run("POST", path, body))

    @staticmethod
    def _wrap(response: requests.Response) -> RedfishResponse:
        body: dict[str, Any] = {}
        if response.content:
            try:
                parsed = response.json()
            except ValueError:
                parsed = {}
            if isinstance(parsed, dict):
                body = parsed
        return RedfishResponse(
            status_code=response.status_code,
            body=body,
            location=response.headers.get("Location"),
        )


# =============================================================================
# Document helpers
# =============================================================================


def odata_id(document: dict[str, Any] | None) -> str:
    """Return the @odata.id of a link object, or an empty string."""
    if not isinstance(document, dict):
        return ""
    value = document.get("@odata.id", "")
    return value if isinstance(value, str) else ""


def settings_object_uri(document: dict[str, Any]) -> str:
    """Return the @Redfish.Settings SettingsObject URI of a resource, if advertised."""
    settings = document.get("@Redfish.Settings") or {}
    return odata_id(settings.get("SettingsObject"))


def supported_apply_times(document: dict[str, Any]) -> list[str] | None:
    """Return the apply times a settings-capable resource advertises, or None."""
    settings = document.get("@Redfish.Settings") or {}
    supported = settings.get("SupportedApplyTimes")
    if isinstance(supported, list):
        return [str(value) for value in supported]
    return None


async def collection_members(client: RedfishClient, path: str) -> list[str]:
    document = await client.get(path)
    return [odata_id(member) for member in document.get("Members", []) if odata_id(member)]


async def get_system(client: RedfishClient, system_id: str | None = None) -> dict[str, Any]:
    """Fetch a ComputerSystem by id, or the first one in the collection."""
    if system_id:
        return await client.get(f"{SYSTEMS_COLLECTION}/{system_id}")
    members = await collection_members(client, SYSTEMS_COLLECTION)
    if not members:
        raise RedfishError("No ComputerSystem found on endpoint", uri=SYSTEMS_COLLECTION)
    return await client.get(members[0])


async def get_manager(client: RedfishClient, manager_id: str | None = None) -> dict[str, Any]:
    """Fetch a Manager by id, or the first one in the collection."""
    if manager_id:
        return await client.get(f"{MANAGERS_COLLECTION}/{manager_id}")
    members = await collection_members(client, MANAGERS_COLLECTION)
    if not members:
        raise RedfishError("No Manager found on endpoint", uri=MANAGERS_COLLECTION)
    return await client.get(members[0])


def server_generation(system: dict[str, Any]) -> int | None:
    """Parse the generation from Oem.Dell.DellSystem.SystemGeneration ("16G Monolithic")."""
    dell = ((system.get("Oem") or {}).get("Dell") or {}).get("DellSystem") or {}
    value = dell.get("SystemGeneration")
    if not isinstance(value, str):
        return None
    match = _GENERATION_PATTERN.match(value)
    return int(match.group(1)) if match else None
