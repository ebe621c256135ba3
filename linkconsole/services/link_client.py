"""HTTP client for the remote WhatsApp link service.

Thin wrapper around httpx that talks to the provider's webhook endpoints.
Every call is keyed by the connection name. Hard failures (non-2xx,
network errors, malformed bodies) raise RemoteError; callers decide
whether a given operation treats that as fatal.
"""

import json
import logging
from typing import Any

import httpx

from linkconsole.services.connection_types import (
    CreatedInstance,
    ProbeResult,
    ProbeStatus,
    Profile,
    QRPayload,
)
from linkconsole.services.errors import RemoteError

logger = logging.getLogger(__name__)

DEFAULT_PATHS: dict[str, str] = {
    "create": "/webhook/create-instance",
    "profile": "/webhook/connection-profile",
    "qr": "/webhook/connect",
    "status": "/webhook/connection-status",
    "disconnect": "/webhook/disconnect-instance",
    "delete": "/webhook/delete-instance",
}

_OPEN_TOKENS = frozenset({"open"})
_CLOSED_TOKENS = frozenset({"close", "closed"})


def classify_status_token(token: Any) -> ProbeStatus:
    """Classify a raw status token, case-insensitively."""
    if not isinstance(token, str):
        return ProbeStatus.indeterminate
    normalized = token.strip().strip('"').strip().lower()
    if normalized in _OPEN_TOKENS:
        return ProbeStatus.open
    if normalized in _CLOSED_TOKENS:
        return ProbeStatus.closed
    return ProbeStatus.indeterminate


def _first_object(data: Any) -> Any:
    """Webhook workflows sometimes wrap the payload in a one-element list."""
    if isinstance(data, list):
        return data[0] if data else {}
    return data


def parse_profile(data: Any) -> Profile:
    """Extract profile fields from a provider body; missing fields stay None."""
    data = _first_object(data)
    if not isinstance(data, dict):
        return Profile()
    return Profile(
        display_name=data.get("profilename") or None,
        contact_address=data.get("contato") or None,
        avatar_ref=data.get("fotodoperfil") or None,
    )


def parse_probe_body(text: str) -> ProbeResult:
    """Interpret a status probe body.

    Accepts a bare text token ("Open"), a JSON string, a JSON object with a
    ``status``/``state`` field (optionally nested under ``instance``), and
    profile fields riding alongside. Anything unrecognised is indeterminate.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return ProbeResult(classify_status_token(text))

    data = _first_object(data)
    if isinstance(data, str):
        return ProbeResult(classify_status_token(data))
    if not isinstance(data, dict):
        return ProbeResult(ProbeStatus.indeterminate)

    token = data.get("status", data.get("state"))
    if token is None and isinstance(data.get("instance"), dict):
        instance = data["instance"]
        token = instance.get("state", instance.get("status"))

    profile = parse_profile(data)
    return ProbeResult(
        classify_status_token(token),
        None if profile.is_empty else profile,
    )


def parse_qr(data: Any, operation: str) -> QRPayload:
    """Extract a QR payload from ``{qrCode}`` or ``{base64, code}`` bodies."""
    data = _first_object(data)
    if not isinstance(data, dict):
        raise RemoteError.malformed(operation, "qr code")
    image = data.get("qrCode") or data.get("base64")
    text = data.get("code")
    if not image and not text:
        raise RemoteError.malformed(operation, "qr code")
    return QRPayload(image=image or None, text=text or None)


class LinkServiceClient:
    """Async client for the link provider's webhook contract.

    Args:
        base_url: Provider base URL.
        paths: Operation -> path overrides (see DEFAULT_PATHS).
        api_key: Optional key sent as the ``apikey`` header.
        timeout: Default per-request timeout in seconds.
        transport: Optional httpx transport (tests inject a fake).
    """

    def __init__(
        self,
        base_url: str,
        paths: dict[str, str] | None = None,
        api_key: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._paths = {**DEFAULT_PATHS, **(paths or {})}
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self) -> "LinkServiceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        *,
        params: dict[str, str] | None = None,
        json_body: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            return await self._client.request(
                method,
                self._paths[operation],
                params=params,
                json=json_body,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise RemoteError.timeout(operation) from e
        except httpx.HTTPError as e:
            logger.debug("Link service %s request failed: %s", operation, e)
            raise RemoteError.unreachable(operation) from e

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError.malformed(operation, "a JSON body") from e

    async def create_instance(self, name: str) -> CreatedInstance:
        """POST {connectionName}; returns instance id and the first QR code."""
        resp = await self._request("create", "POST", json_body={"connectionName": name})
        if not resp.is_success:
            raise RemoteError.http("create", resp.status_code)
        data = _first_object(self._json(resp, "create"))
        qr = parse_qr(data, "create")
        instance_id = data.get("instanceId") if isinstance(data, dict) else None
        return CreatedInstance(instance_id=instance_id, qr=qr)

    async def refresh_qr(self, name: str) -> QRPayload:
        """GET a fresh QR code for an existing instance."""
        resp = await self._request("qr", "GET", params={"connectionName": name})
        if not resp.is_success:
            raise RemoteError.http("qr", resp.status_code)
        return parse_qr(self._json(resp, "qr"), "qr")

    async def fetch_profile(self, name: str) -> Profile | None:
        """GET the linked profile.

        Returns:
            The (possibly partial) profile, or None when the provider
            reports the instance as unknown/unlinked (404).
        """
        resp = await self._request("profile", "GET", params={"connectionName": name})
        if resp.status_code == 404:
            return None
        if not resp.is_success:
            raise RemoteError.http("profile", resp.status_code)
        return parse_profile(self._json(resp, "profile"))

    async def probe_status(self, name: str, timeout: float | None = None) -> ProbeResult:
        """GET the coarse connection status, bounded by ``timeout``."""
        resp = await self._request(
            "status", "GET", params={"connectionName": name}, timeout=timeout
        )
        if not resp.is_success:
            raise RemoteError.http("status", resp.status_code)
        return parse_probe_body(resp.text)

    async def disconnect(self, name: str) -> None:
        """POST {instanceName} to log the device out."""
        resp = await self._request("disconnect", "POST", json_body={"instanceName": name})
        if not resp.is_success:
            raise RemoteError.http("disconnect", resp.status_code)

    async def delete_instance(self, name: str) -> None:
        """POST {instanceName} to remove the instance on the provider."""
        resp = await self._request("delete", "POST", json_body={"instanceName": name})
        if not resp.is_success:
            raise RemoteError.http("delete", resp.status_code)

    async def fetch_avatar(self, url: str) -> tuple[bytes, str]:
        """Download an avatar image; returns (content, content type)."""
        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as e:
            raise RemoteError.unreachable("avatar") from e
        if not resp.is_success:
            raise RemoteError.http("avatar", resp.status_code)
        return resp.content, resp.headers.get("content-type", "image/jpeg")
