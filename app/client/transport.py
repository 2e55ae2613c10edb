# app/client/transport.py
# Cliente HTTP del builder (lado editor): httpx async, errores de vuelta a la taxonomía del core
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.errors import (
    BuilderError, ConcurrencyConflict, NotFound, OrderMismatch,
    PublishConflict, TransportFailure, ValidationError,
)

logger = logging.getLogger(__name__)


def _error_from_response(resp: httpx.Response) -> BuilderError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    kind = body.get("error")
    message = body.get("message") or f"HTTP {resp.status_code}"
    detail = body.get("detail") if isinstance(body.get("detail"), dict) else {}

    if kind == "ValidationError":
        return ValidationError(detail.get("fields") or {}, message=message)
    if kind == "OrderMismatch":
        return OrderMismatch(
            scope=detail.get("scope", "order"),
            missing=detail.get("missing") or [],
            unknown=detail.get("unknown") or [],
        )
    if kind == "NotFound" or resp.status_code == 404:
        return NotFound(message)
    if kind == "PublishConflict":
        return PublishConflict(detail.get("errors") or [], message=message)
    if kind == "ConcurrencyConflict":
        retry_after = float(resp.headers.get("Retry-After") or detail.get("retry_after") or 1.0)
        return ConcurrencyConflict(message, retry_after=retry_after)
    if resp.status_code >= 500:
        return TransportFailure(message, detail={"status": resp.status_code})
    return BuilderError(message, detail={"status": resp.status_code, **detail})


class BuilderApiClient:
    """
    Llamadas que usa el editor. Errores de red/5xx -> TransportFailure;
    el resto se reconstruye a partir del cuerpo {"error", "message", "detail"}.
    """

    def __init__(
        self,
        base_url: str,
        *,
        actor: Optional[str] = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        api_prefix: str = "/api/v1/builder",
    ) -> None:
        headers = {"X-User-Id": actor} if actor else {}
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport, headers=headers)
        self.prefix = api_prefix.rstrip("/")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BuilderApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, *, json: Any = None, params: Dict[str, Any] | None = None,
                       idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            resp = await self._client.request(method, f"{self.prefix}{path}", json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportFailure(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise _error_from_response(resp)
        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError as e:
            # p.ej. un proxy que contesta 200 con HTML
            logger.warning("%s %s returned an undecodable body", method, path)
            raise TransportFailure(f"{method} {path} returned an unreadable response") from e
        if not isinstance(body, dict):
            raise TransportFailure(f"{method} {path} returned an unexpected response shape")
        return body

    # -------- settings --------
    async def save_section_settings(self, template_id: int, section_uid: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"/templates/{template_id}/sections/{section_uid}/settings", json={"settings": values}
        )

    async def save_block_settings(self, template_id: int, section_uid: str, block_uid: str,
                                  values: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"/templates/{template_id}/sections/{section_uid}/blocks/{block_uid}/settings",
            json={"settings": values},
        )

    async def save_theme_settings(self, theme_id: int, values: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/themes/{theme_id}/settings", json={"settings": values})

    # -------- ordering --------
    async def reorder_sections(self, template_id: int, order: List[str]) -> Dict[str, Any]:
        return await self._request("PUT", f"/templates/{template_id}/sections/order", json={"order": order})

    async def reorder_blocks(self, template_id: int, section_uid: str, order: List[str]) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"/templates/{template_id}/sections/{section_uid}/blocks/order", json={"order": order}
        )

    # -------- draft / publish --------
    async def mutate(self, template_id: int, patch: Dict[str, Any], *, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("POST", f"/templates/{template_id}/draft", json=patch, idempotency_key=idempotency_key)

    async def publish(self, template_id: int) -> Dict[str, Any]:
        return await self._request("POST", f"/templates/{template_id}/publish")

    async def get_state(self, template_id: int, state: str = "draft") -> Dict[str, Any]:
        return await self._request("GET", f"/templates/{template_id}", params={"state": state})
