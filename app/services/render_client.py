# app/services/render_client.py
# Cliente del render service externo (httpx async + reintentos lineales)
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from app.core.errors import TransportFailure
from app.core.settings import settings
from app.security.preview_tokens import create_preview_token

logger = logging.getLogger(__name__)


class RenderClient:
    """
    POST <RENDER_SERVICE_URL> con {template_id, state, preview_url}.
    El render service baja el grafo de /delivery/v1/preview?token=... y responde {"render_token": "..."}.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout if timeout is not None else settings.RENDER_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries if max_retries is not None else settings.RENDER_MAX_RETRIES)
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.RENDER_BACKOFF_SECONDS
        self._transport = transport

    async def _render_once(self, body: Dict[str, Any]) -> Optional[str]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.base_url, json=body)
            if not (200 <= resp.status_code < 300):
                logger.warning("Render service answered %s", resp.status_code)
                return None
            data = resp.json()
            if not isinstance(data, dict):
                logger.warning("Render service answered an unexpected body: %s", type(data).__name__)
                return None
            return str(data.get("render_token") or "")

    async def render(self, *, template_id: int, state: str, revision: int, fingerprint: str) -> str:
        token = create_preview_token(template_id=template_id, state=state, revision=revision)
        body = {
            "template_id": template_id,
            "state": state,
            "revision": revision,
            "fingerprint": fingerprint,
            "preview_url": f"{settings.PUBLIC_BASE_URL.rstrip('/')}/delivery/v1/preview?token={token}",
        }
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                render_token = await self._render_once(body)
                if render_token:
                    return render_token
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning("Render attempt %d for template %s failed: %s", attempt, template_id, e)
            if attempt < self.max_retries:
                await asyncio.sleep(self.backoff_seconds * attempt)
        raise TransportFailure(
            f"Render service unavailable for template {template_id}",
            detail={"attempts": self.max_retries, "reason": str(last_error) if last_error else "bad response"},
        )


class LocalRenderer:
    """Sin render service configurado: el token es un prefijo estable del fingerprint."""

    async def render(self, *, template_id: int, state: str, revision: int, fingerprint: str) -> str:
        return f"{state}-{template_id}-{fingerprint[:16]}"


def build_renderer():
    if settings.RENDER_SERVICE_URL:
        return RenderClient(settings.RENDER_SERVICE_URL)
    return LocalRenderer()
