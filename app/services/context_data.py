# app/services/context_data.py
# Context Data: colecciones de solo lectura (categorías, menús...) que alimentan options_source
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol

import httpx

from app.core.settings import settings

logger = logging.getLogger(__name__)


class ContextDataProvider(Protocol):
    def fetch(self, keys: Iterable[str]) -> Dict[str, Any]: ...


class NullContextProvider:
    def fetch(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {}


class StaticContextProvider:
    """Lee un JSON {key: [items]} (archivo o dict ya cargado)."""

    def __init__(self, data: Mapping[str, Any] | None = None, *, path: str | Path | None = None) -> None:
        self._data: Dict[str, Any] = dict(data or {})
        if path is not None:
            p = Path(path)
            if p.exists():
                with p.open("r", encoding="utf-8") as fh:
                    self._data.update(json.load(fh))
            else:
                logger.warning("Context data file %s does not exist", p)

    def fetch(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {k: self._data[k] for k in keys if k in self._data}


class HttpContextProvider:
    """
    GET <base_url>?keys=a,b -> {"a": [...], "b": [...]}.
    Es una fuente de opciones para formularios: si falla, el formulario sale sin opciones.
    """

    def __init__(self, base_url: str, *, timeout: float | None = None, transport: httpx.BaseTransport | None = None) -> None:
        self.base_url = base_url
        self.timeout = timeout if timeout is not None else settings.CONTEXT_DATA_TIMEOUT_SECONDS
        self._transport = transport

    def fetch(self, keys: Iterable[str]) -> Dict[str, Any]:
        wanted = [k for k in keys]
        if not wanted:
            return {}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.get(self.base_url, params={"keys": ",".join(wanted)})
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Context data fetch failed for %s: %s", wanted, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: data[k] for k in wanted if k in data}


_provider: Optional[ContextDataProvider] = None


def get_context_provider() -> ContextDataProvider:
    global _provider
    if _provider is None:
        if settings.CONTEXT_DATA_URL:
            _provider = HttpContextProvider(settings.CONTEXT_DATA_URL)
        elif settings.CONTEXT_DATA_PATH:
            _provider = StaticContextProvider(path=settings.CONTEXT_DATA_PATH)
        else:
            _provider = NullContextProvider()
    return _provider


def set_context_provider(provider: Optional[ContextDataProvider]) -> None:
    global _provider
    _provider = provider


def load_context(keys: Iterable[str], extra: Mapping[str, Any] | None = None) -> Dict[str, Any]:
    """Datos del provider configurado; lo que venga en `extra` (request) tiene prioridad."""
    data = get_context_provider().fetch(list(keys))
    if extra:
        data.update(extra)
    return data
