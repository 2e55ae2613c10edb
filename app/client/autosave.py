# app/client/autosave.py
# Autosave del editor: un worker por entidad sucia, debounce + techo, un solo save en vuelo
from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from app.core.errors import BuilderError, ConcurrencyConflict, TransportFailure, ValidationError
from app.core.settings import settings
from app.services.ordering_service import dedupe_stable

logger = logging.getLogger(__name__)


class SaveStatus(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    SAVING = "saving"
    ERROR = "error"


ENTITY_KINDS = ("section", "block", "theme", "section_order", "block_order")


@dataclass(frozen=True)
class EntityKey:
    kind: str
    template_id: Optional[int] = None
    section_uid: Optional[str] = None
    block_uid: Optional[str] = None
    theme_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.kind not in ENTITY_KINDS:
            raise ValueError(f"Unknown entity kind '{self.kind}'")

    @classmethod
    def section(cls, template_id: int, section_uid: str) -> "EntityKey":
        return cls("section", template_id=template_id, section_uid=section_uid)

    @classmethod
    def block(cls, template_id: int, section_uid: str, block_uid: str) -> "EntityKey":
        return cls("block", template_id=template_id, section_uid=section_uid, block_uid=block_uid)

    @classmethod
    def theme(cls, theme_id: int) -> "EntityKey":
        return cls("theme", theme_id=theme_id)

    @classmethod
    def section_order(cls, template_id: int) -> "EntityKey":
        return cls("section_order", template_id=template_id)

    @classmethod
    def block_order(cls, template_id: int, section_uid: str) -> "EntityKey":
        return cls("block_order", template_id=template_id, section_uid=section_uid)


Listener = Callable[[EntityKey, SaveStatus], None]


@dataclass
class _Entity:
    status: SaveStatus = SaveStatus.CLEAN
    pending: Any = None
    version: int = 0
    saved_version: int = 0
    first_dirty: Optional[float] = None
    last_edit: Optional[float] = None
    attempts: int = 0
    force: bool = False
    errors: Dict[str, List[str]] = field(default_factory=dict)
    wake: asyncio.Event = field(default_factory=asyncio.Event)
    worker: Optional[asyncio.Task] = None


class AutosaveOrchestrator:
    """
    edit() sólo anota el valor y despierta al worker; nunca cancela timers.
    deadline = min(last_edit + debounce, first_dirty + max_interval).
    """

    def __init__(
        self,
        client,
        *,
        debounce: float | None = None,
        max_interval: float | None = None,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.debounce = settings.AUTOSAVE_DEBOUNCE_SECONDS if debounce is None else debounce
        self.max_interval = settings.AUTOSAVE_MAX_INTERVAL_SECONDS if max_interval is None else max_interval
        self.max_retries = settings.AUTOSAVE_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = settings.AUTOSAVE_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        self._clock = clock
        self._entities: Dict[EntityKey, _Entity] = {}
        self._listeners: List[Listener] = []

    # -------- observación --------
    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def status(self, key: EntityKey) -> SaveStatus:
        ent = self._entities.get(key)
        return ent.status if ent else SaveStatus.CLEAN

    def pending_values(self, key: EntityKey) -> Any:
        ent = self._entities.get(key)
        return copy.deepcopy(ent.pending) if ent else None

    def field_errors(self, key: EntityKey) -> Dict[str, List[str]]:
        ent = self._entities.get(key)
        return dict(ent.errors) if ent else {}

    def _set_status(self, key: EntityKey, ent: _Entity, status: SaveStatus) -> None:
        if ent.status == status:
            return
        ent.status = status
        for listener in list(self._listeners):
            try:
                listener(key, status)
            except Exception:
                logger.exception("Autosave listener failed for %s", key)

    def _fail(self, key: EntityKey, ent: _Entity) -> None:
        # error es transitorio: se notifica y vuelve a dirty con los valores intactos
        self._set_status(key, ent, SaveStatus.ERROR)
        self._set_status(key, ent, SaveStatus.DIRTY)

    # -------- edición --------
    def edit(self, key: EntityKey, values: Any) -> None:
        """Debe llamarse dentro del event loop del editor."""
        ent = self._entities.setdefault(key, _Entity())
        now = self._clock()
        ent.pending = copy.deepcopy(values)
        ent.version += 1
        ent.last_edit = now
        ent.attempts = 0
        if ent.first_dirty is None:
            ent.first_dirty = now
        if ent.status != SaveStatus.SAVING:
            self._set_status(key, ent, SaveStatus.DIRTY)
        ent.wake.set()
        self._ensure_worker(key, ent)

    def _ensure_worker(self, key: EntityKey, ent: _Entity) -> None:
        if ent.worker is None or ent.worker.done():
            ent.worker = asyncio.get_running_loop().create_task(self._work(key, ent))

    async def flush(self, key: Optional[EntityKey] = None) -> None:
        """Guarda ya lo pendiente (de una entidad o de todas) y espera a que los workers terminen."""
        keys = [key] if key is not None else list(self._entities)
        workers = []
        for k in keys:
            ent = self._entities.get(k)
            if ent is None:
                continue
            if ent.version != ent.saved_version:
                ent.force = True
                ent.attempts = 0
                ent.wake.set()
                self._ensure_worker(k, ent)
            if ent.worker is not None and not ent.worker.done():
                workers.append(ent.worker)
        if workers:
            await asyncio.gather(*workers)

    async def close(self) -> None:
        tasks = [e.worker for e in self._entities.values() if e.worker and not e.worker.done()]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # -------- worker --------
    async def _sleep_or_wake(self, ent: _Entity, delay: float) -> bool:
        """True si una edición nueva lo despertó antes de tiempo."""
        ent.wake.clear()
        try:
            await asyncio.wait_for(ent.wake.wait(), timeout=max(0.0, delay))
            return True
        except asyncio.TimeoutError:
            return False

    async def _retry_later(self, key: EntityKey, ent: _Entity, reason: str, min_delay: float = 0.0) -> bool:
        """Vuelve a dirty y espera el backoff. False si ya no quedan reintentos."""
        ent.attempts += 1
        if ent.first_dirty is None:
            ent.first_dirty = self._clock()
        self._fail(key, ent)
        if ent.attempts > self.max_retries:
            logger.warning("Autosave for %s gave up after %d attempt(s): %s", key, ent.attempts, reason)
            return False
        delay = max(self.retry_backoff * ent.attempts, min_delay)
        if not await self._sleep_or_wake(ent, delay):
            ent.force = True
        return True

    async def _work(self, key: EntityKey, ent: _Entity) -> None:
        while ent.version != ent.saved_version:
            if not ent.force:
                deadline = min(ent.last_edit + self.debounce, ent.first_dirty + self.max_interval)
                delay = deadline - self._clock()
                if delay > 0:
                    await self._sleep_or_wake(ent, delay)
                    continue
            ent.force = False

            version = ent.version
            payload = copy.deepcopy(ent.pending)
            ent.first_dirty = None
            self._set_status(key, ent, SaveStatus.SAVING)
            try:
                result = await self._save(key, payload)
            except (TransportFailure, ConcurrencyConflict) as e:
                min_delay = e.retry_after if isinstance(e, ConcurrencyConflict) else 0.0
                if not await self._retry_later(key, ent, e.message, min_delay):
                    return
                continue
            except ValidationError as e:
                ent.errors = e.field_errors
                self._fail(key, ent)
                if ent.version == version:
                    return
                continue
            except BuilderError as e:
                ent.errors = {"_": [e.message]}
                self._fail(key, ent)
                if ent.version == version:
                    return
                continue
            except Exception as e:
                logger.exception("Autosave for %s raised an unexpected error", key)
                if not await self._retry_later(key, ent, str(e)):
                    return
                continue

            errors = (result or {}).get("errors") or {}
            ent.attempts = 0
            if errors:
                # el servidor aplicó lo válido; lo rechazado espera a una nueva edición
                ent.errors = errors
                self._fail(key, ent)
                if ent.version == version:
                    return
                continue

            ent.errors = {}
            ent.saved_version = version
            if ent.version == version:
                self._set_status(key, ent, SaveStatus.CLEAN)
            else:
                self._set_status(key, ent, SaveStatus.DIRTY)
        ent.force = False
        if ent.status != SaveStatus.CLEAN and ent.version == ent.saved_version:
            self._set_status(key, ent, SaveStatus.CLEAN)

    async def _save(self, key: EntityKey, payload: Any) -> Dict[str, Any]:
        if key.kind == "section":
            return await self.client.save_section_settings(key.template_id, key.section_uid, payload)
        if key.kind == "block":
            return await self.client.save_block_settings(key.template_id, key.section_uid, key.block_uid, payload)
        if key.kind == "theme":
            return await self.client.save_theme_settings(key.theme_id, payload)
        order, _ = dedupe_stable(payload or [])
        if key.kind == "section_order":
            return await self.client.reorder_sections(key.template_id, order)
        return await self.client.reorder_blocks(key.template_id, key.section_uid, order)
