# app/services/preview_service.py
# Preview Synchronizer: un render vigente por (template, state), cercado por generación
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import BackgroundTasks

from app.core.errors import BuilderError
from app.core.settings import settings
from app.db.session import SessionLocal
from app.services.graph_service import current_state
from app.services.render_client import build_renderer

logger = logging.getLogger(__name__)

SlotKey = Tuple[int, str]
Loader = Callable[[int, str], Dict[str, Any]]


@dataclass
class PreviewStatus:
    template_id: int
    state: str
    generation: int = 0
    status: str = "idle"          # idle | pending | rendering | ready | error
    revision: Optional[int] = None
    fingerprint: Optional[str] = None
    render_token: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _Slot:
    status: PreviewStatus
    task: Optional[asyncio.Task] = None
    rendered_fingerprint: Optional[str] = None
    history: list = field(default_factory=list)


def load_state_from_db(template_id: int, state: str) -> Dict[str, Any]:
    db = SessionLocal()
    try:
        return current_state(db, template_id=template_id, state=state)
    finally:
        db.close()


class PreviewSynchronizer:
    """
    request_preview() nunca espera al render: sube la generación, cancela el render en vuelo
    y lanza uno nuevo. Un resultado de una generación vieja se descarta.
    """

    def __init__(self, *, renderer=None, loader: Optional[Loader] = None) -> None:
        self._renderer = renderer if renderer is not None else build_renderer()
        self._loader: Loader = loader or load_state_from_db
        self._slots: Dict[SlotKey, _Slot] = {}

    def _slot(self, template_id: int, state: str) -> _Slot:
        key = (template_id, state)
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot(status=PreviewStatus(template_id=template_id, state=state))
        return slot

    def status(self, template_id: int, state: str = "draft") -> PreviewStatus:
        return replace(self._slot(template_id, state).status)

    def request_preview(self, template_id: int, state: str = "draft") -> PreviewStatus:
        """Debe llamarse dentro de un event loop en marcha."""
        slot = self._slot(template_id, state)
        slot.status.generation += 1
        generation = slot.status.generation
        if slot.task is not None and not slot.task.done():
            slot.task.cancel()
        slot.status.status = "pending"
        slot.status.error = None
        slot.task = asyncio.get_running_loop().create_task(self._run(slot, generation))
        return replace(slot.status)

    async def _run(self, slot: _Slot, generation: int) -> None:
        st = slot.status
        try:
            doc = await asyncio.to_thread(self._loader, st.template_id, st.state)
            if generation != st.generation:
                return
            fingerprint = doc["fingerprint"]
            st.revision = doc.get("revision")
            if fingerprint == slot.rendered_fingerprint and st.render_token:
                st.status = "ready"
                logger.debug("Preview %s/%s unchanged; keeping %s", st.template_id, st.state, st.render_token)
                return

            st.status = "rendering"
            token = await self._renderer.render(
                template_id=st.template_id,
                state=st.state,
                revision=st.revision or 0,
                fingerprint=fingerprint,
            )
            if generation != st.generation:
                logger.debug("Dropping superseded preview generation %d", generation)
                return
            slot.rendered_fingerprint = fingerprint
            st.fingerprint = fingerprint
            st.render_token = token
            st.status = "ready"
            slot.history.append(generation)
        except BuilderError as e:
            if generation == st.generation:
                st.status = "error"
                st.error = e.message
            logger.warning("Preview %s/%s failed: %s", st.template_id, st.state, e.message)
        except Exception as e:
            # CancelledError no entra aquí: una generación nueva lo cancela y se propaga
            if generation == st.generation:
                st.status = "error"
                st.error = str(e) or type(e).__name__
            logger.exception("Preview %s/%s crashed", st.template_id, st.state)

    async def wait(self, template_id: int, state: str = "draft") -> PreviewStatus:
        slot = self._slot(template_id, state)
        while slot.task is not None and not slot.task.done():
            task = slot.task
            try:
                await task
            except asyncio.CancelledError:
                # cancelado por una generación más nueva; seguimos esperando a la vigente
                if task is slot.task:
                    raise
        return replace(slot.status)

    def rendered_generations(self, template_id: int, state: str = "draft") -> list:
        return list(self._slot(template_id, state).history)


_synchronizer: Optional[PreviewSynchronizer] = None


def get_preview_sync() -> PreviewSynchronizer:
    global _synchronizer
    if _synchronizer is None:
        _synchronizer = PreviewSynchronizer()
    return _synchronizer


async def _refresh(sync: PreviewSynchronizer, template_id: int, state: str) -> None:
    sync.request_preview(template_id, state)


def schedule_preview(
    background_tasks: BackgroundTasks,
    sync: PreviewSynchronizer,
    template_id: int,
    state: str = "draft",
) -> None:
    """Refresco automático tras una mutación confirmada; corre después de enviar la respuesta."""
    if not settings.PREVIEW_AUTO_REFRESH:
        return
    background_tasks.add_task(_refresh, sync, template_id, state)
