# app/client/session.py
# Estado de drag por sesión de edición (sustituye al flag global "drag en curso")
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from app.services.ordering_service import dedupe_stable

logger = logging.getLogger(__name__)


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTING = "committing"


# (estado, evento) -> estado siguiente
TRANSITIONS: Dict[Tuple[DragState, str], DragState] = {
    (DragState.IDLE, "start_drag"): DragState.DRAGGING,
    (DragState.DRAGGING, "move"): DragState.DRAGGING,
    (DragState.DRAGGING, "cancel"): DragState.IDLE,
    (DragState.DRAGGING, "drop"): DragState.COMMITTING,
    (DragState.COMMITTING, "committed"): DragState.IDLE,
    (DragState.COMMITTING, "failed"): DragState.IDLE,
}


class InvalidTransition(Exception):
    def __init__(self, state: DragState, event: str) -> None:
        super().__init__(f"'{event}' is not allowed while {state.value}")
        self.state = state
        self.event = event


Reorder = Callable[[List[str]], Awaitable[Any]]


class EditSession:
    """
    Una lista ordenable (sections de un template o blocks de una section).
    Los clicks sólo cuentan en idle; commit_drag entrega el orden deduplicado al transporte.
    """

    def __init__(self, order: List[str], reorder: Reorder, *, scope: str = "sections") -> None:
        self.order, _ = dedupe_stable(order)
        self.scope = scope
        self._reorder = reorder
        self.state = DragState.IDLE
        self._working: List[str] = []
        self.dragged: Optional[str] = None
        self.selected: Optional[str] = None

    def _fire(self, event: str) -> DragState:
        nxt = TRANSITIONS.get((self.state, event))
        if nxt is None:
            raise InvalidTransition(self.state, event)
        logger.debug("%s drag: %s --%s--> %s", self.scope, self.state.value, event, nxt.value)
        self.state = nxt
        return nxt

    @property
    def working_order(self) -> List[str]:
        return list(self._working) if self.state != DragState.IDLE else list(self.order)

    # -------- clicks --------
    def can_click(self) -> bool:
        return self.state == DragState.IDLE

    def click(self, uid: str) -> bool:
        """Selecciona un item; se ignora (False) mientras hay un drag en curso."""
        if not self.can_click():
            return False
        self.selected = uid
        return True

    # -------- drag --------
    def start_drag(self, uid: str) -> None:
        if uid not in self.order:
            raise KeyError(uid)
        self._fire("start_drag")
        self.dragged = uid
        self._working = list(self.order)

    def move(self, to_index: int) -> List[str]:
        self._fire("move")
        self._working.remove(self.dragged)
        idx = max(0, min(int(to_index), len(self._working)))
        self._working.insert(idx, self.dragged)
        return list(self._working)

    def cancel(self) -> None:
        self._fire("cancel")
        self._working = []
        self.dragged = None

    async def commit_drag(self) -> List[str]:
        self._fire("drop")
        ordered, dropped = dedupe_stable(self._working)
        if dropped:
            logger.info("Dropped duplicate ids before commit: %s", dropped)
        try:
            result = await self._reorder(ordered)
        except Exception:
            self._fire("failed")
            self._working = []
            self.dragged = None
            raise
        self._fire("committed")
        if isinstance(result, dict) and isinstance(result.get("order"), list):
            self.order = list(result["order"])
        else:
            self.order = ordered
        self._working = []
        self.dragged = None
        return list(self.order)
