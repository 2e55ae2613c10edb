# app/services/template_lock.py
# Punto de serialización por Template: lock en proceso + fila FOR UPDATE + commit/rollback
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import ConcurrencyConflict, NotFound
from app.core.settings import settings
from app.db.session import transactional
from app.models.builder import Template, Theme

logger = logging.getLogger(__name__)


class MutationLocks:
    """One lock per scope key (("template", id) or ("theme", id))."""

    def __init__(self) -> None:
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: Hashable, timeout: float | None = None) -> Iterator[None]:
        wait = settings.TEMPLATE_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        lock = self._lock_for(key)
        if not lock.acquire(timeout=max(0.0, wait)):
            logger.warning("Mutation lock busy for %s after %.2fs", key, wait)
            raise ConcurrencyConflict(
                f"Another mutation is in flight for {key[0]} {key[1]}",
                retry_after=max(1.0, wait),
            )
        try:
            yield
        finally:
            lock.release()


mutation_locks = MutationLocks()


def load_template_for_update(db: Session, template_id: int) -> Template:
    template = db.execute(
        select(Template).where(Template.id == template_id).with_for_update()
    ).scalar_one_or_none()
    if not template:
        raise NotFound(f"Template {template_id} not found")
    return template


@contextmanager
def template_mutation(db: Session, template_id: int) -> Iterator[Template]:
    """
    Unidad de trabajo atómica sobre un Template: o se aplica completa o no se aplica.
    Lanza ConcurrencyConflict si otra mutación del mismo Template no suelta el lock a tiempo.
    """
    with mutation_locks.hold(("template", template_id)):
        with transactional(db):
            yield load_template_for_update(db, template_id)


@contextmanager
def theme_mutation(db: Session, theme_id: int) -> Iterator[Theme]:
    with mutation_locks.hold(("theme", theme_id)):
        with transactional(db):
            theme = db.execute(
                select(Theme).where(Theme.id == theme_id).with_for_update()
            ).scalar_one_or_none()
            if not theme:
                raise NotFound(f"Theme {theme_id} not found")
            yield theme
