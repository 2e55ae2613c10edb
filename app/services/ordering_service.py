# app/services/ordering_service.py
# Ordering Engine: posiciones 0..n-1 sin huecos ni duplicados para Sections y Blocks
from __future__ import annotations

import logging
from typing import Iterable, List, Protocol, Sequence, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import BuilderError, NotFound, OrderMismatch
from app.models.builder import Block, Section

logger = logging.getLogger(__name__)


class Positioned(Protocol):
    uid: str
    position: int


P = TypeVar("P", bound=Positioned)


def dedupe_stable(ids: Iterable[str]) -> Tuple[List[str], List[str]]:
    """
    Quita repetidos conservando la primera aparición.
    Devuelve (lista_deduplicada, repetidos_descartados).
    """
    seen: set[str] = set()
    out: List[str] = []
    dropped: List[str] = []
    for raw in ids:
        uid = str(raw)
        if uid in seen:
            dropped.append(uid)
            continue
        seen.add(uid)
        out.append(uid)
    return out, dropped


def apply_order(items: Sequence[P], ordered_ids: Iterable[str], *, scope: str) -> List[P]:
    """
    Asigna position = índice en ordered_ids (tras deduplicar).
    Si el conjunto no coincide con el actual lanza OrderMismatch sin tocar nada.
    """
    order, dropped = dedupe_stable(ordered_ids)
    if dropped:
        logger.info("Dropped %d duplicate id(s) from %s order payload: %s", len(dropped), scope, dropped)

    by_uid = {item.uid: item for item in items}
    wanted = set(order)
    missing = [uid for uid in by_uid if uid not in wanted]
    unknown = [uid for uid in order if uid not in by_uid]
    if missing or unknown:
        raise OrderMismatch(scope=scope, missing=missing, unknown=unknown)

    # only positions change below; validation above already guarantees a full permutation
    for idx, uid in enumerate(order):
        by_uid[uid].position = idx
    return [by_uid[uid] for uid in order]


def compact(items: Sequence[P]) -> List[P]:
    """Renumera 0..n-1 conservando el orden relativo actual."""
    ordered = sorted(items, key=lambda i: i.position)
    for idx, item in enumerate(ordered):
        item.position = idx
    return ordered


def insert_at(items: Sequence[P], new_item: P, position: int | None) -> List[P]:
    ordered = sorted(items, key=lambda i: i.position)
    idx = len(ordered) if position is None else max(0, min(int(position), len(ordered)))
    ordered.insert(idx, new_item)
    for i, item in enumerate(ordered):
        item.position = i
    return ordered


def position_errors(items: Sequence[Positioned], *, scope: str) -> List[str]:
    errors: List[str] = []
    uids = [i.uid for i in items]
    if len(uids) != len(set(uids)):
        errors.append(f"Duplicate ids in {scope}")
    positions = sorted(i.position for i in items)
    if positions != list(range(len(positions))):
        errors.append(f"{scope} positions are not contiguous from 0: {positions}")
    return errors


# -------- DB-level helpers --------
def sections_for(db: Session, template_id: int, state: str) -> List[Section]:
    return list(
        db.scalars(
            select(Section)
            .where(Section.template_id == template_id, Section.state == state)
            .order_by(Section.position.asc(), Section.id.asc())
        )
    )


def get_section(db: Session, template_id: int, section_uid: str, state: str = "draft") -> Section:
    section = db.scalar(
        select(Section).where(
            Section.template_id == template_id,
            Section.state == state,
            Section.uid == section_uid,
        )
    )
    if not section:
        raise NotFound(f"Section '{section_uid}' not found in {state}")
    return section


def get_block(section: Section, block_uid: str) -> Block:
    for block in section.blocks:
        if block.uid == block_uid:
            return block
    raise NotFound(f"Block '{block_uid}' not found in section '{section.uid}'")


def reorder_sections(db: Session, *, template_id: int, ordered_ids: Iterable[str], state: str = "draft") -> List[str]:
    sections = sections_for(db, template_id, state)
    ordered = apply_order(sections, ordered_ids, scope=f"template {template_id}/{state}")
    db.flush()
    return [s.uid for s in ordered]


def reorder_blocks(db: Session, *, template_id: int, section_uid: str, ordered_ids: Iterable[str], state: str = "draft") -> List[str]:
    section = get_section(db, template_id, section_uid, state)
    ordered = apply_order(list(section.blocks), ordered_ids, scope=f"section {section_uid}")
    db.flush()
    return [b.uid for b in ordered]


def assert_contiguous(items: Sequence[Positioned], *, scope: str) -> None:
    errors = position_errors(items, scope=scope)
    if errors:
        raise BuilderError(f"Ordering invariant broken in {scope}", detail={"errors": errors})
