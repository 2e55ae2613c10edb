# app/services/snapshot_service.py
# Snapshots inmutables del grafo + diff + rollback deshacible
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFound, PublishConflict, ValidationError
from app.core.settings import settings
from app.models.builder import GRAPH_STATES, Template
from app.models.snapshot import TemplateSnapshot
from app.services.audit_service import audit_builder_action, compute_changed_keys
from app.services.graph_service import (
    can_transition, empty_graph, get_template, graph_checksum, replace_graph, serialize_graph,
)
from app.services.ordering_service import assert_contiguous, sections_for
from app.services.template_lock import template_mutation

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _check_state(state: str, field: str = "state") -> str:
    if state not in GRAPH_STATES:
        raise ValidationError({field: [f"Must be one of {list(GRAPH_STATES)}"]})
    return state


def stored_graph(db: Session, template: Template, state: str) -> Dict[str, Any]:
    """Grafo almacenado; Live nunca publicado equivale al grafo vacío."""
    if state == "live" and template.live_version is None:
        return empty_graph()
    return serialize_graph(db, template_id=template.id, state=state)


def create_snapshot(
    db: Session,
    *,
    template: Template,
    state: str,
    label: str,
    reason: str = "manual",
    actor: Optional[str] = None,
    graph: Optional[Mapping[str, Any]] = None,
) -> TemplateSnapshot:
    """
    No hace commit. Si no se pasa graph se captura el estado almacenado actual.
    """
    graph = dict(graph) if graph is not None else stored_graph(db, template, state)
    snap = TemplateSnapshot(
        template_id=template.id,
        source_state=state,
        label=label,
        reason=reason,
        graph=graph,
        checksum=graph_checksum(graph),
        created_by=actor,
    )
    db.add(snap)
    db.flush()
    return snap


def snapshot_to_dict(snap: TemplateSnapshot, *, with_graph: bool = False) -> Dict[str, Any]:
    out = {
        "id": snap.id,
        "template_id": snap.template_id,
        "source_state": snap.source_state,
        "label": snap.label,
        "reason": snap.reason,
        "checksum": snap.checksum,
        "sections": len((snap.graph or {}).get("sections") or []),
        "created_by": snap.created_by,
        "created_at": snap.created_at.isoformat() if snap.created_at else None,
    }
    if with_graph:
        out["graph"] = snap.graph
    return out


# -------- API pública --------
def snapshot(
    db: Session,
    *,
    template_id: int,
    state: str = "draft",
    label: Optional[str] = None,
    actor: Optional[str] = None,
) -> int:
    _check_state(state)
    with template_mutation(db, template_id) as template:
        snap = create_snapshot(
            db,
            template=template,
            state=state,
            label=label or f"{state.capitalize()} snapshot {_now_utc():%Y-%m-%d %H:%M}",
            reason="manual",
            actor=actor,
        )
        audit_builder_action(
            db, action="snapshot", actor=actor, template_id=template_id,
            details={"snapshot_id": snap.id, "state": state},
        )
        snap_id = snap.id
    return snap_id


def list_snapshots(db: Session, *, template_id: int, limit: Optional[int] = None) -> List[TemplateSnapshot]:
    get_template(db, template_id=template_id)
    return list(
        db.scalars(
            select(TemplateSnapshot)
            .where(TemplateSnapshot.template_id == template_id)
            .order_by(TemplateSnapshot.id.desc())
            .limit(limit or settings.SNAPSHOT_LIST_LIMIT)
        )
    )


def get_snapshot(db: Session, *, snapshot_id: int, template_id: Optional[int] = None) -> TemplateSnapshot:
    snap = db.get(TemplateSnapshot, snapshot_id)
    if not snap or (template_id is not None and snap.template_id != template_id):
        raise NotFound(f"Snapshot {snapshot_id} not found")
    return snap


# -------- diff --------
def diff_graphs(before: Mapping[str, Any], after: Mapping[str, Any]) -> Dict[str, Any]:
    a = {s["id"]: s for s in before.get("sections") or []}
    b = {s["id"]: s for s in after.get("sections") or []}

    added = [uid for uid in b if uid not in a]
    removed = [uid for uid in a if uid not in b]
    changed: List[Dict[str, Any]] = []
    for uid in a:
        if uid not in b:
            continue
        sa, sb = a[uid], b[uid]
        entry: Dict[str, Any] = {"id": uid}
        if sa.get("type") != sb.get("type"):
            entry["type"] = {"from": sa.get("type"), "to": sb.get("type")}
        keys = compute_changed_keys(sa.get("settings"), sb.get("settings"))
        if keys:
            entry["settings"] = keys
        blocks_a = [(bl["id"], bl["type"], bl.get("settings")) for bl in sa.get("blocks") or []]
        blocks_b = [(bl["id"], bl["type"], bl.get("settings")) for bl in sb.get("blocks") or []]
        if blocks_a != blocks_b:
            entry["blocks"] = True
        if len(entry) > 1:
            changed.append(entry)

    common_a = [uid for uid in a if uid in b]
    common_b = [uid for uid in b if uid in a]
    return {
        "added": added,
        "removed": removed,
        "changed": changed,
        "order_changed": common_a != common_b,
    }


def diff(
    db: Session,
    *,
    snapshot_id: int,
    other_snapshot_id: Optional[int] = None,
    state: Optional[str] = None,
) -> Dict[str, Any]:
    """Diff de snapshot_id contra otro snapshot o contra el estado actual (por defecto el de origen)."""
    snap = get_snapshot(db, snapshot_id=snapshot_id)
    if other_snapshot_id is not None:
        other = get_snapshot(db, snapshot_id=other_snapshot_id, template_id=snap.template_id)
        target_graph, target_ref = other.graph, f"snapshot:{other.id}"
    else:
        state = _check_state(state or snap.source_state)
        template = get_template(db, template_id=snap.template_id)
        target_graph, target_ref = stored_graph(db, template, state), f"current:{state}"
    return {"from": f"snapshot:{snap.id}", "to": target_ref, **diff_graphs(snap.graph or {}, target_graph)}


# -------- rollback --------
def rollback(
    db: Session,
    *,
    template_id: int,
    snapshot_id: int,
    target: str,
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Reemplaza el grafo de `target` por el del snapshot. El estado sobrescrito queda
    capturado antes en un snapshot implícito, así el rollback también se puede deshacer.
    """
    _check_state(target, "target")
    with template_mutation(db, template_id) as template:
        if not can_transition(template.lifecycle, f"rollback_{target}"):
            raise PublishConflict(
                [{"section": None, "messages": ["Live has never been published"]}],
                message="Live rollback needs a published template",
            )
        source = get_snapshot(db, snapshot_id=snapshot_id, template_id=template_id)
        graph = dict(source.graph or empty_graph())

        undo = create_snapshot(
            db,
            template=template,
            state=target,
            label=f"Before rollback to #{source.id}",
            reason="rollback",
            actor=actor,
        )
        replace_graph(db, template=template, state=target, graph=graph)
        assert_contiguous(sections_for(db, template.id, target), scope=f"template {template.id}/{target}")

        if target == "live":
            template.live_version = (template.live_version or 0) + 1
            template.published_at = _now_utc()
            template.published_by = actor
        else:
            template.draft_revision += 1

        audit_builder_action(
            db, action="rollback", actor=actor, template_id=template_id,
            details={"snapshot_id": source.id, "target": target, "undo_snapshot_id": undo.id},
        )
        result = {
            "template_id": template.id,
            "target": target,
            "restored_from": source.id,
            "snapshot_id": undo.id,
            "draft_revision": template.draft_revision,
            "live_version": template.live_version,
        }

    logger.info("Template %s %s rolled back to snapshot %s", template_id, target, snapshot_id)
    return result
