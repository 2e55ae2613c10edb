# app/api/v1/endpoints/builder.py
# Endpoints del editor: estado, mutaciones de Draft, settings, orden, publish, snapshots, preview
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps.actor import get_actor
from app.db.session import get_db
from app.schemas.builder import (
    FormContextIn, GraphStateName, OrderIn, OrderOut, RollbackIn, SettingsIn, SettingsOut, SnapshotIn,
)
from app.services import draft_service, publish_service, snapshot_service
from app.services.audit_service import list_audit_for_template
from app.services.context_data import load_context
from app.services.graph_service import current_state, get_template
from app.services.ordering_service import get_block, get_section
from app.services.preview_service import PreviewSynchronizer, get_preview_sync, schedule_preview
from app.services.schema_registry import get_block_schema, get_section_schema
from app.services.schema_resolver import resolve_form
from app.services.settings_service import apply_block_settings, apply_section_settings
from app.utils.idempotency import maybe_replay_idempotent, remember_idempotent_success, scoped_key
from app.utils.payload_guard import enforce_settings_size

router = APIRouter(prefix="/builder", tags=["builder"])


def _idempotency_key(request: Request, actor: str) -> Optional[str]:
    return scoped_key(request.headers.get("Idempotency-Key"), f"{actor}|{request.method}|{request.url.path}")


def _revision(db: Session, template_id: int) -> int:
    return get_template(db, template_id=template_id).draft_revision


# -----------------------------
# Estado
# -----------------------------
@router.get("/templates/{template_id}")
def get_template_state(
    template_id: int,
    state: GraphStateName = Query("draft"),
    db: Session = Depends(get_db),
):
    return current_state(db, template_id=template_id, state=state)


@router.get("/templates/{template_id}/validation")
def validate_template_draft(template_id: int, db: Session = Depends(get_db)):
    template = get_template(db, template_id=template_id)
    problems = publish_service.validate_draft(db, template)
    return {"template_id": template_id, "publishable": not problems, "errors": problems}


@router.get("/templates/{template_id}/audit")
def list_template_audit(
    template_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    get_template(db, template_id=template_id)
    return [
        {
            "id": log.id,
            "action": log.action.value,
            "actor": log.actor,
            "details": log.details,
            "created_at": log.created_at.isoformat() if log.created_at else None,
        }
        for log in list_audit_for_template(db, template_id=template_id, limit=limit)
    ]


# -----------------------------
# Draft patches
# -----------------------------
@router.post("/templates/{template_id}/draft")
def mutate_draft_endpoint(
    template_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    patch: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    preview: PreviewSynchronizer = Depends(get_preview_sync),
):
    """
    Body: {"op": "<add_section|remove_section|update_section|reorder_sections|
                    add_block|remove_block|update_block|reorder_blocks>", ...}
    op desconocida -> 404.
    """
    key = _idempotency_key(request, actor)
    replay = maybe_replay_idempotent(key)
    if replay:
        return replay

    enforce_settings_size(patch)
    result = draft_service.mutate_draft(db, template_id=template_id, patch=patch, actor=actor)
    schedule_preview(background_tasks, preview, template_id, "draft")

    resp = JSONResponse(content=result, status_code=200)
    remember_idempotent_success(key, resp)
    return resp


# -----------------------------
# Orden (sólo Draft)
# -----------------------------
@router.put("/templates/{template_id}/sections/order", response_model=OrderOut)
def reorder_sections_endpoint(
    template_id: int,
    payload: OrderIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    preview: PreviewSynchronizer = Depends(get_preview_sync),
):
    order = draft_service.reorder(db, template_id=template_id, ordered_ids=payload.order, actor=actor)
    schedule_preview(background_tasks, preview, template_id, "draft")
    return {"order": order, "draft_revision": _revision(db, template_id)}


@router.put("/templates/{template_id}/sections/{section_uid}/blocks/order", response_model=OrderOut)
def reorder_blocks_endpoint(
    template_id: int,
    section_uid: str,
    payload: OrderIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    preview: PreviewSynchronizer = Depends(get_preview_sync),
):
    order = draft_service.reorder_blocks(
        db, template_id=template_id, section_uid=section_uid, ordered_ids=payload.order, actor=actor
    )
    schedule_preview(background_tasks, preview, template_id, "draft")
    return {"order": order, "draft_revision": _revision(db, template_id)}


# -----------------------------
# Settings (aceptación parcial por campo)
# -----------------------------
@router.put("/templates/{template_id}/sections/{section_uid}/settings", response_model=SettingsOut)
def put_section_settings(
    template_id: int,
    section_uid: str,
    payload: SettingsIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    preview: PreviewSynchronizer = Depends(get_preview_sync),
):
    enforce_settings_size(payload.settings)
    result = apply_section_settings(
        db, template_id=template_id, section_uid=section_uid,
        raw_values=payload.settings, strict=payload.strict, actor=actor,
    )
    schedule_preview(background_tasks, preview, template_id, "draft")
    return {**result.to_dict(), "draft_revision": _revision(db, template_id)}


@router.put("/templates/{template_id}/sections/{section_uid}/blocks/{block_uid}/settings", response_model=SettingsOut)
def put_block_settings(
    template_id: int,
    section_uid: str,
    block_uid: str,
    payload: SettingsIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    preview: PreviewSynchronizer = Depends(get_preview_sync),
):
    enforce_settings_size(payload.settings)
    result = apply_block_settings(
        db, template_id=template_id, section_uid=section_uid, block_uid=block_uid,
        raw_values=payload.settings, strict=payload.strict, actor=actor,
    )
    schedule_preview(background_tasks, preview, template_id, "draft")
    return {**result.to_dict(), "draft_revision": _revision(db, template_id)}


# -----------------------------
# Formularios schema-driven
# -----------------------------
@router.api_route("/templates/{template_id}/sections/{section_uid}/form", methods=["GET", "POST"])
def section_form(
    template_id: int,
    section_uid: str,
    state: GraphStateName = Query("draft"),
    payload: Optional[FormContextIn] = Body(None),
    db: Session = Depends(get_db),
):
    template = get_template(db, template_id=template_id)
    section = get_section(db, template_id, section_uid, state)
    schema = get_section_schema(db, theme_id=template.theme_id, section_type=section.section_type)
    ctx = load_context(schema.context_keys(), payload.context if payload else None)
    return {
        "section_id": section.uid,
        "type": section.section_type,
        "label": schema.label or section.section_type,
        "blocks": sorted(schema.blocks.keys()),
        "fields": resolve_form(schema, section.settings, ctx),
    }


@router.api_route(
    "/templates/{template_id}/sections/{section_uid}/blocks/{block_uid}/form", methods=["GET", "POST"]
)
def block_form(
    template_id: int,
    section_uid: str,
    block_uid: str,
    state: GraphStateName = Query("draft"),
    payload: Optional[FormContextIn] = Body(None),
    db: Session = Depends(get_db),
):
    template = get_template(db, template_id=template_id)
    section = get_section(db, template_id, section_uid, state)
    block = get_block(section, block_uid)
    section_schema = get_section_schema(db, theme_id=template.theme_id, section_type=section.section_type)
    schema = get_block_schema(
        db, theme_id=template.theme_id, section_type=section.section_type, block_type=block.block_type
    )
    ctx = load_context(section_schema.context_keys(), payload.context if payload else None)
    return {
        "section_id": section.uid,
        "block_id": block.uid,
        "type": block.block_type,
        "label": schema.label or block.block_type,
        "fields": resolve_form(schema, block.settings, ctx),
    }


# -----------------------------
# Publish
# -----------------------------
@router.post("/templates/{template_id}/publish")
def publish_endpoint(
    template_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    preview: PreviewSynchronizer = Depends(get_preview_sync),
):
    key = _idempotency_key(request, actor)
    replay = maybe_replay_idempotent(key)
    if replay:
        return replay

    result = publish_service.publish(db, template_id=template_id, actor=actor)
    schedule_preview(background_tasks, preview, template_id, "live")

    resp = JSONResponse(content=result, status_code=200)
    remember_idempotent_success(key, resp)
    return resp


# -----------------------------
# Snapshots / rollback
# -----------------------------
@router.get("/templates/{template_id}/snapshots")
def list_snapshots_endpoint(
    template_id: int,
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return [
        snapshot_service.snapshot_to_dict(s)
        for s in snapshot_service.list_snapshots(db, template_id=template_id, limit=limit)
    ]


@router.post("/templates/{template_id}/snapshots", status_code=201)
def create_snapshot_endpoint(
    template_id: int,
    payload: SnapshotIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    snap_id = snapshot_service.snapshot(
        db, template_id=template_id, state=payload.state, label=payload.label, actor=actor
    )
    return snapshot_service.snapshot_to_dict(snapshot_service.get_snapshot(db, snapshot_id=snap_id))


@router.get("/snapshots/{snapshot_id}")
def get_snapshot_endpoint(snapshot_id: int, db: Session = Depends(get_db)):
    return snapshot_service.snapshot_to_dict(
        snapshot_service.get_snapshot(db, snapshot_id=snapshot_id), with_graph=True
    )


@router.get("/snapshots/{snapshot_id}/diff")
def diff_snapshot_endpoint(
    snapshot_id: int,
    against: Optional[int] = Query(None, description="Other snapshot id; defaults to the current state"),
    state: Optional[GraphStateName] = Query(None),
    db: Session = Depends(get_db),
):
    return snapshot_service.diff(db, snapshot_id=snapshot_id, other_snapshot_id=against, state=state)


@router.post("/templates/{template_id}/rollback")
def rollback_endpoint(
    template_id: int,
    payload: RollbackIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    preview: PreviewSynchronizer = Depends(get_preview_sync),
):
    result = snapshot_service.rollback(
        db, template_id=template_id, snapshot_id=payload.snapshot_id, target=payload.target, actor=actor
    )
    schedule_preview(background_tasks, preview, template_id, payload.target)
    return result


# -----------------------------
# Preview
# -----------------------------
@router.post("/templates/{template_id}/preview", status_code=202)
async def request_preview_endpoint(
    template_id: int,
    state: GraphStateName = Query("draft"),
    preview: PreviewSynchronizer = Depends(get_preview_sync),
):
    return preview.request_preview(template_id, state).to_dict()


@router.get("/templates/{template_id}/preview")
def preview_status_endpoint(
    template_id: int,
    state: GraphStateName = Query("draft"),
    preview: PreviewSynchronizer = Depends(get_preview_sync),
):
    return preview.status(template_id, state).to_dict()
