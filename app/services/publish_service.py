# app/services/publish_service.py
# ⟶ Validación del Draft + promoción Draft -> Live con snapshot previo + ETag de Live
from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Response
from sqlalchemy.orm import Session

from app.core.errors import PublishConflict
from app.models.builder import Template
from app.services.audit_service import audit_builder_action
from app.services.graph_service import copy_graph
from app.services.ordering_service import assert_contiguous, position_errors, sections_for
from app.services.schema_registry import section_schemas_by_type
from app.services.settings_service import stored_settings_errors
from app.services.snapshot_service import create_snapshot, stored_graph
from app.services.template_lock import template_mutation

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Validación previa a publicar
# -----------------------------
def validate_draft(db: Session, template: Template) -> List[Dict[str, Any]]:
    """
    Devuelve la lista de problemas del Draft: [{section, block?, messages}].
    Lista vacía = publicable.
    """
    sections = sections_for(db, template.id, "draft")
    if not sections:
        return [{"section": None, "messages": ["Draft has no sections"]}]

    problems: List[Dict[str, Any]] = []
    order_errors = position_errors(sections, scope="sections")
    if order_errors:
        problems.append({"section": None, "messages": order_errors})

    schemas = section_schemas_by_type(db, theme_id=template.theme_id)
    for s in sections:
        schema = schemas.get(s.section_type)
        if schema is None:
            problems.append({"section": s.uid, "messages": [f"Unknown section type '{s.section_type}'"]})
            continue

        msgs = [f"{k}: {m}" for k, errs in stored_settings_errors(schema, s.settings).items() for m in errs]
        if schema.max_blocks is not None and len(s.blocks) > schema.max_blocks:
            msgs.append(f"Too many blocks ({len(s.blocks)} > {schema.max_blocks})")
        msgs.extend(position_errors(list(s.blocks), scope="blocks"))
        if msgs:
            problems.append({"section": s.uid, "messages": msgs})

        for b in s.blocks:
            block_schema = schema.block_schema(b.block_type)
            if block_schema is None:
                problems.append({
                    "section": s.uid, "block": b.uid,
                    "messages": [f"Block type '{b.block_type}' is not allowed in '{s.section_type}'"],
                })
                continue
            bmsgs = [f"{k}: {m}" for k, errs in stored_settings_errors(block_schema, b.settings).items() for m in errs]
            if bmsgs:
                problems.append({"section": s.uid, "block": b.uid, "messages": bmsgs})
    return problems


# -----------------------------
# Publish
# -----------------------------
def publish(db: Session, *, template_id: int, actor: Optional[str] = None) -> Dict[str, Any]:
    """
    Promueve Draft -> Live. Si el Draft no es válido lanza PublishConflict y Live queda intacto.
    Antes de sobrescribir Live se captura en un snapshot (vacío si nunca se publicó).
    """
    with template_mutation(db, template_id) as template:
        problems = validate_draft(db, template)
        if problems:
            raise PublishConflict(problems)

        next_version = (template.live_version or 0) + 1
        before = create_snapshot(
            db,
            template=template,
            state="live",
            label=f"Before publish v{next_version}",
            reason="publish",
            actor=actor,
            graph=stored_graph(db, template, "live"),
        )
        copied = copy_graph(db, template=template, source="draft", target="live")
        assert_contiguous(copied, scope=f"template {template.id}/live")

        template.live_version = next_version
        template.published_at = _now_utc()
        template.published_by = actor
        audit_builder_action(
            db, action="publish", actor=actor, template_id=template_id,
            details={"live_version": next_version, "snapshot_id": before.id, "draft_revision": template.draft_revision},
        )
        result = {
            "template_id": template.id,
            "live_version": next_version,
            "snapshot_id": before.id,
            "published_at": template.published_at.isoformat(),
        }

    logger.info("Template %s published as v%s by %s", template_id, result["live_version"], actor)
    return result


# -----------------------------
# ETag / Cache-Control para la entrega de Live
# -----------------------------
def compute_etag_from_bytes(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


def apply_cache_headers(response: Response, *, state: str, etag: Optional[str] = None) -> None:
    if etag:
        response.headers["ETag"] = etag
    if state == "live":
        response.headers["Cache-Control"] = "public, max-age=60, stale-while-revalidate=120"
    else:
        response.headers["Cache-Control"] = "no-store"
