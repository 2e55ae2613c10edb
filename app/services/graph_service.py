# app/services/graph_service.py
# Grafo Section -> Block -> Settings de un Template: serialización, reemplazo, resolución y checksum
from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models.builder import Block, Section, Template
from app.services.ordering_service import sections_for
from app.services.schema_registry import get_theme, section_schemas_by_type
from app.services.settings_service import resolve_settings, resolved_theme_settings

logger = logging.getLogger(__name__)


def new_uid(type_key: str) -> str:
    return f"{type_key}_{uuid4().hex[:8]}"


def empty_graph() -> Dict[str, Any]:
    return {"sections": []}


# -------- ciclo de vida --------
# (lifecycle, operación) -> lifecycle resultante; las combinaciones ausentes no existen
TRANSITIONS: Dict[Tuple[str, str], str] = {
    ("draft_only", "mutate_draft"): "draft_only",
    ("draft_only", "publish"): "draft_and_live",
    ("draft_only", "rollback_draft"): "draft_only",
    ("draft_and_live", "mutate_draft"): "draft_and_live",
    ("draft_and_live", "publish"): "draft_and_live",
    ("draft_and_live", "rollback_draft"): "draft_and_live",
    ("draft_and_live", "rollback_live"): "draft_and_live",
}


def can_transition(lifecycle: str, operation: str) -> bool:
    return (lifecycle, operation) in TRANSITIONS


def get_template(db: Session, *, template_id: int) -> Template:
    template = db.get(Template, template_id)
    if not template:
        raise NotFound(f"Template {template_id} not found")
    return template


# -------- serialización (bag almacenado, sin defaults) --------
def serialize_section(section: Section) -> Dict[str, Any]:
    return {
        "id": section.uid,
        "type": section.section_type,
        "position": section.position,
        "settings": dict(section.settings or {}),
        "blocks": [
            {
                "id": b.uid,
                "type": b.block_type,
                "position": b.position,
                "settings": dict(b.settings or {}),
            }
            for b in sorted(section.blocks, key=lambda b: b.position)
        ],
    }


def serialize_graph(db: Session, *, template_id: int, state: str) -> Dict[str, Any]:
    return {"sections": [serialize_section(s) for s in sections_for(db, template_id, state)]}


def canonical_json(graph: Mapping[str, Any]) -> str:
    return json.dumps(graph, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def graph_checksum(graph: Mapping[str, Any]) -> str:
    return hashlib.sha256(canonical_json(graph).encode("utf-8")).hexdigest()


# -------- reemplazo completo de un estado --------
def replace_graph(db: Session, *, template: Template, state: str, graph: Mapping[str, Any]) -> List[Section]:
    """
    Sustituye todas las Sections/Blocks de (template, state) por las del grafo dado.
    Las posiciones se recalculan 0..n-1 según el orden de la lista (ordenada por "position" si viene).
    No hace commit.
    """
    for old in sections_for(db, template.id, state):
        db.delete(old)
    # los DELETE deben llegar antes que los INSERT con los mismos uid
    db.flush()

    raw_sections = list(graph.get("sections") or [])
    raw_sections.sort(key=lambda s: s.get("position") or 0)

    created: List[Section] = []
    for idx, raw in enumerate(raw_sections):
        section_type = raw["type"]
        section = Section(
            template_id=template.id,
            state=state,
            uid=str(raw.get("id") or new_uid(section_type)),
            section_type=section_type,
            position=idx,
            settings=dict(raw.get("settings") or {}),
        )
        raw_blocks = sorted(raw.get("blocks") or [], key=lambda b: b.get("position") or 0)
        for bidx, rb in enumerate(raw_blocks):
            section.blocks.append(Block(
                uid=str(rb.get("id") or new_uid(rb["type"])),
                block_type=rb["type"],
                position=bidx,
                settings=dict(rb.get("settings") or {}),
            ))
        db.add(section)
        created.append(section)
    db.flush()
    return created


def copy_graph(db: Session, *, template: Template, source: str, target: str) -> List[Section]:
    graph = serialize_graph(db, template_id=template.id, state=source)
    return replace_graph(db, template=template, state=target, graph=graph)


# -------- grafo resuelto (defaults + overrides) --------
def resolve_graph(db: Session, *, template: Template, state: str) -> Dict[str, Any]:
    schemas = section_schemas_by_type(db, theme_id=template.theme_id)
    sections: List[Dict[str, Any]] = []
    for s in sections_for(db, template.id, state):
        schema = schemas.get(s.section_type)
        node = serialize_section(s)
        if schema is None:
            logger.warning("Section %s has unknown type '%s'; settings passed through", s.uid, s.section_type)
        else:
            node["settings"] = resolve_settings(schema, s.settings)
            for b in node["blocks"]:
                block_schema = schema.block_schema(b["type"])
                if block_schema is not None:
                    b["settings"] = resolve_settings(block_schema, b["settings"])
        sections.append(node)
    return {"sections": sections}


def graph_fingerprint(resolved: Mapping[str, Any]) -> str:
    return graph_checksum(resolved)


def current_state(db: Session, *, template_id: int, state: str = "draft") -> Dict[str, Any]:
    template = get_template(db, template_id=template_id)
    if state == "live" and template.live_version is None:
        raise NotFound(f"Template {template_id} has never been published")

    theme = get_theme(db, theme_id=template.theme_id)
    graph = resolve_graph(db, template=template, state=state)
    theme_settings = resolved_theme_settings(db, theme_id=theme.id, stored=theme.settings)
    return {
        "template_id": template.id,
        "template": template.key,
        "theme": theme.key,
        "state": state,
        "lifecycle": template.lifecycle,
        "revision": template.draft_revision,
        "live_version": template.live_version,
        "published_at": template.published_at.isoformat() if template.published_at else None,
        "sections": graph["sections"],
        "theme_settings": theme_settings,
        "fingerprint": graph_fingerprint({"sections": graph["sections"], "theme_settings": theme_settings}),
    }


def find_section_node(graph: Mapping[str, Any], uid: str) -> Optional[Dict[str, Any]]:
    for s in graph.get("sections") or []:
        if s.get("id") == uid:
            return s
    return None
