# app/services/schema_registry.py
# Servicio: esquemas declarados por theme (section / block / theme) y catálogo de tipos
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models.builder import Theme, ThemeSchema
from app.schemas.theme_schema import BlockTypeSchema, SectionTypeSchema

THEME_SCHEMA_KEY = "theme"


# -------- helpers DB --------
def get_theme(db: Session, *, theme_id: int) -> Theme:
    theme = db.get(Theme, theme_id)
    if not theme:
        raise NotFound(f"Theme {theme_id} not found")
    return theme


def get_theme_by_key(db: Session, *, key: str) -> Optional[Theme]:
    return db.scalar(select(Theme).where(Theme.key == key))


def _get_row(db: Session, *, theme_id: int, kind: str, type_key: str) -> Optional[ThemeSchema]:
    return db.scalar(
        select(ThemeSchema)
        .where(
            ThemeSchema.theme_id == theme_id,
            ThemeSchema.kind == kind,
            ThemeSchema.type_key == type_key,
        )
        .limit(1)
    )


def upsert_schema(db: Session, *, theme_id: int, kind: str, type_key: str, schema: dict) -> ThemeSchema:
    row = _get_row(db, theme_id=theme_id, kind=kind, type_key=type_key)
    if row:
        row.schema = schema
    else:
        row = ThemeSchema(theme_id=theme_id, kind=kind, type_key=type_key, schema=schema)
        db.add(row)
    db.flush()
    return row


# -------- lookups tipados --------
def find_section_schema(db: Session, *, theme_id: int, section_type: str) -> Optional[SectionTypeSchema]:
    row = _get_row(db, theme_id=theme_id, kind="section", type_key=section_type)
    return SectionTypeSchema.model_validate(row.schema) if row else None


def get_section_schema(db: Session, *, theme_id: int, section_type: str) -> SectionTypeSchema:
    schema = find_section_schema(db, theme_id=theme_id, section_type=section_type)
    if schema is None:
        raise NotFound(f"Unknown section type '{section_type}'")
    return schema


def get_block_schema(db: Session, *, theme_id: int, section_type: str, block_type: str) -> BlockTypeSchema:
    section_schema = get_section_schema(db, theme_id=theme_id, section_type=section_type)
    block_schema = section_schema.block_schema(block_type)
    if block_schema is None:
        raise NotFound(f"Block type '{block_type}' is not allowed in '{section_type}'")
    return block_schema


def get_theme_settings_schema(db: Session, *, theme_id: int) -> SectionTypeSchema:
    row = _get_row(db, theme_id=theme_id, kind="theme", type_key=THEME_SCHEMA_KEY)
    # un theme sin settings declarados sigue siendo válido
    return SectionTypeSchema.model_validate(row.schema) if row else SectionTypeSchema()


def section_schemas_by_type(db: Session, *, theme_id: int) -> Dict[str, SectionTypeSchema]:
    rows = db.scalars(
        select(ThemeSchema).where(ThemeSchema.theme_id == theme_id, ThemeSchema.kind == "section")
    )
    return {r.type_key: SectionTypeSchema.model_validate(r.schema) for r in rows}


# -------- catálogo (available sections) --------
def list_section_types(db: Session, *, theme_id: int) -> List[Dict[str, Any]]:
    get_theme(db, theme_id=theme_id)
    out: List[Dict[str, Any]] = []
    for type_key, schema in sorted(section_schemas_by_type(db, theme_id=theme_id).items()):
        out.append({
            "id": type_key,
            "name": schema.label or type_key.replace("-", " ").replace("_", " ").capitalize(),
            "category": schema.category,
            "description": schema.description or "Section description",
            "preview_image": schema.preview_image,
            "context_requests": schema.context_keys(),
            "blocks": sorted(schema.blocks.keys()),
            "max_blocks": schema.max_blocks,
        })
    return out
