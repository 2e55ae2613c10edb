# app/api/v1/endpoints/schemas.py
# Themes: instalación, catálogo de section types, templates y settings del theme
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps.actor import get_actor
from app.db.session import get_db
from app.models.builder import Template, Theme
from app.schemas.builder import FormContextIn, SettingsIn, SettingsOut, ThemeInstallIn
from app.seeds.theme_loader import install_named_theme
from app.services.context_data import load_context
from app.services.schema_registry import get_theme, get_theme_settings_schema, list_section_types
from app.services.schema_resolver import resolve_form
from app.services.settings_service import apply_theme_settings, resolve_settings
from app.utils.payload_guard import enforce_settings_size

router = APIRouter(prefix="/builder/themes", tags=["themes"])


@router.get("")
def list_themes(db: Session = Depends(get_db)):
    rows = db.scalars(select(Theme).order_by(Theme.key.asc()))
    return [{"id": t.id, "key": t.key, "name": t.name, "version": t.version} for t in rows]


@router.post("/install", status_code=201)
def install_theme_endpoint(payload: ThemeInstallIn, db: Session = Depends(get_db)):
    return install_named_theme(db, payload.path).to_dict()


@router.get("/{theme_id}/sections")
def list_available_sections(theme_id: int, db: Session = Depends(get_db)):
    return list_section_types(db, theme_id=theme_id)


@router.get("/{theme_id}/templates")
def list_theme_templates(theme_id: int, db: Session = Depends(get_db)):
    get_theme(db, theme_id=theme_id)
    rows = db.scalars(select(Template).where(Template.theme_id == theme_id).order_by(Template.key.asc()))
    return [
        {
            "id": t.id,
            "key": t.key,
            "name": t.name,
            "lifecycle": t.lifecycle,
            "draft_revision": t.draft_revision,
            "live_version": t.live_version,
            "published_at": t.published_at.isoformat() if t.published_at else None,
        }
        for t in rows
    ]


@router.get("/{theme_id}/settings")
def get_theme_settings(theme_id: int, db: Session = Depends(get_db)):
    theme = get_theme(db, theme_id=theme_id)
    schema = get_theme_settings_schema(db, theme_id=theme_id)
    return {"settings": resolve_settings(schema, theme.settings), "stored": dict(theme.settings or {})}


@router.put("/{theme_id}/settings", response_model=SettingsOut)
def put_theme_settings(
    theme_id: int,
    payload: SettingsIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    enforce_settings_size(payload.settings)
    result = apply_theme_settings(
        db, theme_id=theme_id, raw_values=payload.settings, strict=payload.strict, actor=actor
    )
    return result.to_dict()


@router.api_route("/{theme_id}/settings/form", methods=["GET", "POST"])
def theme_settings_form(
    theme_id: int,
    payload: Optional[FormContextIn] = Body(None),
    db: Session = Depends(get_db),
):
    theme = get_theme(db, theme_id=theme_id)
    schema = get_theme_settings_schema(db, theme_id=theme_id)
    ctx = load_context(schema.context_keys(), payload.context if payload else None)
    return {"theme": theme.key, "fields": resolve_form(schema, theme.settings, ctx)}
