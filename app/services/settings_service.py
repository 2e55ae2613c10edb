# app/services/settings_service.py
# Settings Store: bolsa de valores por Section / Block / Theme (defaults del schema + overrides)
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.models.builder import Template
from app.schemas.theme_schema import BlockTypeSchema, SectionTypeSchema
from app.services.audit_service import audit_builder_action, compute_changed_keys
from app.services.ordering_service import get_block, get_section
from app.services.schema_registry import get_block_schema, get_section_schema, get_theme_settings_schema
from app.services.schema_resolver import validate_field
from app.services.template_lock import template_mutation, theme_mutation

logger = logging.getLogger(__name__)

AnySchema = SectionTypeSchema | BlockTypeSchema


@dataclass
class SettingsResult:
    stored: Dict[str, Any]
    resolved: Dict[str, Any]
    applied: List[str] = field(default_factory=list)
    errors: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settings": self.resolved,
            "stored": self.stored,
            "applied": self.applied,
            "errors": self.errors,
        }


def resolve_settings(schema: AnySchema, stored: Mapping[str, Any] | None) -> Dict[str, Any]:
    """resolved[k] = stored[k] si existe, si no el default declarado. Claves no declaradas quedan fuera."""
    stored = stored or {}
    return {
        key: (stored[key] if key in stored else f.default)
        for key, f in schema.settings.items()
    }


def validate_settings(schema: AnySchema, values: Mapping[str, Any] | None) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for key, value in (values or {}).items():
        f = schema.settings.get(key)
        if f is None:
            errors[key] = [f"Unknown setting '{key}'"]
            continue
        if value is None:
            continue
        msgs = validate_field(f, value)
        if msgs:
            errors[key] = msgs
    return errors


def stored_settings_errors(schema: AnySchema, stored: Mapping[str, Any] | None) -> Dict[str, List[str]]:
    """
    Revalida una bolsa ya persistida contra el schema actual (se usa antes de publicar).
    Las claves no declaradas se ignoran; no forman parte del bag resuelto.
    """
    errors: Dict[str, List[str]] = {}
    for key, value in resolve_settings(schema, stored).items():
        f = schema.settings[key]
        if value is None:
            if f.constraints.required:
                errors[key] = ["Field is required"]
            continue
        msgs = validate_field(f, value)
        if msgs:
            errors[key] = msgs
    return errors


def merge_settings(
    schema: AnySchema,
    stored: Mapping[str, Any] | None,
    raw_values: Mapping[str, Any],
    *,
    strict: bool = False,
) -> SettingsResult:
    """
    Reemplazo completo con aceptación parcial:
    - campos válidos se aplican;
    - campos inválidos se reportan y conservan su valor almacenado;
    - claves ausentes (o None) vuelven al default.
    En modo strict cualquier error lanza ValidationError y no cambia nada.
    """
    stored = dict(stored or {})
    errors = validate_settings(schema, raw_values)
    if strict and errors:
        raise ValidationError(errors)

    new_bag: Dict[str, Any] = {}
    applied: List[str] = []
    for key, value in raw_values.items():
        if key in errors or value is None:
            continue
        new_bag[key] = value
        applied.append(key)
    for key in errors:
        if key in stored and key in schema.settings:
            new_bag[key] = stored[key]

    return SettingsResult(
        stored=new_bag,
        resolved=resolve_settings(schema, new_bag),
        applied=sorted(applied),
        errors=errors,
    )


# -------- escritura sin lock (el caller ya está dentro de template_mutation) --------
def set_section_settings(
    db: Session, template: Template, section_uid: str, raw_values: Mapping[str, Any], *, strict: bool = False
) -> SettingsResult:
    section = get_section(db, template.id, section_uid, "draft")
    schema = get_section_schema(db, theme_id=template.theme_id, section_type=section.section_type)
    result = merge_settings(schema, section.settings, raw_values, strict=strict)
    section.settings = result.stored
    db.flush()
    return result


def set_block_settings(
    db: Session, template: Template, section_uid: str, block_uid: str, raw_values: Mapping[str, Any], *, strict: bool = False
) -> SettingsResult:
    section = get_section(db, template.id, section_uid, "draft")
    block = get_block(section, block_uid)
    schema = get_block_schema(
        db, theme_id=template.theme_id, section_type=section.section_type, block_type=block.block_type
    )
    result = merge_settings(schema, block.settings, raw_values, strict=strict)
    block.settings = result.stored
    db.flush()
    return result


# -------- operaciones públicas (applySettings) --------
def apply_section_settings(
    db: Session,
    *,
    template_id: int,
    section_uid: str,
    raw_values: Mapping[str, Any],
    strict: bool = False,
    actor: Optional[str] = None,
) -> SettingsResult:
    with template_mutation(db, template_id) as template:
        before = dict(get_section(db, template_id, section_uid, "draft").settings or {})
        result = set_section_settings(db, template, section_uid, raw_values, strict=strict)
        template.draft_revision += 1
        audit_builder_action(
            db, action="settings", actor=actor, template_id=template_id,
            details={
                "section": section_uid,
                "changed": compute_changed_keys(before, result.stored),
                "rejected": sorted(result.errors),
            },
        )
    if result.errors:
        logger.info("Section %s settings: %d field(s) rejected", section_uid, len(result.errors))
    return result


def apply_block_settings(
    db: Session,
    *,
    template_id: int,
    section_uid: str,
    block_uid: str,
    raw_values: Mapping[str, Any],
    strict: bool = False,
    actor: Optional[str] = None,
) -> SettingsResult:
    with template_mutation(db, template_id) as template:
        result = set_block_settings(db, template, section_uid, block_uid, raw_values, strict=strict)
        template.draft_revision += 1
        audit_builder_action(
            db, action="settings", actor=actor, template_id=template_id,
            details={"section": section_uid, "block": block_uid, "applied": result.applied, "rejected": sorted(result.errors)},
        )
    return result


def apply_theme_settings(
    db: Session,
    *,
    theme_id: int,
    raw_values: Mapping[str, Any],
    strict: bool = False,
    actor: Optional[str] = None,
) -> SettingsResult:
    with theme_mutation(db, theme_id) as theme:
        schema = get_theme_settings_schema(db, theme_id=theme_id)
        result = merge_settings(schema, theme.settings, raw_values, strict=strict)
        changed = compute_changed_keys(theme.settings, result.stored)
        theme.settings = result.stored
        audit_builder_action(
            db, action="settings", actor=actor, theme_id=theme_id,
            details={"theme": theme.key, "changed": changed, "rejected": sorted(result.errors)},
        )
    return result


def resolved_theme_settings(db: Session, *, theme_id: int, stored: Mapping[str, Any] | None) -> Dict[str, Any]:
    return resolve_settings(get_theme_settings_schema(db, theme_id=theme_id), stored)
