# app/seeds/theme_loader.py
# Instalación de themes desde disco: theme.json + sections/*.json + templates/*.json
from __future__ import annotations

import json
import logging
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFound, ValidationError
from app.core.settings import settings
from app.db.session import transactional
from app.models.builder import Template, Theme
from app.schemas.theme_schema import SectionTypeSchema
from app.services.graph_service import replace_graph
from app.services.schema_registry import THEME_SCHEMA_KEY, get_theme_by_key, upsert_schema

logger = logging.getLogger(__name__)


@dataclass
class InstallReport:
    theme_id: int
    key: str
    section_types: List[str] = field(default_factory=list)
    templates_created: List[str] = field(default_factory=list)
    templates_skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "theme_id": self.theme_id,
            "key": self.key,
            "section_types": self.section_types,
            "templates_created": self.templates_created,
            "templates_skipped": self.templates_skipped,
        }


def _read_json(path: pathlib.Path) -> dict:
    if not path.exists():
        raise NotFound(f"Theme file not found: {path.as_posix()}")
    txt = path.read_bytes().decode("utf-8-sig")  # tolera BOM/UTF-8
    try:
        data = json.loads(txt)
    except json.JSONDecodeError as e:
        raise ValidationError({path.name: [f"Invalid JSON: {e}"]}) from e
    if not isinstance(data, dict):
        raise ValidationError({path.name: ["Must be a JSON object"]})
    return data


def _template_errors(data: dict) -> List[str]:
    sections = data.get("sections") or []
    if not isinstance(sections, list):
        return ["sections: must be a list"]
    errors: List[str] = []
    for i, raw in enumerate(sections):
        if not isinstance(raw, dict) or not raw.get("type"):
            errors.append(f"sections.{i}: missing 'type'")
            continue
        blocks = raw.get("blocks") or []
        if not isinstance(blocks, list):
            errors.append(f"sections.{i}.blocks: must be a list")
            continue
        for j, rb in enumerate(blocks):
            if not isinstance(rb, dict) or not rb.get("type"):
                errors.append(f"sections.{i}.blocks.{j}: missing 'type'")
    return errors


def resolve_theme_dir(path_or_key: str | pathlib.Path) -> pathlib.Path:
    """Acepta una ruta a la carpeta del theme o sólo su nombre dentro de THEMES_PATH."""
    p = pathlib.Path(path_or_key)
    if (p / "theme.json").exists():
        return p
    candidate = pathlib.Path(settings.THEMES_PATH) / str(path_or_key)
    if (candidate / "theme.json").exists():
        return candidate
    raise NotFound(f"No theme.json under '{path_or_key}'")


def resolve_named_theme(name: str) -> pathlib.Path:
    """Sólo nombres de theme dentro de THEMES_PATH; nada de rutas absolutas ni ../ (ruta HTTP)."""
    root = pathlib.Path(settings.THEMES_PATH).resolve()
    if pathlib.PurePath(name).is_absolute():
        raise ValidationError({"path": ["Must be a theme name, not an absolute path"]})
    candidate = (root / name).resolve()
    if candidate == root or not candidate.is_relative_to(root):
        raise ValidationError({"path": ["Theme must live under the themes directory"]})
    if not (candidate / "theme.json").exists():
        raise NotFound(f"No theme named '{name}'")
    return candidate


def _check_schema(name: str, raw: dict) -> dict:
    try:
        SectionTypeSchema.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            {name: [f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()]},
            message=f"Invalid schema in {name}",
        ) from e
    return raw


def load_theme_dir(db: Session, theme_dir: pathlib.Path) -> InstallReport:
    """
    Carga el theme desde theme_dir. No abre/cierra transacciones: el caller maneja commit/rollback.
    Re-instalar actualiza schemas pero nunca pisa templates existentes.
    """
    manifest = _read_json(theme_dir / "theme.json")
    key = str(manifest.get("key") or theme_dir.name)

    theme = get_theme_by_key(db, key=key)
    if theme is None:
        theme = Theme(key=key, name=manifest.get("name") or key, settings={})
        db.add(theme)
    else:
        theme.name = manifest.get("name") or theme.name
    theme.version = manifest.get("version")
    db.flush()
    report = InstallReport(theme_id=theme.id, key=key)

    settings_schema = manifest.get("settings_schema") or {}
    upsert_schema(db, theme_id=theme.id, kind="theme", type_key=THEME_SCHEMA_KEY,
                  schema=_check_schema("theme.json", settings_schema))

    sections_dir = theme_dir / "sections"
    for f in sorted(sections_dir.glob("*.json")) if sections_dir.exists() else []:
        raw = _check_schema(f.name, _read_json(f))
        upsert_schema(db, theme_id=theme.id, kind="section", type_key=f.stem, schema=raw)
        report.section_types.append(f.stem)

    templates_dir = theme_dir / "templates"
    for f in sorted(templates_dir.glob("*.json")) if templates_dir.exists() else []:
        existing = db.scalar(select(Template).where(Template.theme_id == theme.id, Template.key == f.stem))
        if existing is not None:
            report.templates_skipped.append(f.stem)
            continue
        data = _read_json(f)
        problems = _template_errors(data)
        if problems:
            raise ValidationError({f.name: problems}, message=f"Invalid template in {f.name}")
        unknown = [s.get("type") for s in data.get("sections") or [] if s.get("type") not in report.section_types]
        if unknown:
            logger.warning("Template %s references undeclared section types: %s", f.stem, unknown)
        template = Template(
            theme_id=theme.id, key=f.stem,
            name=data.get("name") or f.stem.replace("-", " ").title(),
            draft_revision=0,
        )
        db.add(template)
        db.flush()
        replace_graph(db, template=template, state="draft", graph=data)
        report.templates_created.append(f.stem)

    logger.info(
        "Theme '%s' installed: %d section type(s), %d template(s) created, %d kept",
        key, len(report.section_types), len(report.templates_created), len(report.templates_skipped),
    )
    return report


def install_theme(db: Session, path_or_key: str | pathlib.Path) -> InstallReport:
    theme_dir = resolve_theme_dir(path_or_key)
    with transactional(db):
        return load_theme_dir(db, theme_dir)


def install_named_theme(db: Session, name: str) -> InstallReport:
    theme_dir = resolve_named_theme(name)
    with transactional(db):
        return load_theme_dir(db, theme_dir)
