from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFound, ValidationError
from app.core.settings import settings
from app.models.builder import Template, Theme, ThemeSchema
from app.seeds.theme_loader import install_theme, resolve_named_theme, resolve_theme_dir
from app.services.draft_service import mutate_draft
from app.services.graph_service import serialize_graph
from app.services.schema_registry import list_section_types

DEFAULT_THEME_DIR = Path(__file__).resolve().parents[1] / "app" / "themes" / "default"


def test_install_default_theme(db_session: Session, theme):
    assert theme.key == "default"
    assert set(theme.section_types) == {"accordion", "footer", "header", "hero", "post-list", "rich-text"}
    assert theme.templates_created == ["index", "single-post"]

    kinds = db_session.scalars(select(ThemeSchema.kind).where(ThemeSchema.theme_id == theme.theme_id)).all()
    assert kinds.count("theme") == 1

    tpl = db_session.scalar(select(Template).where(Template.key == "index"))
    graph = serialize_graph(db_session, template_id=tpl.id, state="draft")
    assert [s["id"] for s in graph["sections"]] == ["header", "hero", "post_list", "footer"]
    assert [s["position"] for s in graph["sections"]] == [0, 1, 2, 3]
    assert tpl.live_version is None


def test_reinstall_keeps_existing_templates(db_session: Session, index_template):
    mutate_draft(db_session, template_id=index_template.id, patch={"op": "remove_section", "section_id": "hero"})
    report = install_theme(db_session, DEFAULT_THEME_DIR)
    assert report.templates_created == []
    assert report.templates_skipped == ["index", "single-post"]
    graph = serialize_graph(db_session, template_id=index_template.id, state="draft")
    assert "hero" not in [s["id"] for s in graph["sections"]]


def test_section_catalog(db_session: Session, theme):
    catalog = {c["id"]: c for c in list_section_types(db_session, theme_id=theme.theme_id)}
    assert catalog["hero"]["blocks"] == ["button"]
    assert catalog["hero"]["max_blocks"] == 2
    assert "categories" in catalog["post-list"]["context_requests"]


def test_missing_theme_dir(tmp_path):
    with pytest.raises(NotFound):
        resolve_theme_dir(tmp_path / "nope")


def test_invalid_section_schema_is_rejected(db_session: Session, tmp_path):
    (tmp_path / "sections").mkdir()
    (tmp_path / "theme.json").write_text('{"key": "broken", "name": "Broken"}', encoding="utf-8")
    (tmp_path / "sections" / "bad.json").write_text(
        '{"settings": {"x": {"type": "select"}}}', encoding="utf-8"
    )
    with pytest.raises(ValidationError):
        install_theme(db_session, tmp_path)
    # todo o nada: el theme tampoco queda instalado
    assert db_session.scalar(select(Theme).where(Theme.key == "broken")) is None


def _minimal_theme(root: Path, template_body: str) -> Path:
    (root / "sections").mkdir()
    (root / "templates").mkdir()
    (root / "theme.json").write_text('{"key": "mini", "name": "Mini"}', encoding="utf-8")
    (root / "sections" / "hero.json").write_text('{"settings": {}}', encoding="utf-8")
    (root / "templates" / "index.json").write_text(template_body, encoding="utf-8")
    return root


def test_template_section_without_type_is_rejected(db_session: Session, tmp_path):
    theme_dir = _minimal_theme(tmp_path, '{"sections": [{"id": "hero"}]}')
    with pytest.raises(ValidationError) as exc:
        install_theme(db_session, theme_dir)
    assert exc.value.field_errors == {"index.json": ["sections.0: missing 'type'"]}
    assert db_session.scalar(select(Theme).where(Theme.key == "mini")) is None


def test_malformed_json_is_rejected(db_session: Session, tmp_path):
    theme_dir = _minimal_theme(tmp_path, '{"sections": [')
    with pytest.raises(ValidationError) as exc:
        install_theme(db_session, theme_dir)
    assert list(exc.value.field_errors) == ["index.json"]


def test_named_theme_must_stay_under_themes_path(monkeypatch):
    monkeypatch.setattr(settings, "THEMES_PATH", str(DEFAULT_THEME_DIR.parent))
    assert resolve_named_theme("default") == DEFAULT_THEME_DIR
    for bad in (str(DEFAULT_THEME_DIR), "../seeds", "default/../../.."):
        with pytest.raises(ValidationError):
            resolve_named_theme(bad)
    with pytest.raises(NotFound):
        resolve_named_theme("missing")
