# tests/conftest.py
from __future__ import annotations

import os
from pathlib import Path

# Antes de importar app.*: BD en memoria y sin refresco automático de preview
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PREVIEW_AUTO_REFRESH"] = "false"
os.environ["TEMPLATE_LOCK_TIMEOUT_SECONDS"] = "0.2"
os.environ["CONTEXT_DATA_URL"] = ""
os.environ["CONTEXT_DATA_PATH"] = ""
os.environ["RENDER_SERVICE_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.base import Base
from app.db.session import SessionLocal, engine, get_db
from app.main import app
from app.models.builder import Template
from app.seeds.theme_loader import install_theme
from app.services.context_data import set_context_provider
from app.utils.idempotency import idempotency_cache

DEFAULT_THEME_DIR = Path(__file__).resolve().parents[1] / "app" / "themes" / "default"


@pytest.fixture(autouse=True)
def _schema():
    """Tablas nuevas por prueba sobre el SQLite en memoria compartido."""
    Base.metadata.create_all(bind=engine)
    idempotency_cache.clear()
    set_context_provider(None)
    try:
        yield
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session() -> Session:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def _override_get_db(db_session: Session):
    """
    Todos los endpoints usan **la misma sesión** de la prueba en curso.
    """
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def theme(db_session: Session):
    return install_theme(db_session, DEFAULT_THEME_DIR)


@pytest.fixture
def index_template(db_session: Session, theme) -> Template:
    return db_session.scalar(select(Template).where(Template.theme_id == theme.theme_id, Template.key == "index"))


@pytest.fixture
def post_template(db_session: Session, theme) -> Template:
    return db_session.scalar(select(Template).where(Template.theme_id == theme.theme_id, Template.key == "single-post"))
