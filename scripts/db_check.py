# scripts/db_check.py
from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func, inspect, select, text

from app.db.session import SessionLocal, engine
from app.models.builder import Template, Theme
from app.models.snapshot import TemplateSnapshot

with engine.connect() as conn:
    conn.execute(text("SELECT 1"))
    print("OK DB:", engine.dialect.name, engine.url.render_as_string(hide_password=True))

missing = {"themes", "templates", "sections", "blocks", "template_snapshots"} - set(inspect(engine).get_table_names())
if missing:
    print("Missing tables (run `alembic upgrade head`):", ", ".join(sorted(missing)))
    sys.exit(1)

with SessionLocal() as db:
    for model in (Theme, Template, TemplateSnapshot):
        print(f"{model.__tablename__}: {db.scalar(select(func.count()).select_from(model))}")
