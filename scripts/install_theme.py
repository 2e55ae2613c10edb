# scripts/install_theme.py
# Instala (o actualiza) un theme desde disco. Idempotente: los templates existentes no se pisan.
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# --- Ensure repo root is on sys.path so "app.*" imports work when run as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.core.errors import BuilderError
from app.core.logging import configure_logging
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.seeds.theme_loader import install_theme
import app.models.audit  # noqa: F401
import app.models.snapshot  # noqa: F401


def run(path: str, create_tables: bool = False) -> int:
    if create_tables:
        # sólo para entornos locales sin Alembic (SQLite)
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        report = install_theme(db, path)
    except BuilderError as e:
        print(f"[ERROR] {e.message}")
        if e.detail:
            print(json.dumps(e.detail, indent=2, ensure_ascii=False))
        return 1
    finally:
        db.close()

    print(f"[OK] Theme '{report.key}' id={report.theme_id}")
    print(f"     section types: {', '.join(report.section_types) or '-'}")
    print(f"     templates created: {', '.join(report.templates_created) or '-'}")
    if report.templates_skipped:
        print(f"     templates kept (already installed): {', '.join(report.templates_skipped)}")
    return 0


def main():
    ap = argparse.ArgumentParser(
        description="Install a builder theme (theme.json + sections/ + templates/).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    ap.add_argument("path", nargs="?", default="default", help="Theme folder, or theme name under THEMES_PATH")
    ap.add_argument("--create-tables", action="store_true", help="Create tables with metadata.create_all first")
    args = ap.parse_args()

    configure_logging()
    sys.exit(run(args.path, create_tables=args.create_tables))


if __name__ == "__main__":
    main()
