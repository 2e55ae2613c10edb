# app/db/session.py
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.settings import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        # in-memory: one shared connection or every session sees an empty DB
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True, "pool_recycle": 1800}


ENGINE_URL = settings.SQLALCHEMY_DATABASE_URL

engine = create_engine(ENGINE_URL, **_engine_kwargs(ENGINE_URL))

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transactional(db: Session):
    """Commit on success, rollback on any error (re-raised)."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
