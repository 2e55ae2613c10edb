# app/api/deps/actor.py
from __future__ import annotations

from typing import Optional

from fastapi import Header

DEFAULT_ACTOR = "system"


def get_actor(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """La autenticación vive fuera del builder; aquí sólo se toma quién firma los cambios."""
    actor = (x_user_id or "").strip()
    return actor[:128] or DEFAULT_ACTOR
