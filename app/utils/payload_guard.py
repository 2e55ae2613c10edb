# app/utils/payload_guard.py
from __future__ import annotations

import json
from typing import Any, Mapping

from fastapi import HTTPException

from app.core.settings import settings


def enforce_settings_size(values: Mapping[str, Any]) -> None:
    """
    Tope al tamaño serializado (KB) de una bolsa de settings o de un patch.
    413 si se pasa; 400 si no es serializable.
    """
    limit_kb = float(settings.MAX_SETTINGS_KB or 0)
    if limit_kb <= 0:
        return
    try:
        b = json.dumps(values, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Settings payload is not valid JSON")
    kb = len(b) / 1024.0
    if kb > limit_kb:
        raise HTTPException(
            status_code=413,
            detail=f"Payload too large: settings are {kb:.1f}KB, limit is {limit_kb:.0f}KB",
        )
