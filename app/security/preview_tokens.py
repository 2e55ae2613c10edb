# app/security/preview_tokens.py
# ⟶ JWT firmado que permite al render service leer el grafo resuelto de un Template
from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from app.core.settings import settings


class PreviewTokenError(Exception):
    pass


def create_preview_token(
    *,
    template_id: int,
    state: str,
    revision: int | None = None,
    expires_in: int | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp_s = expires_in if expires_in is not None else settings.PREVIEW_TOKEN_EXPIRE_SECONDS
    payload: Dict[str, Any] = {
        "sub": "preview",
        "scope": "preview",
        "template_id": template_id,
        "state": state,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=exp_s)).timestamp()),
    }
    if revision is not None:
        payload["revision"] = revision
    return jwt.encode(payload, settings.PREVIEW_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_preview_token(token: str) -> dict:
    try:
        data = jwt.decode(token, settings.PREVIEW_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise PreviewTokenError("Preview token expired") from e
    except jwt.InvalidTokenError as e:
        raise PreviewTokenError("Invalid preview token") from e

    if data.get("scope") != "preview" or data.get("sub") != "preview":
        raise PreviewTokenError("Invalid preview token scope")

    # Campos mínimos
    if "template_id" not in data or data.get("state") not in ("draft", "live"):
        raise PreviewTokenError("Malformed preview token")

    return data
