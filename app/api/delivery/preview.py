# app/api/delivery/preview.py
from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.db.session import get_db
from app.security.preview_tokens import PreviewTokenError, verify_preview_token
from app.services.graph_service import current_state
from app.services.publish_service import apply_cache_headers

router = APIRouter(prefix="/delivery/v1", tags=["delivery"])


@router.get("/preview")
def preview_via_token(
    response: Response,
    token: str = Query(...),
    db: Session = Depends(get_db),
):
    """El render service lee aquí el grafo resuelto (defaults + overrides) del Template."""
    try:
        data = verify_preview_token(token)
    except PreviewTokenError as e:
        raise HTTPException(status_code=401, detail=str(e))

    try:
        doc = current_state(db, template_id=int(data["template_id"]), state=data["state"])
    except NotFound:
        raise HTTPException(status_code=404, detail="Preview not found")

    apply_cache_headers(response, state="preview", etag=doc["fingerprint"])
    return doc
