# app/services/audit_service.py

from __future__ import annotations
from typing import Optional, Dict, Any, Union, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.audit import BuilderAuditLog, BuilderAction


def compute_changed_keys(before: Dict[str, Any] | None, after: Dict[str, Any] | None) -> List[str]:
    """
    Devuelve las claves cuyo valor cambió entre before y after (comparación superficial).
    Si alguna es None, se trata como {} para evitar errores.
    """
    b = before or {}
    a = after or {}
    keys = set(b.keys()) | set(a.keys())
    changed = [k for k in keys if b.get(k) != a.get(k)]
    changed.sort()
    return changed


def audit_builder_action(
    db: Session,
    *,
    action: Union[BuilderAction, str],
    actor: Optional[str],
    template_id: Optional[int] = None,
    theme_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> BuilderAuditLog:
    """No hace commit; viaja en la misma unidad de trabajo que la mutación auditada."""
    if isinstance(action, str):
        action = BuilderAction(action.lower())

    log = BuilderAuditLog(
        template_id=template_id,
        theme_id=theme_id,
        action=action,
        actor=actor,
        details=details or {},
    )
    db.add(log)
    return log


def list_audit_for_template(db: Session, *, template_id: int, limit: int = 50) -> List[BuilderAuditLog]:
    return list(
        db.scalars(
            select(BuilderAuditLog)
            .where(BuilderAuditLog.template_id == template_id)
            .order_by(BuilderAuditLog.id.desc())
            .limit(limit)
        )
    )
