# app/models/audit.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from sqlalchemy import BigInteger, Integer, String, Enum as SAEnum, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType


class BuilderAction(str, Enum):
    MUTATE = "mutate"
    REORDER = "reorder"
    SETTINGS = "settings"
    PUBLISH = "publish"
    SNAPSHOT = "snapshot"
    ROLLBACK = "rollback"


class BuilderAuditLog(Base):
    __tablename__ = "builder_audit_logs"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("templates.id", ondelete="CASCADE"), nullable=True
    )
    theme_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("themes.id", ondelete="CASCADE"), nullable=True
    )

    action: Mapped[BuilderAction] = mapped_column(
        SAEnum(
            BuilderAction,
            name="builderaction",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )

    # Actor que originó la acción (header X-User-Id; "system" para procesos internos)
    actor: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Detalles del evento: op, claves cambiadas, versión publicada, snapshot, etc.
    details: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_builder_audit_logs_template_created", "template_id", "created_at"),
        Index("ix_builder_audit_logs_action", "action"),
    )
