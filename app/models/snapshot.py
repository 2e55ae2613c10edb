# app/models/snapshot.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Enum, ForeignKey, String, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.models.builder import GraphState

SnapshotReason = Enum(
    "manual", "publish", "rollback",
    name="snapshot_reason",
    create_constraint=True,
    validate_strings=True,
    native_enum=False,
)


class TemplateSnapshot(Base):
    """
    Captura inmutable del grafo Section/Block/Settings de un Template.
    Nunca se actualiza: rollback sólo lee de aquí.
    """
    __tablename__ = "template_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("templates.id", ondelete="CASCADE"), index=True)

    source_state: Mapped[str] = mapped_column(GraphState)
    label: Mapped[str] = mapped_column(String(255))
    reason: Mapped[str] = mapped_column(SnapshotReason, default="manual")

    # {"sections": [{"id", "type", "position", "settings", "blocks": [...]}]}
    graph: Mapped[dict] = mapped_column(JSONType)
    checksum: Mapped[str] = mapped_column(String(64))

    created_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_template_snapshots_template_created", "template_id", "created_at"),
    )
