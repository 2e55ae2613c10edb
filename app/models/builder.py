# app/models/builder.py
# Modelos del builder: Theme, ThemeSchema, Template, Section (draft/live), Block
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Enum, ForeignKey, Integer, String, DateTime, UniqueConstraint, Index, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType

GRAPH_STATES = ("draft", "live")
SCHEMA_KINDS = ("section", "theme")

GraphState = Enum(
    *GRAPH_STATES,
    name="graph_state",
    create_constraint=True,
    validate_strings=True,
    native_enum=False,
)

SchemaKind = Enum(
    *SCHEMA_KINDS,
    name="schema_kind",
    create_constraint=True,
    validate_strings=True,
    native_enum=False,
)


class Theme(Base):
    __tablename__ = "themes"

    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(64), unique=True)   # e.g. "default", "nordic"
    name: Mapped[str] = mapped_column(String(128))
    version: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # value bag for the theme-level settings (overrides only; defaults live in the schema)
    settings: Mapped[dict] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    schemas: Mapped[list["ThemeSchema"]] = relationship(
        "ThemeSchema", back_populates="theme", cascade="all, delete-orphan"
    )
    templates: Mapped[list["Template"]] = relationship(
        "Template", back_populates="theme", cascade="all, delete-orphan"
    )


class ThemeSchema(Base):
    __tablename__ = "theme_schemas"

    id: Mapped[int] = mapped_column(primary_key=True)
    theme_id: Mapped[int] = mapped_column(ForeignKey("themes.id", ondelete="CASCADE"), index=True)

    kind: Mapped[str] = mapped_column(SchemaKind)
    # section type ("hero") or "theme" for the theme-level bag; block types live inside their section schema
    type_key: Mapped[str] = mapped_column(String(128))
    schema: Mapped[dict] = mapped_column(JSONType)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    theme: Mapped["Theme"] = relationship("Theme", back_populates="schemas")

    __table_args__ = (
        UniqueConstraint("theme_id", "kind", "type_key", name="uq_theme_schema_kind_type"),
    )


class Template(Base):
    __tablename__ = "templates"

    id: Mapped[int] = mapped_column(primary_key=True)
    theme_id: Mapped[int] = mapped_column(ForeignKey("themes.id", ondelete="CASCADE"), index=True)

    key: Mapped[str] = mapped_column(String(64))      # "index", "single-post"
    name: Mapped[str] = mapped_column(String(128))

    # bumped on every committed draft mutation; feeds preview fencing
    draft_revision: Mapped[int] = mapped_column(Integer, default=0)
    # None until the first publish
    live_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    published_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    theme: Mapped["Theme"] = relationship("Theme", back_populates="templates")
    sections: Mapped[list["Section"]] = relationship(
        "Section", back_populates="template", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("theme_id", "key", name="uq_template_theme_key"),
    )

    @property
    def lifecycle(self) -> str:
        return "draft_only" if self.live_version is None else "draft_and_live"


class Section(Base):
    __tablename__ = "sections"

    id: Mapped[int] = mapped_column(primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("templates.id", ondelete="CASCADE"), index=True)
    state: Mapped[str] = mapped_column(GraphState, default="draft")

    uid: Mapped[str] = mapped_column(String(128))          # stable across reorder and publish
    section_type: Mapped[str] = mapped_column(String(128))
    position: Mapped[int] = mapped_column(Integer)
    settings: Mapped[dict] = mapped_column(JSONType, default=dict)

    template: Mapped["Template"] = relationship("Template", back_populates="sections")
    blocks: Mapped[list["Block"]] = relationship(
        "Block", back_populates="section", cascade="all, delete-orphan",
        order_by="Block.position",
    )

    __table_args__ = (
        UniqueConstraint("template_id", "state", "uid", name="uq_section_template_state_uid"),
        Index("ix_sections_template_state_position", "template_id", "state", "position"),
    )


class Block(Base):
    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(primary_key=True)
    section_id: Mapped[int] = mapped_column(ForeignKey("sections.id", ondelete="CASCADE"), index=True)

    uid: Mapped[str] = mapped_column(String(128))
    block_type: Mapped[str] = mapped_column(String(128))
    position: Mapped[int] = mapped_column(Integer)
    settings: Mapped[dict] = mapped_column(JSONType, default=dict)

    section: Mapped["Section"] = relationship("Section", back_populates="blocks")

    __table_args__ = (
        UniqueConstraint("section_id", "uid", name="uq_block_section_uid"),
    )
