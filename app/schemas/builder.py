# app/schemas/builder.py
# Pydantic — requests/responses del builder (settings, orden, snapshots, rollback, themes)
from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

GraphStateName = Literal["draft", "live"]


# ---------- Settings ----------
class SettingsIn(BaseModel):
    settings: Dict[str, Any] = Field(default_factory=dict)
    # strict=True: cualquier campo inválido rechaza el request completo (422)
    strict: bool = False


class SettingsOut(BaseModel):
    settings: Dict[str, Any]
    stored: Dict[str, Any]
    applied: List[str]
    errors: Dict[str, List[str]]
    draft_revision: Optional[int] = None


class FormContextIn(BaseModel):
    context: Dict[str, Any] = Field(default_factory=dict)


# ---------- Orden ----------
class OrderIn(BaseModel):
    order: List[str]


class OrderOut(BaseModel):
    order: List[str]
    draft_revision: int


# ---------- Snapshots ----------
class SnapshotIn(BaseModel):
    state: GraphStateName = "draft"
    label: Optional[str] = Field(None, max_length=255)


class RollbackIn(BaseModel):
    snapshot_id: int
    target: GraphStateName


# ---------- Themes ----------
class ThemeInstallIn(BaseModel):
    path: str = Field(..., min_length=1, description="Theme name under THEMES_PATH")
