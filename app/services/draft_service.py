# app/services/draft_service.py
# Mutaciones de Draft: patch etiquetado por "op" -> tabla de despacho cerrada
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.core.errors import NotFound, ValidationError
from app.models.builder import Block, Section, Template
from app.services import ordering_service
from app.services.audit_service import audit_builder_action
from app.services.graph_service import new_uid
from app.services.ordering_service import compact, get_block, get_section, insert_at, sections_for
from app.services.schema_registry import get_block_schema, get_section_schema
from app.services.settings_service import merge_settings, set_block_settings, set_section_settings
from app.services.template_lock import template_mutation

logger = logging.getLogger(__name__)


# ============================
# Patches
# ============================
class _Patch(BaseModel):
    model_config = ConfigDict(extra="forbid")


class AddSection(_Patch):
    op: Literal["add_section"]
    type: str = Field(min_length=1)
    id: Optional[str] = None
    position: Optional[int] = Field(None, ge=0)
    settings: Dict[str, Any] = Field(default_factory=dict)


class RemoveSection(_Patch):
    op: Literal["remove_section"]
    section_id: str


class UpdateSection(_Patch):
    op: Literal["update_section"]
    section_id: str
    settings: Dict[str, Any]
    strict: bool = False


class ReorderSections(_Patch):
    op: Literal["reorder_sections"]
    order: List[str]


class AddBlock(_Patch):
    op: Literal["add_block"]
    section_id: str
    type: str = Field(min_length=1)
    id: Optional[str] = None
    position: Optional[int] = Field(None, ge=0)
    settings: Dict[str, Any] = Field(default_factory=dict)


class RemoveBlock(_Patch):
    op: Literal["remove_block"]
    section_id: str
    block_id: str


class UpdateBlock(_Patch):
    op: Literal["update_block"]
    section_id: str
    block_id: str
    settings: Dict[str, Any]
    strict: bool = False


class ReorderBlocks(_Patch):
    op: Literal["reorder_blocks"]
    section_id: str
    order: List[str]


# ============================
# Handlers (corren dentro de template_mutation)
# ============================
def _add_section(db: Session, template: Template, p: AddSection) -> Dict[str, Any]:
    schema = get_section_schema(db, theme_id=template.theme_id, section_type=p.type)
    uid = p.id or new_uid(p.type)
    existing = sections_for(db, template.id, "draft")
    if any(s.uid == uid for s in existing):
        raise ValidationError({"id": [f"Section id '{uid}' already exists"]})

    bag = merge_settings(schema, {}, p.settings, strict=True)
    section = Section(
        template_id=template.id, state="draft", uid=uid,
        section_type=p.type, position=0, settings=bag.stored,
    )
    insert_at(existing, section, p.position)
    db.add(section)
    db.flush()
    return {"section_id": uid, "position": section.position}


def _remove_section(db: Session, template: Template, p: RemoveSection) -> Dict[str, Any]:
    section = get_section(db, template.id, p.section_id, "draft")
    db.delete(section)
    db.flush()
    remaining = compact(sections_for(db, template.id, "draft"))
    db.flush()
    return {"section_id": p.section_id, "order": [s.uid for s in remaining]}


def _update_section(db: Session, template: Template, p: UpdateSection) -> Dict[str, Any]:
    result = set_section_settings(db, template, p.section_id, p.settings, strict=p.strict)
    return {"section_id": p.section_id, **result.to_dict()}


def _reorder_sections(db: Session, template: Template, p: ReorderSections) -> Dict[str, Any]:
    order = ordering_service.reorder_sections(db, template_id=template.id, ordered_ids=p.order)
    return {"order": order}


def _add_block(db: Session, template: Template, p: AddBlock) -> Dict[str, Any]:
    section = get_section(db, template.id, p.section_id, "draft")
    section_schema = get_section_schema(db, theme_id=template.theme_id, section_type=section.section_type)
    block_schema = get_block_schema(
        db, theme_id=template.theme_id, section_type=section.section_type, block_type=p.type
    )
    if section_schema.max_blocks is not None and len(section.blocks) >= section_schema.max_blocks:
        raise ValidationError(
            {"blocks": [f"Section '{section.uid}' accepts at most {section_schema.max_blocks} block(s)"]}
        )

    uid = p.id or new_uid(p.type)
    if any(b.uid == uid for b in section.blocks):
        raise ValidationError({"id": [f"Block id '{uid}' already exists in '{section.uid}'"]})

    bag = merge_settings(block_schema, {}, p.settings, strict=True)
    block = Block(uid=uid, block_type=p.type, position=0, settings=bag.stored)
    insert_at(list(section.blocks), block, p.position)
    section.blocks.append(block)
    db.flush()
    return {"section_id": section.uid, "block_id": uid, "position": block.position}


def _remove_block(db: Session, template: Template, p: RemoveBlock) -> Dict[str, Any]:
    section = get_section(db, template.id, p.section_id, "draft")
    block = get_block(section, p.block_id)
    section.blocks.remove(block)
    remaining = compact(list(section.blocks))
    db.flush()
    return {"section_id": section.uid, "block_id": p.block_id, "order": [b.uid for b in remaining]}


def _update_block(db: Session, template: Template, p: UpdateBlock) -> Dict[str, Any]:
    result = set_block_settings(db, template, p.section_id, p.block_id, p.settings, strict=p.strict)
    return {"section_id": p.section_id, "block_id": p.block_id, **result.to_dict()}


def _reorder_blocks(db: Session, template: Template, p: ReorderBlocks) -> Dict[str, Any]:
    order = ordering_service.reorder_blocks(
        db, template_id=template.id, section_uid=p.section_id, ordered_ids=p.order
    )
    return {"section_id": p.section_id, "order": order}


Handler = Callable[[Session, Template, Any], Dict[str, Any]]

# op -> (modelo del patch, handler, acción de auditoría)
_HANDLERS: Dict[str, Tuple[Type[_Patch], Handler, str]] = {
    "add_section": (AddSection, _add_section, "mutate"),
    "remove_section": (RemoveSection, _remove_section, "mutate"),
    "update_section": (UpdateSection, _update_section, "settings"),
    "reorder_sections": (ReorderSections, _reorder_sections, "reorder"),
    "add_block": (AddBlock, _add_block, "mutate"),
    "remove_block": (RemoveBlock, _remove_block, "mutate"),
    "update_block": (UpdateBlock, _update_block, "settings"),
    "reorder_blocks": (ReorderBlocks, _reorder_blocks, "reorder"),
}

SUPPORTED_OPS = tuple(_HANDLERS)


def parse_patch(patch: Mapping[str, Any]) -> Tuple[_Patch, Handler, str]:
    op = patch.get("op") if isinstance(patch, Mapping) else None
    entry = _HANDLERS.get(op) if isinstance(op, str) else None
    if entry is None:
        raise NotFound(f"Unknown draft operation '{op}'")
    model, handler, action = entry
    try:
        parsed = model.model_validate(patch)
    except PydanticValidationError as e:
        field_errors: Dict[str, List[str]] = {}
        for err in e.errors():
            key = ".".join(str(p) for p in err.get("loc", ())) or "patch"
            field_errors.setdefault(key, []).append(err.get("msg", "invalid"))
        raise ValidationError(field_errors, message=f"Invalid '{op}' patch") from e
    return parsed, handler, action


# ============================
# API pública
# ============================
def mutate_draft(
    db: Session,
    *,
    template_id: int,
    patch: Mapping[str, Any],
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Aplica un patch al Draft del Template. Nunca toca Live.
    Todo o nada: cualquier error deshace la unidad de trabajo completa.
    """
    parsed, handler, action = parse_patch(patch)
    with template_mutation(db, template_id) as template:
        result = handler(db, template, parsed)
        template.draft_revision += 1
        audit_builder_action(
            db, action=action, actor=actor, template_id=template_id,
            details={"op": parsed.op, **{k: v for k, v in result.items() if k in ("section_id", "block_id", "order", "applied")}},
        )
        revision = template.draft_revision

    logger.debug("Draft %s: %s -> revision %d", template_id, parsed.op, revision)
    return {"op": parsed.op, "template_id": template_id, "draft_revision": revision, **result}


def reorder(
    db: Session,
    *,
    template_id: int,
    ordered_ids: List[str],
    state: str = "draft",
    actor: Optional[str] = None,
) -> List[str]:
    with template_mutation(db, template_id) as template:
        order = ordering_service.reorder_sections(
            db, template_id=template_id, ordered_ids=ordered_ids, state=state
        )
        if state == "draft":
            template.draft_revision += 1
        audit_builder_action(
            db, action="reorder", actor=actor, template_id=template_id,
            details={"state": state, "order": order},
        )
    return order


def reorder_blocks(
    db: Session,
    *,
    template_id: int,
    section_uid: str,
    ordered_ids: List[str],
    actor: Optional[str] = None,
) -> List[str]:
    with template_mutation(db, template_id) as template:
        order = ordering_service.reorder_blocks(
            db, template_id=template_id, section_uid=section_uid, ordered_ids=ordered_ids
        )
        template.draft_revision += 1
        audit_builder_action(
            db, action="reorder", actor=actor, template_id=template_id,
            details={"section_id": section_uid, "order": order},
        )
    return order
