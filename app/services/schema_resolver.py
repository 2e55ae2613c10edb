# app/services/schema_resolver.py
# Resolución de formularios schema-driven + validación por campo (JSON Schema 2020-12)
from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import Draft202012Validator

from app.schemas.theme_schema import (
    CHOICE_TYPES, NUMBER_TYPES, STRING_TYPES,
    FieldDescriptor, OptionsSource, SectionTypeSchema, BlockTypeSchema,
)

logger = logging.getLogger(__name__)

_COLOR_PATTERN = r"^#(?:[0-9a-fA-F]{3}){1,2}$"
_LABEL_KEYS = ("label", "name", "title")
_VALUE_KEYS = ("value", "id", "slug")


# -------------------- descriptor -> JSON Schema --------------------
def field_json_schema(field: FieldDescriptor) -> Dict[str, Any]:
    """Compila un FieldDescriptor a un fragmento JSON Schema para un único valor."""
    c = field.constraints
    node: Dict[str, Any] = {}

    if field.type in STRING_TYPES:
        node["type"] = "string"
        min_len = c.min_length
        if c.required:
            min_len = max(min_len or 0, 1)
        if min_len:
            node["minLength"] = min_len
        if c.max_length is not None:
            node["maxLength"] = c.max_length
        if c.pattern:
            node["pattern"] = c.pattern
        elif field.type == "color":
            node["pattern"] = _COLOR_PATTERN
    elif field.type in NUMBER_TYPES:
        node["type"] = "integer" if c.integer else "number"
        if c.min is not None:
            node["minimum"] = c.min
        if c.max is not None:
            node["maximum"] = c.max
        if c.step and c.integer:
            node["multipleOf"] = int(c.step)
    elif field.type == "checkbox":
        node["type"] = "boolean"
    elif field.type in CHOICE_TYPES:
        if field.options is not None:
            node["enum"] = [o.value for o in field.options]
        else:
            # dynamic options: membership is checked against live data at render time only
            node["type"] = ["string", "integer"]
    return node


@lru_cache(maxsize=512)
def _validator_for(schema_key: str) -> Draft202012Validator:
    return Draft202012Validator(json.loads(schema_key))


def validate_field(field: FieldDescriptor, value: Any) -> List[str]:
    """Devuelve la lista de mensajes de error (vacía si el valor es aceptable)."""
    schema = field_json_schema(field)
    validator = _validator_for(json.dumps(schema, sort_keys=True))
    errors = sorted(validator.iter_errors(value), key=lambda e: list(e.path))
    return [e.message for e in errors]


# -------------------- dynamic options --------------------
def _pick(item: Mapping[str, Any], explicit: Optional[str], fallbacks: tuple) -> Any:
    if explicit:
        return item.get(explicit)
    for k in fallbacks:
        if k in item:
            return item[k]
    return None


def resolve_options(field: FieldDescriptor, context_data: Mapping[str, Any] | None) -> List[Dict[str, Any]]:
    if field.options is not None:
        return [{"label": o.label, "value": o.value} for o in field.options]
    if field.options_source is None:
        return []
    source: OptionsSource = field.options_source
    items = (context_data or {}).get(source.key)
    if items is None:
        logger.debug("Context key '%s' not supplied; empty option list", source.key)
        return []
    options: List[Dict[str, Any]] = []
    for item in items:
        if isinstance(item, Mapping):
            value = _pick(item, source.value, _VALUE_KEYS)
            label = _pick(item, source.label, _LABEL_KEYS)
            options.append({"label": str(label if label is not None else value), "value": value})
        else:
            options.append({"label": str(item), "value": item})
    return options


# -------------------- form resolution --------------------
def _constraints_dict(field: FieldDescriptor) -> Dict[str, Any]:
    return field.constraints.model_dump(exclude_none=True, exclude_defaults=True)


def resolve_form(
    schema: SectionTypeSchema | BlockTypeSchema,
    current_settings: Mapping[str, Any] | None,
    context_data: Mapping[str, Any] | None,
) -> List[Dict[str, Any]]:
    """
    Describe el formulario renderizable: un nodo por campo declarado, en orden de declaración,
    con el valor resuelto (override almacenado o default) y las opciones ya resueltas.
    """
    stored = current_settings or {}
    form: List[Dict[str, Any]] = []
    for key, field in schema.settings.items():
        node: Dict[str, Any] = {
            "key": key,
            "label": field.label or key.replace("_", " ").capitalize(),
            "type": field.type,
            "value": stored[key] if key in stored else field.default,
            "default": field.default,
            "options": resolve_options(field, context_data) if field.type in CHOICE_TYPES else [],
            "constraints": _constraints_dict(field),
        }
        if field.info:
            node["info"] = field.info
        form.append(node)
    return form
