# app/schemas/theme_schema.py
# Pydantic — contrato declarativo de settings por tipo de section/block/theme
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FieldType = Literal[
    "text", "textarea", "richtext", "url", "color", "image",
    "number", "range", "checkbox", "select", "radio",
]

STRING_TYPES = {"text", "textarea", "richtext", "url", "color", "image"}
NUMBER_TYPES = {"number", "range"}
CHOICE_TYPES = {"select", "radio"}


class FieldConstraints(BaseModel):
    model_config = ConfigDict(extra="forbid")

    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    integer: bool = False
    min_length: Optional[int] = Field(None, ge=0)
    max_length: Optional[int] = Field(None, ge=0)
    pattern: Optional[str] = None


class FieldOption(BaseModel):
    label: str
    value: Any


class OptionsSource(BaseModel):
    """
    Referencia simbólica a Context Data. "@categories" equivale a {"key": "categories"}.
    label/value nombran los campos del item de contexto a usar.
    """
    key: str
    label: Optional[str] = None
    value: Optional[str] = None

    @classmethod
    def parse(cls, raw: Union[str, Dict[str, Any], "OptionsSource"]) -> "OptionsSource":
        if isinstance(raw, OptionsSource):
            return raw
        if isinstance(raw, str):
            return cls(key=raw.lstrip("@"))
        data = dict(raw)
        data["key"] = str(data.get("key", "")).lstrip("@")
        return cls(**data)


class FieldDescriptor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: FieldType
    label: Optional[str] = None
    default: Any = None
    info: Optional[str] = None
    constraints: FieldConstraints = Field(default_factory=FieldConstraints)
    options: Optional[List[FieldOption]] = None
    options_source: Optional[OptionsSource] = None

    @field_validator("options", mode="before")
    @classmethod
    def _normalize_options(cls, v):
        # admite ["a", "b"] además de [{"label","value"}]
        if v is None:
            return v
        out = []
        for item in v:
            if isinstance(item, dict):
                out.append(item)
            else:
                out.append({"label": str(item), "value": item})
        return out

    @field_validator("options_source", mode="before")
    @classmethod
    def _parse_source(cls, v):
        if v is None or v == "":
            return None
        return OptionsSource.parse(v)

    @model_validator(mode="after")
    def _choices_need_options(self):
        if self.type in CHOICE_TYPES and self.options is None and self.options_source is None:
            raise ValueError(f"'{self.type}' field needs options or options_source")
        return self


class BlockTypeSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: Optional[str] = None
    settings: Dict[str, FieldDescriptor] = Field(default_factory=dict)


class SectionTypeSchema(BaseModel):
    """Esquema declarado para un tipo de section (o para el theme como un todo)."""
    model_config = ConfigDict(extra="ignore")

    label: Optional[str] = None
    category: str = "General"
    description: Optional[str] = None
    preview_image: Optional[str] = None
    settings: Dict[str, FieldDescriptor] = Field(default_factory=dict)
    blocks: Dict[str, BlockTypeSchema] = Field(default_factory=dict)
    max_blocks: Optional[int] = Field(None, ge=0)
    context_requests: Dict[str, Any] = Field(default_factory=dict)

    def block_schema(self, block_type: str) -> Optional[BlockTypeSchema]:
        return self.blocks.get(block_type)

    def context_keys(self) -> List[str]:
        """Keys of Context Data this schema may need (explicit requests + options_source refs)."""
        keys = list(self.context_requests.keys())
        fields = list(self.settings.values())
        for b in self.blocks.values():
            fields.extend(b.settings.values())
        for f in fields:
            if f.options_source and f.options_source.key not in keys:
                keys.append(f.options_source.key)
        return keys
