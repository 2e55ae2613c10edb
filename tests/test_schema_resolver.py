import pytest

from app.schemas.theme_schema import FieldDescriptor, OptionsSource, SectionTypeSchema
from app.services.schema_resolver import field_json_schema, resolve_form, resolve_options, validate_field


def _field(**kw) -> FieldDescriptor:
    return FieldDescriptor.model_validate(kw)


def test_required_text_rejects_empty_string():
    f = _field(type="text", constraints={"required": True, "max_length": 5})
    assert validate_field(f, "")
    assert validate_field(f, "toolong")
    assert validate_field(f, "ok") == []


def test_number_bounds_and_integer():
    f = _field(type="number", constraints={"min": 1, "max": 50, "integer": True})
    assert validate_field(f, -5)
    assert validate_field(f, 51)
    assert validate_field(f, 2.5)
    assert validate_field(f, "10")
    assert validate_field(f, 10) == []


def test_range_step_compiles_to_multiple_of():
    f = _field(type="range", constraints={"min": 960, "max": 1440, "step": 8, "integer": True})
    assert field_json_schema(f)["multipleOf"] == 8
    assert validate_field(f, 1001)
    assert validate_field(f, 1000) == []


def test_color_and_checkbox():
    assert validate_field(_field(type="color"), "blue")
    assert validate_field(_field(type="color"), "#fff") == []
    assert validate_field(_field(type="checkbox"), "yes")
    assert validate_field(_field(type="checkbox"), False) == []


def test_static_select_enforces_membership():
    f = _field(type="select", options=["left", "center"])
    assert validate_field(f, "right")
    assert validate_field(f, "left") == []
    assert resolve_options(f, {}) == [
        {"label": "left", "value": "left"},
        {"label": "center", "value": "center"},
    ]


def test_choice_without_options_is_rejected():
    with pytest.raises(ValueError):
        _field(type="select")


def test_dynamic_options_from_context():
    f = _field(type="select", options_source="@categories")
    assert f.options_source == OptionsSource(key="categories")
    ctx = {"categories": [{"id": 1, "name": "News"}, {"slug": "dev", "title": "Dev"}, "misc"]}
    assert resolve_options(f, ctx) == [
        {"label": "News", "value": 1},
        {"label": "Dev", "value": "dev"},
        {"label": "misc", "value": "misc"},
    ]
    # sin datos de contexto: lista vacía, no error
    assert resolve_options(f, {}) == []
    # dinámicas: sólo se comprueba el tipo
    assert validate_field(f, 42) == []
    assert validate_field(f, {"x": 1})


def test_explicit_label_value_keys():
    f = _field(type="select", options_source={"key": "@menus", "label": "name", "value": "slug"})
    assert resolve_options(f, {"menus": [{"name": "Main", "slug": "main", "id": 7}]}) == [
        {"label": "Main", "value": "main"}
    ]


def test_resolve_form_uses_stored_then_default():
    schema = SectionTypeSchema.model_validate({
        "settings": {
            "heading": {"type": "text", "default": "Latest posts", "constraints": {"required": True}},
            "category": {"type": "select", "options_source": "@categories"},
        },
        "context_requests": {"tags": {}},
    })
    form = resolve_form(schema, {"heading": "Blog"}, {"categories": [{"id": 3, "name": "Rails"}]})
    assert [n["key"] for n in form] == ["heading", "category"]
    assert form[0]["value"] == "Blog"
    assert form[0]["default"] == "Latest posts"
    assert form[0]["label"] == "Heading"
    assert form[0]["constraints"] == {"required": True}
    assert form[1]["value"] is None
    assert form[1]["options"] == [{"label": "Rails", "value": 3}]
    assert schema.context_keys() == ["tags", "categories"]
