from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any


FIELD_TYPES = {"string", "number", "boolean", "object", "array"}
# JSON Schema types folded onto the supported set.
TYPE_ALIASES = {"integer": "number"}


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def is_json_safe(value: Any) -> bool:
    """True when ``value`` holds no NaN or infinite floats at any depth."""
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, dict):
        return all(is_json_safe(item) for item in value.values())
    if isinstance(value, list):
        return all(is_json_safe(item) for item in value)
    return True


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: str
    required: bool = False
    enum: tuple[str, ...] = ()
    items: tuple["FieldSpec", ...] = ()
    properties: tuple["FieldSpec", ...] = ()

    def __post_init__(self) -> None:
        if self.type not in FIELD_TYPES:
            raise ValueError(f"Unsupported field type: {self.type}")

    def as_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type}
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.type == "array" and self.items:
            schema["items"] = _object_schema(self.items)
        if self.type == "object" and self.properties:
            schema.update(_object_schema(self.properties))
        return schema

    def accepts(self, value: Any) -> bool:
        if self.type == "string":
            ok = isinstance(value, str)
        elif self.type == "number":
            ok = is_finite_number(value)
        elif self.type == "boolean":
            ok = isinstance(value, bool)
        elif self.type == "object":
            ok = isinstance(value, dict)
        else:
            ok = isinstance(value, list)
        if ok and self.enum:
            ok = value in self.enum
        return ok


def _object_schema(fields: tuple[FieldSpec, ...]) -> dict[str, Any]:
    schema: dict[str, Any] = {
        "type": "object",
        "properties": {spec.name: spec.as_json_schema() for spec in fields},
    }
    required = [spec.name for spec in fields if spec.required]
    if required:
        schema["required"] = required
    return schema


@dataclass(frozen=True)
class SchemaDescription:
    """Expected shape of a structured completion.

    ``text_field`` names the field that carries the reply shown to the user;
    it maps onto ``StructuredResult.response_text``.
    """

    fields: tuple[FieldSpec, ...]
    text_field: str = "response"
    name: str = "structured_response"
    extras_allowed: tuple[str, ...] = field(default_factory=tuple)

    def get(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def as_json_schema(self) -> dict[str, Any]:
        return _object_schema(self.fields)


SYMPTOM_FIELDS = (
    FieldSpec("name", "string", required=True),
    FieldSpec("present", "boolean", required=True),
    FieldSpec("confidence", "number", required=True),
    FieldSpec("duration", "string"),
    FieldSpec("severity", "string", enum=("mild", "moderate", "severe")),
)

CLINICAL_RESPONSE_SCHEMA = SchemaDescription(
    name="clinical_response",
    fields=(
        FieldSpec("greeting", "string"),
        FieldSpec("response", "string", required=True),
        FieldSpec("follow_up", "string"),
        FieldSpec("extracted_symptoms", "array", items=SYMPTOM_FIELDS),
        FieldSpec(
            "metadata",
            "object",
            properties=(
                FieldSpec("age_group", "string", enum=("child", "adult", "senior")),
                FieldSpec("language", "string"),
            ),
        ),
    ),
)

RECOMMENDATIONS_SCHEMA = SchemaDescription(
    name="recommendations",
    text_field="summary",
    extras_allowed=("recommendations",),
    fields=(
        FieldSpec(
            "recommendations",
            "array",
            required=True,
            items=(
                FieldSpec(
                    "type",
                    "string",
                    required=True,
                    enum=("self_care", "follow_up", "urgent_care", "lifestyle"),
                ),
                FieldSpec("title", "string"),
                FieldSpec("content", "string", required=True),
                FieldSpec("urgency", "string", enum=("low", "medium", "high")),
            ),
        ),
        FieldSpec("summary", "string"),
    ),
)


def schema_from_json_schema(payload: dict[str, Any], *, text_field: str = "response") -> SchemaDescription:
    """Build a SchemaDescription from a JSON-schema style dict supplied by a caller."""
    fields = _fields_from_properties(payload)
    canonical = {"greeting", "response", "follow_up", "extracted_symptoms", "metadata", text_field}
    extras = tuple(spec.name for spec in fields if spec.name not in canonical)
    return SchemaDescription(
        name=str(payload.get("title") or "custom"),
        fields=fields,
        text_field=text_field,
        extras_allowed=extras,
    )


def _fields_from_properties(payload: dict[str, Any]) -> tuple[FieldSpec, ...]:
    properties = payload.get("properties")
    if not isinstance(properties, dict):
        raise ValueError("Schema must declare an object with properties.")
    required = set(payload.get("required") or [])
    fields: list[FieldSpec] = []
    for name, raw in properties.items():
        if not isinstance(raw, dict):
            raise ValueError(f"Schema property {name!r} must be an object.")
        field_type = _field_type(raw.get("type"))
        if field_type is None:
            continue
        items: tuple[FieldSpec, ...] = ()
        nested: tuple[FieldSpec, ...] = ()
        raw_items = raw.get("items")
        if field_type == "array" and isinstance(raw_items, dict) and isinstance(raw_items.get("properties"), dict):
            items = _fields_from_properties(raw_items)
        if field_type == "object" and isinstance(raw.get("properties"), dict):
            nested = _fields_from_properties(raw)
        fields.append(
            FieldSpec(
                name=str(name),
                type=field_type,
                required=name in required,
                enum=tuple(str(value) for value in raw.get("enum") or ()) if field_type == "string" else (),
                items=items,
                properties=nested,
            )
        )
    return tuple(fields)


def _field_type(raw_type: Any) -> str | None:
    """Map a JSON Schema ``type`` onto a supported field type; None for null-only fields."""
    if isinstance(raw_type, list):
        candidates = [str(value) for value in raw_type if value != "null"]
        if not candidates:
            return None
        raw_type = candidates[0]
    if raw_type == "null":
        return None
    field_type = str(raw_type or "string")
    return TYPE_ALIASES.get(field_type, field_type)
