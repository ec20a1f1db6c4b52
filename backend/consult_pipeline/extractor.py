from __future__ import annotations

import json
import logging
from typing import Any

from .errors import MalformedStructured, NotStructured
from .models import SymptomCandidate, StructuredResult
from .recovery import recover_json
from .schema import CLINICAL_RESPONSE_SCHEMA, FieldSpec, SchemaDescription, is_finite_number, is_json_safe

logger = logging.getLogger(__name__)

_OPTIONAL_TEXT_FIELDS = ("greeting", "follow_up")


def _validated_object(value: dict[str, Any], fields: tuple[FieldSpec, ...]) -> dict[str, Any] | None:
    cleaned: dict[str, Any] = {}
    for field_spec in fields:
        if field_spec.name not in value:
            if field_spec.required:
                return None
            continue
        item = value[field_spec.name]
        if not field_spec.accepts(item) or not is_json_safe(item):
            if field_spec.required:
                return None
            continue
        cleaned[field_spec.name] = item
    return cleaned


def _symptom_from_payload(item: Any, field_spec: FieldSpec) -> SymptomCandidate | None:
    if not isinstance(item, dict):
        return None
    cleaned = _validated_object(item, field_spec.items) if field_spec.items else dict(item)
    if cleaned is None:
        return None
    name = cleaned.get("name")
    present = cleaned.get("present")
    confidence = cleaned.get("confidence")
    if not isinstance(name, str) or not name.strip() or not isinstance(present, bool):
        return None
    if not is_finite_number(confidence):
        return None
    duration = cleaned.get("duration")
    severity = cleaned.get("severity")
    # Confidence is passed through as reported; range checks belong to consumers.
    return SymptomCandidate(
        name=name.strip(),
        present=present,
        confidence=float(confidence),
        duration=duration if isinstance(duration, str) else None,
        severity=severity if isinstance(severity, str) else None,
    )


def result_from_payload(
    payload: dict[str, Any],
    raw_text: str,
    schema: SchemaDescription = CLINICAL_RESPONSE_SCHEMA,
) -> StructuredResult:
    text_spec = schema.get(schema.text_field)
    text_value = payload.get(schema.text_field)
    if isinstance(text_value, str) and (text_spec is None or text_spec.accepts(text_value)):
        response_text = text_value
    else:
        response_text = raw_text.strip()

    result = StructuredResult(response_text=response_text)
    for name in _OPTIONAL_TEXT_FIELDS:
        field_spec = schema.get(name)
        value = payload.get(name)
        if field_spec is not None and value is not None and field_spec.accepts(value):
            setattr(result, name, value)

    symptom_spec = schema.get("extracted_symptoms")
    raw_symptoms = payload.get("extracted_symptoms")
    if symptom_spec is not None and isinstance(raw_symptoms, list):
        for item in raw_symptoms:
            candidate = _symptom_from_payload(item, symptom_spec)
            if candidate is None:
                logger.debug("dropping symptom entry that does not match schema: %r", item)
                continue
            result.extracted_symptoms.append(candidate)

    metadata_spec = schema.get("metadata")
    raw_metadata = payload.get("metadata")
    if metadata_spec is not None and isinstance(raw_metadata, dict):
        if metadata_spec.properties:
            result.metadata = _validated_object(raw_metadata, metadata_spec.properties)
        else:
            result.metadata = dict(raw_metadata) if is_json_safe(raw_metadata) else None

    for name in schema.extras_allowed:
        field_spec = schema.get(name)
        if field_spec is None or name not in payload:
            continue
        value = payload[name]
        if not field_spec.accepts(value):
            continue
        if field_spec.type == "array" and field_spec.items:
            value = [
                cleaned
                for cleaned in (
                    _validated_object(entry, field_spec.items) if isinstance(entry, dict) else None for entry in value
                )
                if cleaned is not None
            ]
        if not is_json_safe(value):
            logger.debug("dropping extra field %r with non-finite numbers", name)
            continue
        result.extras[name] = value
    return result


def extract_structured(
    raw_text: str,
    schema: SchemaDescription = CLINICAL_RESPONSE_SCHEMA,
) -> StructuredResult:
    """Turn raw completion text into a StructuredResult; never raises for bad text."""
    try:
        payload = recover_json(raw_text)
    except NotStructured:
        logger.debug("completion is conversational text, keeping it verbatim")
        return StructuredResult(response_text=raw_text)
    except MalformedStructured as exc:
        logger.warning("structured completion unrecoverable (%s): %.200s", exc.reason, exc.raw_text)
        return StructuredResult(response_text=raw_text)
    return result_from_payload(payload, raw_text, schema)


def parse_persisted_content(content: str) -> StructuredResult | None:
    """Decode a stored assistant message; None when it was saved as free text."""
    try:
        payload = json.loads(content)
    except (TypeError, ValueError, RecursionError):
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("response"), str):
        return None
    return result_from_payload(payload, content)
