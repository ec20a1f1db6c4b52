from .client import BASELINE_STOP_SEQUENCES, CompletionClient
from .errors import CompletionTimeout, EndpointUnavailable, MalformedStructured, NotStructured, PipelineError
from .extractor import extract_structured, parse_persisted_content, result_from_payload
from .models import (
    INVOCATION_STATES,
    CompletionOptions,
    CompletionRequest,
    ConversationTurn,
    PipelineOutcome,
    RawCompletion,
    StructuredResult,
    SymptomCandidate,
)
from .orchestrator import FALLBACK_PLAIN_TEXT, FALLBACK_RESPONSE_TEXT, CompletionPipeline, fallback_result
from .prompting import ASSISTANT_PREFIX, DEFAULT_SYSTEM_PROMPT, format_prompt, with_default_system_prompt
from .recovery import recover_json, repair_json_text
from .schema import (
    CLINICAL_RESPONSE_SCHEMA,
    RECOMMENDATIONS_SCHEMA,
    FieldSpec,
    SchemaDescription,
    schema_from_json_schema,
)
from .settings import PipelineSettings

__all__ = [
    "ASSISTANT_PREFIX",
    "BASELINE_STOP_SEQUENCES",
    "CLINICAL_RESPONSE_SCHEMA",
    "DEFAULT_SYSTEM_PROMPT",
    "FALLBACK_PLAIN_TEXT",
    "FALLBACK_RESPONSE_TEXT",
    "INVOCATION_STATES",
    "RECOMMENDATIONS_SCHEMA",
    "CompletionClient",
    "CompletionOptions",
    "CompletionPipeline",
    "CompletionRequest",
    "CompletionTimeout",
    "ConversationTurn",
    "EndpointUnavailable",
    "FieldSpec",
    "MalformedStructured",
    "NotStructured",
    "PipelineError",
    "PipelineOutcome",
    "PipelineSettings",
    "RawCompletion",
    "SchemaDescription",
    "StructuredResult",
    "SymptomCandidate",
    "extract_structured",
    "fallback_result",
    "format_prompt",
    "parse_persisted_content",
    "recover_json",
    "repair_json_text",
    "result_from_payload",
    "schema_from_json_schema",
    "with_default_system_prompt",
]
