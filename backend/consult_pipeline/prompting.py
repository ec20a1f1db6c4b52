from __future__ import annotations

import json
from typing import Sequence

from .models import ConversationTurn
from .schema import SchemaDescription


ROLE_LABELS = {
    "system": "System: ",
    "user": "User: ",
    "assistant": "Medical Assistant: ",
}
ASSISTANT_PREFIX = ROLE_LABELS["assistant"]

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful medical assistant. Extract symptoms from user messages and provide helpful advice."
)


def schema_instruction(schema: SchemaDescription) -> str:
    return (
        "You are a medical assistant that responds in JSON format.\n"
        f"Follow this response schema exactly: {json.dumps(schema.as_json_schema(), indent=2)}\n"
        "Respond with valid JSON only, no other text."
    )


def with_default_system_prompt(
    turns: Sequence[ConversationTurn],
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
) -> list[ConversationTurn]:
    if any(turn.role == "system" for turn in turns):
        return list(turns)
    return [ConversationTurn(role="system", content=system_prompt), *turns]


def format_prompt(
    turns: Sequence[ConversationTurn],
    *,
    system_prompt: str | None = None,
    schema: SchemaDescription | None = None,
) -> str:
    """Render an ordered conversation as a single completion prompt.

    A ``system_prompt`` override replaces any system turns in ``turns``. A
    ``schema`` adds a leading system turn demanding JSON-only output. When the
    last turn is from the user, the prompt ends with the bare assistant label
    so the completion starts as the assistant's reply.
    """
    ordered: list[ConversationTurn] = list(turns)
    if system_prompt is not None:
        ordered = [ConversationTurn(role="system", content=system_prompt)] + [
            turn for turn in ordered if turn.role != "system"
        ]
    if schema is not None:
        ordered.insert(0, ConversationTurn(role="system", content=schema_instruction(schema)))

    prompt = "".join(f"{ROLE_LABELS[turn.role]}{turn.content}\n\n" for turn in ordered)
    if ordered and ordered[-1].role == "user":
        prompt += ASSISTANT_PREFIX
    return prompt
