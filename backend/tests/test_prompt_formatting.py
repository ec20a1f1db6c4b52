from __future__ import annotations

from consult_pipeline import (
    ASSISTANT_PREFIX,
    CLINICAL_RESPONSE_SCHEMA,
    DEFAULT_SYSTEM_PROMPT,
    ConversationTurn,
    format_prompt,
    with_default_system_prompt,
)


def _conversation() -> list[ConversationTurn]:
    return [
        ConversationTurn(role="system", content="Be brief."),
        ConversationTurn(role="user", content="I have a cough."),
        ConversationTurn(role="assistant", content="How long have you had it?"),
        ConversationTurn(role="user", content="Three days."),
    ]


def test_trailing_user_turn_ends_with_bare_assistant_prefix():
    prompt = format_prompt(_conversation())
    assert prompt.endswith("User: Three days.\n\n" + ASSISTANT_PREFIX)
    assert not prompt.endswith("Three days.\n\n")


def test_turns_are_rendered_in_order_with_role_labels():
    prompt = format_prompt(_conversation())
    assert prompt == (
        "System: Be brief.\n\n"
        "User: I have a cough.\n\n"
        "Medical Assistant: How long have you had it?\n\n"
        "User: Three days.\n\n"
        "Medical Assistant: "
    )


def test_trailing_assistant_turn_gets_no_extra_prefix():
    turns = _conversation()[:3]
    prompt = format_prompt(turns)
    assert prompt.endswith("Medical Assistant: How long have you had it?\n\n")


def test_schema_adds_leading_json_instruction():
    prompt = format_prompt(_conversation(), schema=CLINICAL_RESPONSE_SCHEMA)
    first_block = prompt.split("\n\n", 1)[0]
    assert first_block.startswith("System: You are a medical assistant that responds in JSON format.")
    assert '"extracted_symptoms"' in prompt
    assert "Respond with valid JSON only, no other text." in prompt
    assert prompt.index("Respond with valid JSON only") < prompt.index("System: Be brief.")


def test_system_prompt_override_replaces_existing_system_turns():
    prompt = format_prompt(_conversation(), system_prompt="Answer in French.")
    assert prompt.startswith("System: Answer in French.\n\n")
    assert "Be brief." not in prompt


def test_formatting_does_not_mutate_input():
    turns = _conversation()
    snapshot = list(turns)
    format_prompt(turns, system_prompt="x", schema=CLINICAL_RESPONSE_SCHEMA)
    assert turns == snapshot


def test_empty_conversation_renders_empty_prompt():
    assert format_prompt([]) == ""


def test_default_system_prompt_only_added_when_missing():
    user_only = [ConversationTurn(role="user", content="hi")]
    with_default = with_default_system_prompt(user_only)
    assert with_default[0] == ConversationTurn(role="system", content=DEFAULT_SYSTEM_PROMPT)
    assert with_default[1:] == user_only

    assert with_default_system_prompt(_conversation()) == _conversation()
