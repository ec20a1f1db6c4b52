from __future__ import annotations

import pytest

from consult_pipeline import MalformedStructured, NotStructured, recover_json, repair_json_text


def test_missing_final_brace_is_repaired():
    raw = '{"response": "ok", "extracted_symptoms": [{"name":"fever","present":true,"confidence":0.9}]'
    parsed = recover_json(raw)
    assert parsed["response"] == "ok"
    assert [symptom["name"] for symptom in parsed["extracted_symptoms"]] == ["fever"]


def test_trailing_comma_before_brace_is_removed():
    assert recover_json('{"response": "ok",}') == {"response": "ok"}


def test_both_repairs_apply_before_the_second_parse():
    # Closing the object exposes a trailing comma that only the second repair removes.
    assert repair_json_text('{"response": "ok",') == '{"response": "ok"}'
    assert recover_json('{"response": "ok",') == {"response": "ok"}


def test_trailing_whitespace_after_brace_does_not_add_a_second_brace():
    assert recover_json('{"response": "ok",}\n  ') == {"response": "ok"}


def test_valid_json_is_parsed_without_repair():
    assert recover_json('  {"response": "fine", "follow_up": "More?"}') == {
        "response": "fine",
        "follow_up": "More?",
    }


def test_conversational_text_is_not_structured():
    with pytest.raises(NotStructured) as excinfo:
        recover_json("I think you should rest.")
    assert excinfo.value.raw_text == "I think you should rest."


def test_text_with_embedded_json_but_prose_prefix_is_not_structured():
    with pytest.raises(NotStructured):
        recover_json('Sure! {"response": "ok"}')


def test_unrepairable_json_keeps_original_text():
    raw = '{"response": "ok", "extracted_symptoms": [{"name": "fever"'
    with pytest.raises(MalformedStructured) as excinfo:
        recover_json(raw)
    assert excinfo.value.raw_text == raw
    assert excinfo.value.reason


def test_deeply_nested_text_is_malformed_not_a_crash():
    raw = '{"response": ' + "[" * 200000
    with pytest.raises(MalformedStructured) as excinfo:
        recover_json(raw)
    assert excinfo.value.raw_text == raw

