from __future__ import annotations

from consult_pipeline import FALLBACK_RESPONSE_TEXT

from helpers import ScriptedEndpoint, completion, parse_sse_events, refused, structured_reply

HEADACHE = {"name": "headache", "present": True, "confidence": 0.85, "severity": "mild"}


def _new_episode(client, title: str = "Headache follow-up") -> int:
    response = client.post("/episodes", json={"title": title})
    assert response.status_code == 200
    return response.json()["id"]


def test_chat_send_returns_structured_turn_and_persists_it(client, install_endpoint):
    install_endpoint(ScriptedEndpoint(structured_reply("Try resting in a dark room.", [HEADACHE])))
    episode_id = _new_episode(client)

    response = client.post(f"/episodes/{episode_id}/messages", json={"content": "My head hurts."})
    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "succeeded"
    assert body["response"]["response"] == "Try resting in a dark room."
    assert len(body["symptom_ids"]) == 1

    items = client.get(f"/episodes/{episode_id}/messages").json()["items"]
    assert [item["role"] for item in items] == ["user", "assistant"]
    assert items[0]["structured"] is None
    assert items[1]["structured"]["extracted_symptoms"][0]["name"] == "headache"

    symptoms = client.get(f"/episodes/{episode_id}/symptoms").json()["items"]
    assert symptoms[0]["code"] == "headache"
    assert symptoms[0]["extracted_from"] == body["user_message_id"]


def test_chat_send_with_unreachable_endpoint_still_replies(client, install_endpoint):
    install_endpoint(ScriptedEndpoint(refused))
    episode_id = _new_episode(client)

    response = client.post(f"/episodes/{episode_id}/messages", json={"content": "Anyone there?"})
    assert response.status_code == 200
    assert response.json()["state"] == "failed"
    assert response.json()["response"]["response"] == FALLBACK_RESPONSE_TEXT

    items = client.get(f"/episodes/{episode_id}/messages").json()["items"]
    assert items[-1]["structured"]["response"] == FALLBACK_RESPONSE_TEXT


def test_episode_lifecycle_and_ordering(client, install_endpoint):
    install_endpoint(ScriptedEndpoint(structured_reply("ok")))
    first = _new_episode(client, "First")
    second = _new_episode(client, "Second")
    client.post(f"/episodes/{first}/messages", json={"content": "bump"})

    listed = [item["id"] for item in client.get("/episodes").json()["items"]]
    assert listed[:2] == [first, second]

    renamed = client.patch(f"/episodes/{second}", json={"title": "Renamed"}).json()
    assert renamed["title"] == "Renamed"
    closed = client.post(f"/episodes/{second}/close").json()
    assert closed["closed"] is True

    response = client.post(f"/episodes/{second}/messages", json={"content": "still there?"})
    assert response.status_code == 409
    assert client.get(f"/episodes/{second}/messages").json()["items"] == []


def test_unknown_episode_is_404(client):
    assert client.get("/episodes/4242").status_code == 404
    assert client.post("/episodes/4242/messages", json={"content": "hi"}).status_code == 404
    assert client.get("/episodes/4242/symptoms").status_code == 404


def test_empty_message_is_rejected(client):
    episode_id = _new_episode(client)
    assert client.post(f"/episodes/{episode_id}/messages", json={"content": ""}).status_code == 422


def test_process_accepts_custom_schema(client, install_endpoint):
    endpoint = install_endpoint(ScriptedEndpoint(structured_reply("See your GP this week.", triage="gp")))
    episode_id = _new_episode(client)

    response = client.post(
        f"/episodes/{episode_id}/process",
        json={
            "content": "Headache for a week.",
            "schema": {
                "type": "object",
                "required": ["response"],
                "properties": {
                    "response": {"type": "string"},
                    "triage": {"type": "string", "enum": ["home", "gp", "emergency"]},
                },
            },
        },
    )
    assert response.status_code == 200
    assert response.json()["response"]["triage"] == "gp"
    assert '"triage"' in endpoint.last_prompt


def test_process_rejects_shapeless_schema(client):
    episode_id = _new_episode(client)
    response = client.post(
        f"/episodes/{episode_id}/process",
        json={"content": "hello", "schema": {"type": "string"}},
    )
    assert response.status_code == 422


def test_recommendations_endpoint_persists_assistant_message(client, install_endpoint):
    install_endpoint(
        ScriptedEndpoint(
            structured_reply(
                "Mostly self-care.",
                recommendations=[{"type": "lifestyle", "content": "Limit screen time."}],
            )
        )
    )
    episode_id = _new_episode(client)

    body = client.post(f"/episodes/{episode_id}/recommendations").json()
    assert body["user_message_id"] is None
    assert body["response"]["recommendations"][0]["type"] == "lifestyle"
    items = client.get(f"/episodes/{episode_id}/messages").json()["items"]
    assert [item["role"] for item in items] == ["assistant"]


def test_message_stream_emits_current_snapshot(client, install_endpoint):
    install_endpoint(ScriptedEndpoint(structured_reply("Noted.")))
    episode_id = _new_episode(client)
    client.post(f"/episodes/{episode_id}/messages", json={"content": "Hello"})

    response = client.get(f"/episodes/{episode_id}/messages/stream", params={"limit": 1})
    assert response.status_code == 200
    assert "text/event-stream" in response.headers.get("content-type", "")
    events = parse_sse_events(response.text)
    assert [event["event"] for event in events] == ["snapshot"]
    items = events[0]["data"]["items"]
    assert [item["role"] for item in items] == ["user", "assistant"]
    assert items[1]["structured"]["response"] == "Noted."


def test_health_reports_endpoint_address(client):
    body = client.get("/health").json()
    assert body == {"ok": True, "llm_base_url": "http://llm.test"}


def test_non_finite_confidence_keeps_the_episode_readable(client, install_endpoint):
    install_endpoint(
        ScriptedEndpoint(
            completion('{"response": "Rest up.", "extracted_symptoms": [{"name": "fever", "present": true, "confidence": Infinity}]}')
        )
    )
    episode_id = _new_episode(client)

    response = client.post(f"/episodes/{episode_id}/messages", json={"content": "I feel feverish."})
    assert response.status_code == 200
    assert response.json()["response"]["response"] == "Rest up."
    assert response.json()["symptom_ids"] == []

    listing = client.get(f"/episodes/{episode_id}/messages")
    assert listing.status_code == 200
    assert [item["role"] for item in listing.json()["items"]] == ["user", "assistant"]


def test_process_accepts_integer_and_nullable_schema_types(client, install_endpoint):
    install_endpoint(ScriptedEndpoint(structured_reply("Come back in 3 days.", days=3)))
    episode_id = _new_episode(client)

    response = client.post(
        f"/episodes/{episode_id}/process",
        json={
            "content": "When should I return?",
            "schema": {
                "type": "object",
                "properties": {
                    "response": {"type": "string"},
                    "days": {"type": "integer"},
                    "note": {"type": ["string", "null"]},
                },
            },
        },
    )
    assert response.status_code == 200
    assert response.json()["response"]["days"] == 3
