from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx


def completion(text: str) -> dict[str, Any]:
    """llama-server style envelope around generated text."""
    return {"content": text, "stop": True}


def structured_reply(response: str, symptoms: list[dict[str, Any]] | None = None, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"response": response, "extracted_symptoms": symptoms or []}
    payload.update(extra)
    return completion(json.dumps(payload))


def refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("[Errno 111] Connection refused", request=request)


class ScriptedEndpoint:
    """Fake completion endpoint that answers from a script, in order.

    Each entry is a dict (JSON body), a str (plain text body), an
    ``httpx.Response``, or a callable taking the request. The last entry
    repeats once the script runs out.
    """

    def __init__(self, *replies: Any, delay: float = 0.0) -> None:
        self.replies = list(replies)
        self.delay = delay
        self.requests: list[dict[str, Any]] = []
        self.paths: list[str] = []

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        self.requests.append(json.loads(request.content.decode("utf-8")))
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if callable(reply):
            return reply(request)
        if isinstance(reply, httpx.Response):
            return reply
        if isinstance(reply, str):
            return httpx.Response(200, text=reply)
        return httpx.Response(200, json=reply)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    @property
    def last_prompt(self) -> str:
        return self.requests[-1]["prompt"]


def parse_sse_events(payload_text: str) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    current: dict[str, Any] = {}
    for line in payload_text.replace("\r", "").split("\n"):
        if line.startswith("event: "):
            current["event"] = line[len("event: "):]
        elif line.startswith("data: "):
            current["data"] = json.loads(line[len("data: "):])
        elif not line and current:
            events.append(current)
            current = {}
    if current:
        events.append(current)
    return events
