from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .errors import EndpointUnavailable
from .models import CompletionRequest, RawCompletion

logger = logging.getLogger(__name__)

# Tokens that open a new user turn; always sent so the model cannot invent the next user message.
BASELINE_STOP_SEQUENCES = ("User:", "\nUser", "\nuser", "Human:", "\nHuman")
ENVELOPE_TEXT_FIELDS = ("content", "response", "text", "generation")


def _envelope_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        for key in ENVELOPE_TEXT_FIELDS:
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return json.dumps(payload)


def _error_detail(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message") or payload.get("error")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message[:200] or f"HTTP {response.status_code}"


class CompletionClient:
    """Thin async client for a llama-server style ``POST /completion`` endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds, connect=8.0)
        self._transport = transport

    async def complete(self, request: CompletionRequest) -> RawCompletion:
        payload = request.as_payload(BASELINE_STOP_SEQUENCES)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/completion", json=payload)
        except httpx.HTTPError as exc:
            raise EndpointUnavailable(f"Completion request failed: {exc!r}") from exc

        if response.status_code >= 400:
            raise EndpointUnavailable(
                f"Completion endpoint returned {response.status_code}: {_error_detail(response)}"
            )
        return self.decode(response)

    @staticmethod
    def decode(response: httpx.Response) -> RawCompletion:
        try:
            envelope = response.json()
        except ValueError:
            pass
        else:
            return RawCompletion(text=_envelope_text(envelope), source_format="json")

        try:
            text = response.text
        except UnicodeDecodeError as exc:
            raise EndpointUnavailable("Completion body could not be decoded.") from exc
        if not text.strip():
            raise EndpointUnavailable("Completion endpoint returned an empty body.")
        logger.debug("completion body was plain text (%d chars)", len(text))
        return RawCompletion(text=text, source_format="plain_text")
