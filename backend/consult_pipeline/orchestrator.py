from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from .client import CompletionClient
from .errors import CompletionTimeout, EndpointUnavailable
from .extractor import extract_structured
from .models import (
    CompletionOptions,
    CompletionRequest,
    ConversationTurn,
    PipelineOutcome,
    RawCompletion,
    StructuredResult,
)
from .prompting import format_prompt
from .schema import CLINICAL_RESPONSE_SCHEMA, SchemaDescription
from .settings import PipelineSettings

logger = logging.getLogger(__name__)

FALLBACK_RESPONSE_TEXT = (
    "I'm sorry, I couldn't process that request. "
    "The language model did not respond in time or could not be reached. Please try again."
)
FALLBACK_PLAIN_TEXT = (
    "I encountered an issue processing your request. The LLM server may not be responding correctly. "
    "Please check the server or try again later."
)
# Structured replies end at the object's closing brace; recovery re-appends it.
STRUCTURED_STOP = "}\n"


def fallback_result() -> StructuredResult:
    return StructuredResult(response_text=FALLBACK_RESPONSE_TEXT)


class CompletionPipeline:
    """Formatter -> client -> recovery -> extractor, raced against a deadline.

    Public calls never raise for endpoint, timeout or parse failures: they
    resolve with a real or fallback result within the deadline. A call that
    outlives its deadline keeps running in the background and its result is
    dropped.
    """

    def __init__(self, client: CompletionClient, settings: PipelineSettings) -> None:
        self.client = client
        self.settings = settings
        self._abandoned: set[asyncio.Task] = set()

    def build_request(
        self,
        conversation: Sequence[ConversationTurn],
        options: CompletionOptions,
        *,
        schema: SchemaDescription | None = None,
    ) -> CompletionRequest:
        if schema is not None:
            temperature = options.temperature if options.temperature is not None else self.settings.structured_temperature
            stops = (*self.settings.extra_stop_sequences, *options.stop, STRUCTURED_STOP)
        else:
            temperature = options.temperature if options.temperature is not None else self.settings.plain_temperature
            stops = (*self.settings.extra_stop_sequences, *options.stop)
        return CompletionRequest(
            prompt_text=format_prompt(conversation, system_prompt=options.system_prompt, schema=schema),
            temperature=temperature,
            max_tokens=options.max_tokens or self.settings.max_tokens,
            stop_sequences=tuple(dict.fromkeys(stops)),
            deadline_ms=options.deadline_ms or self.settings.chat_deadline_ms,
        )

    async def _race(self, request: CompletionRequest) -> RawCompletion:
        task = asyncio.ensure_future(self.client.complete(request))
        done, _ = await asyncio.wait({task}, timeout=request.deadline_ms / 1000)
        if task in done:
            return task.result()
        self._abandoned.add(task)
        task.add_done_callback(self._discard_late_result)
        raise CompletionTimeout(request.deadline_ms)

    def _discard_late_result(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.info("abandoned completion failed after its deadline: %s", exc)
        else:
            logger.info("abandoned completion settled after its deadline; result discarded")

    async def invoke_structured(
        self,
        conversation: Sequence[ConversationTurn],
        schema: SchemaDescription = CLINICAL_RESPONSE_SCHEMA,
        options: CompletionOptions | None = None,
    ) -> PipelineOutcome:
        request = self.build_request(conversation, options or CompletionOptions(), schema=schema)
        try:
            raw = await self._race(request)
            result = extract_structured(raw.text, schema)
        except CompletionTimeout as exc:
            logger.warning("structured completion timed_out: %s", exc)
            return PipelineOutcome(state="timed_out", result=fallback_result(), error=str(exc))
        except EndpointUnavailable as exc:
            logger.warning("structured completion failed: %s", exc)
            return PipelineOutcome(state="failed", result=fallback_result(), error=str(exc))
        except Exception as exc:
            logger.exception("structured completion raised unexpectedly")
            return PipelineOutcome(state="failed", result=fallback_result(), error=str(exc) or type(exc).__name__)
        return PipelineOutcome(state="succeeded", result=result)

    async def send_structured(
        self,
        conversation: Sequence[ConversationTurn],
        schema: SchemaDescription = CLINICAL_RESPONSE_SCHEMA,
        options: CompletionOptions | None = None,
    ) -> StructuredResult:
        outcome = await self.invoke_structured(conversation, schema, options)
        return outcome.result

    async def send_plain(
        self,
        conversation: Sequence[ConversationTurn],
        options: CompletionOptions | None = None,
    ) -> str:
        request = self.build_request(conversation, options or CompletionOptions())
        try:
            raw = await self._race(request)
        except (CompletionTimeout, EndpointUnavailable) as exc:
            logger.warning("plain completion degraded to fallback: %s", exc)
            return FALLBACK_PLAIN_TEXT
        except Exception:
            logger.exception("plain completion raised unexpectedly")
            return FALLBACK_PLAIN_TEXT
        return raw.text

    @property
    def in_flight_abandoned(self) -> int:
        return len(self._abandoned)
