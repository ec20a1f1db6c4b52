from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


ROLES = {"system", "user", "assistant"}
SEVERITIES = {"mild", "moderate", "severe"}

INVOCATION_STATES = {"pending", "succeeded", "timed_out", "failed"}
TERMINAL_INVOCATION_STATES = {"succeeded", "timed_out", "failed"}


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unsupported conversation role: {self.role}")


@dataclass(frozen=True)
class CompletionOptions:
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    stop: tuple[str, ...] = ()
    deadline_ms: int | None = None


@dataclass(frozen=True)
class CompletionRequest:
    prompt_text: str
    temperature: float
    max_tokens: int
    stop_sequences: tuple[str, ...]
    deadline_ms: int

    def as_payload(self, baseline_stops: tuple[str, ...]) -> dict[str, Any]:
        stops = list(baseline_stops)
        for stop in self.stop_sequences:
            if stop not in stops:
                stops.append(stop)
        return {
            "prompt": self.prompt_text,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stop": stops,
        }


@dataclass(frozen=True)
class RawCompletion:
    text: str
    source_format: str  # "json" | "plain_text"


@dataclass
class SymptomCandidate:
    name: str
    present: bool
    confidence: float
    duration: str | None = None
    severity: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "present": self.present,
            "confidence": self.confidence,
        }
        if self.duration is not None:
            payload["duration"] = self.duration
        if self.severity is not None:
            payload["severity"] = self.severity
        return payload


@dataclass
class StructuredResult:
    response_text: str
    greeting: str | None = None
    follow_up: str | None = None
    extracted_symptoms: list[SymptomCandidate] = field(default_factory=list)
    metadata: dict[str, Any] | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"response": self.response_text}
        if self.greeting is not None:
            payload["greeting"] = self.greeting
        if self.follow_up is not None:
            payload["follow_up"] = self.follow_up
        payload["extracted_symptoms"] = [symptom.to_payload() for symptom in self.extracted_symptoms]
        if self.metadata is not None:
            payload["metadata"] = dict(self.metadata)
        for key, value in self.extras.items():
            payload.setdefault(key, value)
        return payload


@dataclass
class PipelineOutcome:
    state: str
    result: StructuredResult
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.state != "succeeded"
