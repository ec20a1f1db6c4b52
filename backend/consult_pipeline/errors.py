from __future__ import annotations


class PipelineError(Exception):
    pass


class EndpointUnavailable(PipelineError):
    """Network failure, non-2xx status, or an undecodable response body."""


class NotStructured(PipelineError):
    def __init__(self, raw_text: str) -> None:
        super().__init__("Completion text is not a JSON object.")
        self.raw_text = raw_text


class MalformedStructured(PipelineError):
    def __init__(self, raw_text: str, reason: str) -> None:
        super().__init__(f"Structured completion could not be repaired: {reason}")
        self.raw_text = raw_text
        self.reason = reason


class CompletionTimeout(PipelineError):
    def __init__(self, deadline_ms: int) -> None:
        super().__init__(f"Completion did not settle within {deadline_ms} ms.")
        self.deadline_ms = deadline_ms
