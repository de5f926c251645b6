"""Common type definitions shared across the IR."""

import time
import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


FinishReason = Literal["stop", "length", "tool_calls", "content_filter", "other"]
StreamMode = Literal["delta", "accumulated"]
SystemMessageStrategy = Literal[
    "separate-parameter",
    "in-messages",
    "prepend-user",
    "not-supported",
]
WarningSeverity = Literal["info", "warning", "error"]


def generate_request_id() -> str:
    """Generate a new request identifier."""
    return f"req-{uuid.uuid4().hex}"


class IRProvenance(BaseModel):
    """Which adapters and middleware touched a request."""

    frontend: Optional[str] = None
    backend: Optional[str] = None
    router: Optional[str] = None
    middleware: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class IRWarning(BaseModel):
    """Explicit record of semantic drift during translation.

    Raised whenever a parameter is dropped, clamped or emulated, or a model
    name is substituted, so the change is never silent.
    """

    category: str
    message: str
    severity: WarningSeverity = "warning"
    field: Optional[str] = None
    original_value: Any = None
    transformed_value: Any = None
    source: Optional[str] = None

    model_config = {"frozen": True}


class IRUsage(BaseModel):
    """Token usage reported by a backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    details: Optional[dict[str, Any]] = None

    model_config = {"frozen": True}

    @classmethod
    def from_counts(cls, prompt_tokens: int, completion_tokens: int) -> "IRUsage":
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )


class IRMetadata(BaseModel):
    """Metadata that travels with a request and everything derived from it."""

    request_id: str = Field(default_factory=generate_request_id)
    timestamp: float = Field(default_factory=time.time)
    provider_response_id: Optional[str] = None
    provenance: IRProvenance = Field(default_factory=IRProvenance)
    warnings: list[IRWarning] = Field(default_factory=list)
    custom: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def with_provenance(self, **kwargs: Any) -> "IRMetadata":
        """Return a copy with provenance fields replaced."""
        return self.model_copy(update={"provenance": self.provenance.model_copy(update=kwargs)})

    def with_warnings(self, warnings: list[IRWarning]) -> "IRMetadata":
        """Return a copy with warnings appended."""
        if not warnings:
            return self
        return self.model_copy(update={"warnings": [*self.warnings, *warnings]})
