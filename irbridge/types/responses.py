"""Response type definitions."""

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from .common import FinishReason, IRMetadata, IRUsage
from .messages import IRMessage


class IRChatResponse(BaseModel):
    """A completed chat response in the intermediate representation."""

    message: IRMessage
    finish_reason: FinishReason = "stop"
    usage: Optional[IRUsage] = None
    metadata: IRMetadata = Field(default_factory=IRMetadata)
    raw: Optional[dict[str, Any]] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_role(self) -> "IRChatResponse":
        if self.message.role != "assistant":
            raise ValueError("response message must have role 'assistant'")
        return self

    @property
    def text(self) -> str:
        return self.message.text

    def with_metadata(self, **kwargs: Any) -> "IRChatResponse":
        """Return a copy with metadata fields replaced."""
        return self.model_copy(update={"metadata": self.metadata.model_copy(update=kwargs)})
