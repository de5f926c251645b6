"""Request type definitions."""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from .common import IRMetadata, StreamMode
from .messages import IRMessage


class IRTool(BaseModel):
    """A tool the model may call."""

    name: str
    description: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})

    model_config = {"frozen": True}


ToolChoice = Union[Literal["auto", "none", "required"], dict[str, Any]]


class IRParameters(BaseModel):
    """Sampling and generation parameters.

    ``None`` means "not requested"; adapters only forward what is set.
    """

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop_sequences: Optional[list[str]] = None
    seed: Optional[int] = None
    user: Optional[str] = None
    custom: Optional[dict[str, Any]] = None

    model_config = {"frozen": True}

    def set_fields(self) -> dict[str, Any]:
        """Return only the parameters that were explicitly requested."""
        return self.model_dump(exclude_none=True)


class IRChatRequest(BaseModel):
    """A chat request in the intermediate representation."""

    messages: list[IRMessage]
    parameters: IRParameters = Field(default_factory=IRParameters)
    stream: bool = False
    stream_mode: Optional[StreamMode] = None
    tools: Optional[list[IRTool]] = None
    tool_choice: Optional[ToolChoice] = None
    metadata: IRMetadata = Field(default_factory=IRMetadata)

    model_config = {"frozen": True}

    @property
    def model(self) -> Optional[str]:
        return self.parameters.model

    @property
    def request_id(self) -> str:
        return self.metadata.request_id

    def with_model(self, model: Optional[str]) -> "IRChatRequest":
        """Return a copy targeting a different model."""
        return self.model_copy(
            update={"parameters": self.parameters.model_copy(update={"model": model})}
        )

    def with_metadata(self, **kwargs: Any) -> "IRChatRequest":
        """Return a copy with metadata fields replaced."""
        return self.model_copy(update={"metadata": self.metadata.model_copy(update=kwargs)})
