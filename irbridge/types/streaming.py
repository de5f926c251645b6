"""Stream chunk definitions.

A well-formed stream is ``start`` followed by any number of ``content``
chunks and exactly one terminal chunk (``done`` or ``error``), with
strictly increasing ``sequence`` numbers starting at 0.
"""

from typing import Annotated, Any, AsyncIterator, Literal, Optional, Union

from pydantic import BaseModel, Field

from .common import FinishReason, IRMetadata, IRUsage
from .messages import IRMessage


class _ChunkBase(BaseModel):
    sequence: int = Field(ge=0)
    request_id: Optional[str] = None

    model_config = {"frozen": True}

    def is_terminal(self) -> bool:
        return False


class StreamStartChunk(_ChunkBase):
    type: Literal["start"] = "start"
    metadata: Optional[IRMetadata] = None


class StreamContentChunk(_ChunkBase):
    type: Literal["content"] = "content"
    delta: str
    role: Literal["assistant"] = "assistant"
    accumulated: Optional[str] = None


class StreamDoneChunk(_ChunkBase):
    type: Literal["done"] = "done"
    finish_reason: FinishReason = "stop"
    message: Optional[IRMessage] = None
    usage: Optional[IRUsage] = None

    def is_terminal(self) -> bool:
        return True


class StreamErrorInfo(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None

    model_config = {"frozen": True}


class StreamErrorChunk(_ChunkBase):
    type: Literal["error"] = "error"
    error: StreamErrorInfo

    def is_terminal(self) -> bool:
        return True


IRStreamChunk = Annotated[
    Union[StreamStartChunk, StreamContentChunk, StreamDoneChunk, StreamErrorChunk],
    Field(discriminator="type"),
]

IRChatStream = AsyncIterator[IRStreamChunk]
