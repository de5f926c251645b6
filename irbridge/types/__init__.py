"""Intermediate representation types."""

from .common import (
    FinishReason,
    IRMetadata,
    IRProvenance,
    IRUsage,
    IRWarning,
    StreamMode,
    SystemMessageStrategy,
    generate_request_id,
)
from .messages import (
    Base64ImageSource,
    ContentBlock,
    ImageContent,
    IRMessage,
    MessageRole,
    TextContent,
    ToolResultContent,
    ToolUseContent,
    UrlImageSource,
)
from .requests import IRChatRequest, IRParameters, IRTool, ToolChoice
from .responses import IRChatResponse
from .streaming import (
    IRChatStream,
    IRStreamChunk,
    StreamContentChunk,
    StreamDoneChunk,
    StreamErrorChunk,
    StreamErrorInfo,
    StreamStartChunk,
)

__all__ = [
    # Common
    "FinishReason",
    "IRMetadata",
    "IRProvenance",
    "IRUsage",
    "IRWarning",
    "StreamMode",
    "SystemMessageStrategy",
    "generate_request_id",
    # Messages
    "Base64ImageSource",
    "ContentBlock",
    "ImageContent",
    "IRMessage",
    "MessageRole",
    "TextContent",
    "ToolResultContent",
    "ToolUseContent",
    "UrlImageSource",
    # Requests
    "IRChatRequest",
    "IRParameters",
    "IRTool",
    "ToolChoice",
    # Responses
    "IRChatResponse",
    # Streaming
    "IRChatStream",
    "IRStreamChunk",
    "StreamContentChunk",
    "StreamDoneChunk",
    "StreamErrorChunk",
    "StreamErrorInfo",
    "StreamStartChunk",
]
