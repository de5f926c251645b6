"""Message type definitions."""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


MessageRole = Literal["system", "user", "assistant", "tool"]


class TextContent(BaseModel):
    """Plain text content block."""

    type: Literal["text"] = "text"
    text: str

    model_config = {"frozen": True}


class UrlImageSource(BaseModel):
    type: Literal["url"] = "url"
    url: str

    model_config = {"frozen": True}


class Base64ImageSource(BaseModel):
    type: Literal["base64"] = "base64"
    media_type: str
    data: str

    model_config = {"frozen": True}


ImageSource = Annotated[Union[UrlImageSource, Base64ImageSource], Field(discriminator="type")]


class ImageContent(BaseModel):
    """Image content block, referenced by URL or inlined as base64."""

    type: Literal["image"] = "image"
    source: ImageSource

    model_config = {"frozen": True}


class ToolUseContent(BaseModel):
    """A tool invocation requested by the assistant."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class ToolResultContent(BaseModel):
    """The result of a tool invocation."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Union[str, list[TextContent]]
    is_error: Optional[bool] = None

    model_config = {"frozen": True}

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(block.text for block in self.content)


ContentBlock = Annotated[
    Union[TextContent, ImageContent, ToolUseContent, ToolResultContent],
    Field(discriminator="type"),
]


class IRMessage(BaseModel):
    """A single conversation message in the intermediate representation."""

    role: MessageRole
    content: Union[str, list[ContentBlock]]
    name: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_message(self) -> "IRMessage":
        """Validate message structure."""
        if isinstance(self.content, list):
            for block in self.content:
                if block.type == "tool_use" and self.role != "assistant":
                    raise ValueError("tool_use blocks are only valid in assistant messages")
        return self

    @property
    def text(self) -> str:
        """Concatenated text of the message, ignoring non-text blocks."""
        if isinstance(self.content, str):
            return self.content
        return "".join(block.text for block in self.content if block.type == "text")

    @property
    def blocks(self) -> list[Any]:
        """Content as a list of blocks."""
        if isinstance(self.content, str):
            return [TextContent(text=self.content)] if self.content else []
        return list(self.content)

    def tool_uses(self) -> list[ToolUseContent]:
        return [b for b in self.blocks if b.type == "tool_use"]

    def tool_results(self) -> list[ToolResultContent]:
        return [b for b in self.blocks if b.type == "tool_result"]

    @classmethod
    def system(cls, content: str) -> "IRMessage":
        """Create a system message."""
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: Union[str, list[Any]]) -> "IRMessage":
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: Union[str, list[Any]]) -> "IRMessage":
        """Create an assistant message."""
        return cls(role="assistant", content=content)

    @classmethod
    def tool(cls, tool_use_id: str, content: str, is_error: Optional[bool] = None) -> "IRMessage":
        """Create a tool message carrying a single tool result."""
        return cls(
            role="tool",
            content=[ToolResultContent(tool_use_id=tool_use_id, content=content, is_error=is_error)],
        )
