"""Base classes for frontend and backend adapters."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal, Optional

from pydantic import BaseModel, Field

from irbridge.exceptions import AdapterError, ErrorCode, ErrorProvenance
from irbridge.types import (
    IRChatRequest,
    IRChatResponse,
    IRStreamChunk,
    SystemMessageStrategy,
)

OptionalOperation = Literal["list_models", "health_check", "estimate_cost"]


class AdapterCapabilities(BaseModel):
    """What an adapter can do.

    Optional operations are declared explicitly with the ``supports_*``
    flags; callers check the flag instead of probing the adapter.
    """

    streaming: bool = True
    multi_modal: bool = False
    tools: bool = False
    max_context_tokens: Optional[int] = None
    supported_models: Optional[list[str]] = None
    system_message_strategy: SystemMessageStrategy = "in-messages"
    supports_multiple_system_messages: bool = True
    supports_temperature: bool = True
    supports_top_p: bool = True
    supports_top_k: bool = False
    supports_seed: bool = False
    supports_frequency_penalty: bool = False
    supports_presence_penalty: bool = False
    max_stop_sequences: Optional[int] = None
    supports_list_models: bool = False
    supports_health_check: bool = False
    supports_cost_estimate: bool = False

    model_config = {"frozen": True}

    def supports_model(self, model: Optional[str]) -> bool:
        if model is None or self.supported_models is None:
            return True
        return model in self.supported_models


class AdapterMetadata(BaseModel):
    """Identity and capabilities of an adapter."""

    name: str
    version: str = "1.0.0"
    provider: Optional[str] = None
    capabilities: AdapterCapabilities = Field(default_factory=AdapterCapabilities)
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


@dataclass
class ModelInfo:
    """Model information reported by a backend."""

    id: str
    name: str = ""
    provider: str = ""
    max_tokens: Optional[int] = None
    supports_streaming: bool = True
    supports_tools: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.id


@dataclass
class ListModelsResult:
    """Result of a model listing."""

    models: list[ModelInfo] = field(default_factory=list)
    source: str = "static"
    fetched_at: float = field(default_factory=time.time)

    @property
    def ids(self) -> list[str]:
        return [m.id for m in self.models]


class FrontendAdapter(ABC):
    """Translates one client wire format to and from the IR."""

    metadata: AdapterMetadata

    @property
    def name(self) -> str:
        return self.metadata.name

    @abstractmethod
    async def to_ir(self, request: Any) -> IRChatRequest:
        """Translate a client request into an IR request.

        Args:
            request: Request in the frontend's wire format

        Returns:
            The IR request

        Raises:
            AdapterConversionError: If the request is malformed
        """

    @abstractmethod
    async def from_ir(self, response: IRChatResponse) -> Any:
        """Translate an IR response into the frontend's wire format.

        Args:
            response: The IR response

        Returns:
            Response in the frontend's wire format
        """

    @abstractmethod
    def from_ir_stream(
        self,
        stream: AsyncIterator[IRStreamChunk],
        options: Optional[Any] = None,
    ) -> AsyncIterator[Any]:
        """Translate an IR chunk stream into the frontend's stream format.

        Args:
            stream: IR chunk stream
            options: Stream conversion options

        Yields:
            Frontend stream items
        """


class BackendAdapter(ABC):
    """Executes IR requests against one provider."""

    metadata: AdapterMetadata
    default_model: Optional[str] = None

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def capabilities(self) -> AdapterCapabilities:
        return self.metadata.capabilities

    @abstractmethod
    async def execute(self, request: IRChatRequest, token: Optional[Any] = None) -> IRChatResponse:
        """Execute a request and return the complete response.

        Args:
            request: The IR request
            token: Cancellation token for the request

        Returns:
            The IR response
        """

    @abstractmethod
    def execute_stream(
        self,
        request: IRChatRequest,
        token: Optional[Any] = None,
    ) -> AsyncIterator[IRStreamChunk]:
        """Execute a request and stream the response.

        Args:
            request: The IR request
            token: Cancellation token for the request

        Yields:
            IR stream chunks
        """

    async def list_models(self) -> ListModelsResult:
        """List models served by this backend."""
        raise self._unsupported("list_models")

    async def health_check(self) -> bool:
        """Return True if the backend can currently serve requests."""
        raise self._unsupported("health_check")

    async def estimate_cost(self, request: IRChatRequest) -> Optional[float]:
        """Estimate the cost of a request in USD."""
        raise self._unsupported("estimate_cost")

    def _unsupported(self, operation: str) -> AdapterError:
        return AdapterError(
            f"Backend '{self.name}' does not support {operation}",
            code=ErrorCode.UNSUPPORTED_FEATURE,
            provenance=ErrorProvenance(backend=self.name),
        )


_CAPABILITY_FLAGS = {
    "list_models": "supports_list_models",
    "health_check": "supports_health_check",
    "estimate_cost": "supports_cost_estimate",
}


def supports_operation(adapter: BackendAdapter, operation: OptionalOperation) -> bool:
    """Check whether a backend declares an optional operation.

    Args:
        adapter: The backend
        operation: Optional operation name

    Returns:
        True if the capability flag is set
    """
    return bool(getattr(adapter.metadata.capabilities, _CAPABILITY_FLAGS[operation]))
