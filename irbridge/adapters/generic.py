"""Frontend adapter whose wire format is the IR itself, as plain dicts."""

from typing import Any, AsyncIterator, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from irbridge.exceptions import AdapterConversionError, ErrorProvenance
from irbridge.streaming import StreamConversionOptions, convert_stream_mode
from irbridge.types import IRChatRequest, IRChatResponse, IRStreamChunk

from .base import AdapterCapabilities, AdapterMetadata, FrontendAdapter
from .registry import register_frontend


@register_frontend("generic")
class GenericFrontendAdapter(FrontendAdapter):
    """Accepts IR-shaped dicts and returns IR-shaped dicts.

    Useful for callers that already speak the IR and as the reference
    frontend in tests: ``from_ir(to_ir(x))`` preserves every field.
    """

    def __init__(self, name: str = "generic") -> None:
        self.metadata = AdapterMetadata(
            name=name,
            provider="irbridge",
            capabilities=AdapterCapabilities(streaming=True, multi_modal=True, tools=True),
        )

    async def to_ir(self, request: Union[dict[str, Any], IRChatRequest]) -> IRChatRequest:
        """Validate an IR dict into an IRChatRequest.

        Raises:
            AdapterConversionError: If the dict is not a valid IR request
        """
        if isinstance(request, IRChatRequest):
            ir_request = request
        else:
            try:
                ir_request = IRChatRequest.model_validate(request)
            except PydanticValidationError as e:
                raise AdapterConversionError(
                    f"Invalid IR request: {e.error_count()} validation error(s)",
                    provenance=ErrorProvenance(frontend=self.name),
                    details={"errors": e.errors(include_url=False)},
                    cause=e,
                ) from e
        if ir_request.metadata.provenance.frontend is None:
            ir_request = ir_request.with_metadata(
                provenance=ir_request.metadata.provenance.model_copy(update={"frontend": self.name})
            )
        return ir_request

    async def from_ir(self, response: IRChatResponse) -> dict[str, Any]:
        return response.model_dump(mode="json")

    async def from_ir_stream(
        self,
        stream: AsyncIterator[IRStreamChunk],
        options: Optional[StreamConversionOptions] = None,
    ) -> AsyncIterator[dict[str, Any]]:
        source = convert_stream_mode(stream, options) if options is not None else stream
        async for chunk in source:
            yield chunk.model_dump(mode="json", exclude_none=True)
