"""Stream conversion engine and stream utilities."""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

from irbridge.exceptions import AdapterError, ErrorCode, StreamError, error_from_code
from irbridge.types import (
    FinishReason,
    IRChatResponse,
    IRMessage,
    IRMetadata,
    IRStreamChunk,
    IRUsage,
    StreamContentChunk,
    StreamDoneChunk,
    StreamErrorChunk,
    StreamErrorInfo,
    StreamMode,
    StreamStartChunk,
)

logger = logging.getLogger(__name__)


@dataclass
class StreamConversionOptions:
    """Options for :func:`convert_stream_mode`.

    Attributes:
        mode: Output stream mode
        validate_sequence: Reject chunks whose sequence does not increase
        transform: Optional function applied to the accumulated text before
            it is attached in accumulated mode
    """

    mode: StreamMode = "delta"
    validate_sequence: bool = True
    transform: Optional[Callable[[str], str]] = None


@dataclass
class StreamAccumulator:
    """Running state of one stream."""

    text: str = ""
    chunk_count: int = 0
    last_sequence: int = -1

    def add(self, chunk: StreamContentChunk) -> str:
        self.text += chunk.delta
        self.chunk_count += 1
        return self.text


class ChunkSequencer:
    """Builds well-formed chunk sequences.

    Backends use it to emit ``start``, ``content`` and a terminal chunk with
    consecutive sequence numbers; it tracks the accumulated text so the
    ``done`` message always matches the deltas sent.
    """

    def __init__(self, request_id: Optional[str] = None) -> None:
        self.request_id = request_id
        self._next = 0
        self._text = ""
        self._terminated = False

    @property
    def text(self) -> str:
        return self._text

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def next_sequence(self) -> int:
        return self._next

    def _take(self) -> int:
        if self._terminated:
            raise StreamError(
                "Chunk emitted after terminal chunk",
                code=ErrorCode.STREAM_ERROR,
            )
        sequence = self._next
        self._next += 1
        return sequence

    def start(self, metadata: Optional[IRMetadata] = None) -> StreamStartChunk:
        return StreamStartChunk(sequence=self._take(), request_id=self.request_id, metadata=metadata)

    def content(self, delta: str) -> StreamContentChunk:
        chunk = StreamContentChunk(sequence=self._take(), request_id=self.request_id, delta=delta)
        self._text += delta
        return chunk

    def done(
        self,
        finish_reason: FinishReason = "stop",
        usage: Optional[IRUsage] = None,
        message: Optional[IRMessage] = None,
    ) -> StreamDoneChunk:
        chunk = StreamDoneChunk(
            sequence=self._take(),
            request_id=self.request_id,
            finish_reason=finish_reason,
            usage=usage,
            message=message or IRMessage.assistant(self._text),
        )
        self._terminated = True
        return chunk

    def error(
        self,
        code: Union[str, ErrorCode],
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> StreamErrorChunk:
        chunk = StreamErrorChunk(
            sequence=self._take(),
            request_id=self.request_id,
            error=StreamErrorInfo(code=str(getattr(code, "value", code)), message=message, details=details),
        )
        self._terminated = True
        return chunk

    def error_from_exception(self, error: BaseException) -> StreamErrorChunk:
        if isinstance(error, AdapterError):
            return self.error(error.code, error.message, error.to_dict())
        return self.error(ErrorCode.STREAM_ERROR, str(error) or type(error).__name__)


def _reconcile_message(message: IRMessage, accumulated: str) -> IRMessage:
    """Make a done message's text equal ``accumulated`` exactly."""
    if message.text == accumulated:
        return message
    if isinstance(message.content, str):
        return message.model_copy(update={"content": accumulated})
    others = [block for block in message.content if block.type != "text"]
    blocks = ([{"type": "text", "text": accumulated}] if accumulated else []) + [
        block.model_dump() for block in others
    ]
    return IRMessage(role=message.role, content=blocks, name=message.name, metadata=message.metadata)


async def convert_stream_mode(
    stream: AsyncIterator[IRStreamChunk],
    options: Optional[Union[StreamConversionOptions, StreamMode]] = None,
) -> AsyncIterator[IRStreamChunk]:
    """Convert a stream between delta and accumulated modes.

    A single accumulator per stream receives every delta. In accumulated
    mode each content chunk carries the full text so far; in delta mode any
    upstream ``accumulated`` field is stripped. On ``done`` the final message
    text equals the accumulator byte-for-byte.

    Args:
        stream: Source stream
        options: Conversion options or a bare stream mode

    Yields:
        Converted chunks

    Raises:
        StreamError: If sequence numbers do not strictly increase or the
            done message diverges from the streamed deltas
    """
    if options is None:
        options = StreamConversionOptions()
    elif isinstance(options, str):
        options = StreamConversionOptions(mode=options)

    state = StreamAccumulator()
    async for chunk in stream:
        if options.validate_sequence and chunk.sequence <= state.last_sequence:
            raise StreamError(
                f"Out of order chunk: sequence {chunk.sequence} after {state.last_sequence}",
                code=ErrorCode.STREAM_PARSE_ERROR,
            )
        state.last_sequence = chunk.sequence

        if chunk.type == "content":
            accumulated = state.add(chunk)
            if options.mode == "accumulated":
                value = options.transform(accumulated) if options.transform else accumulated
                yield chunk.model_copy(update={"accumulated": value})
            elif chunk.accumulated is not None:
                yield chunk.model_copy(update={"accumulated": None})
            else:
                yield chunk
        elif chunk.type == "done":
            if chunk.message is None:
                yield chunk.model_copy(update={"message": IRMessage.assistant(state.text)})
            elif chunk.message.text != state.text:
                raise StreamError(
                    "Final message diverges from streamed content",
                    code=ErrorCode.STREAM_ERROR,
                    details={"streamed": state.text, "final": chunk.message.text},
                )
            else:
                yield chunk
            return
        else:
            yield chunk
            if chunk.type == "error":
                return


async def ensure_well_formed(
    stream: AsyncIterator[IRStreamChunk],
    request_id: Optional[str] = None,
    metadata: Optional[IRMetadata] = None,
) -> AsyncIterator[IRStreamChunk]:
    """Normalize a backend stream into a well-formed chunk sequence.

    Guarantees a leading ``start`` chunk, consecutive sequence numbers from
    0, the request id on every chunk, and exactly one terminal chunk whose
    ``done`` message matches the streamed deltas. A done message holding text
    beyond the deltas produces a final content chunk with the remainder.
    An exception raised before any chunk was produced propagates; after that
    it becomes a terminal ``error`` chunk.

    Args:
        stream: Backend stream
        request_id: Request id stamped on each chunk
        metadata: Metadata for a synthesized start chunk

    Yields:
        Normalized chunks
    """
    sequencer = ChunkSequencer(request_id)
    started = False
    try:
        async for chunk in stream:
            if chunk.type == "start":
                if started:
                    logger.debug("Dropping duplicate start chunk")
                    continue
                started = True
                yield sequencer.start(chunk.metadata or metadata)
                continue
            if not started:
                started = True
                yield sequencer.start(metadata)

            if chunk.type == "content":
                if chunk.delta:
                    yield sequencer.content(chunk.delta)
            elif chunk.type == "done":
                message = chunk.message
                if message is not None and message.text != sequencer.text:
                    final_text = message.text
                    if final_text.startswith(sequencer.text):
                        yield sequencer.content(final_text[len(sequencer.text):])
                    else:
                        logger.warning(
                            "Done message diverges from streamed content; using streamed text"
                        )
                        message = _reconcile_message(message, sequencer.text)
                yield sequencer.done(chunk.finish_reason, chunk.usage, message)
                break
            else:
                yield sequencer.error(chunk.error.code, chunk.error.message, chunk.error.details)
                break
    except Exception as e:
        if not started:
            raise
        logger.warning("Stream failed after start: %s", e)
        yield sequencer.error_from_exception(e)
        return

    if not started:
        yield sequencer.start(metadata)
    if not sequencer.terminated:
        yield sequencer.error(ErrorCode.STREAM_INTERRUPTED, "Stream ended without a terminal chunk")


async def collect_stream(stream: AsyncIterator[IRStreamChunk]) -> list[IRStreamChunk]:
    """Drain a stream into a list."""
    return [chunk async for chunk in stream]


async def stream_to_text(stream: AsyncIterator[IRStreamChunk]) -> str:
    """Concatenate the deltas of a stream."""
    parts = []
    async for chunk in stream:
        if chunk.type == "content":
            parts.append(chunk.delta)
        elif chunk.type == "error":
            raise error_from_code(chunk.error.code, chunk.error.message, chunk.error.details)
    return "".join(parts)


async def stream_to_response(
    stream: AsyncIterator[IRStreamChunk],
    metadata: Optional[IRMetadata] = None,
) -> IRChatResponse:
    """Fold a stream into the equivalent non-streaming response.

    Args:
        stream: Source stream
        metadata: Metadata for the response when the stream has no start chunk

    Returns:
        The assembled response

    Raises:
        StreamError: If the stream ends in an error chunk or without a terminal
    """
    text = ""
    done: Optional[StreamDoneChunk] = None
    async for chunk in stream:
        if chunk.type == "start" and chunk.metadata is not None and metadata is None:
            metadata = chunk.metadata
        elif chunk.type == "content":
            text += chunk.delta
        elif chunk.type == "done":
            done = chunk
            break
        elif chunk.type == "error":
            raise error_from_code(chunk.error.code, chunk.error.message, chunk.error.details)
    if done is None:
        raise StreamError("Stream ended without a terminal chunk", code=ErrorCode.STREAM_INTERRUPTED)
    message = done.message or IRMessage.assistant(text)
    return IRChatResponse(
        message=message,
        finish_reason=done.finish_reason,
        usage=done.usage,
        metadata=metadata or IRMetadata(),
    )


@dataclass
class SequenceValidationResult:
    """Outcome of :func:`validate_chunk_sequence`."""

    valid: bool
    errors: list[str] = field(default_factory=list)


def validate_chunk_sequence(chunks: Iterable[IRStreamChunk]) -> SequenceValidationResult:
    """Check a finished chunk sequence against the stream invariants.

    Args:
        chunks: The chunks of one stream, in emission order

    Returns:
        Validation result listing every violation found
    """
    errors = []
    chunks = list(chunks)
    if not chunks:
        return SequenceValidationResult(valid=False, errors=["stream is empty"])
    if chunks[0].type != "start":
        errors.append("first chunk is not a start chunk")

    last = -1
    text = ""
    terminals = 0
    for index, chunk in enumerate(chunks):
        if chunk.sequence <= last:
            errors.append(f"chunk {index} has non-increasing sequence {chunk.sequence}")
        last = chunk.sequence
        if terminals:
            errors.append(f"chunk {index} follows the terminal chunk")
        if chunk.type == "content":
            text += chunk.delta
            if chunk.accumulated is not None and chunk.accumulated != text:
                errors.append(f"chunk {index} accumulated text does not match deltas")
        elif chunk.is_terminal():
            terminals += 1
            if chunk.type == "done" and chunk.message is not None and chunk.message.text != text:
                errors.append("done message does not match concatenated deltas")
    if terminals == 0:
        errors.append("stream has no terminal chunk")
    return SequenceValidationResult(valid=not errors, errors=errors)


async def tap_stream(
    stream: AsyncIterator[IRStreamChunk],
    on_chunk: Callable[[IRStreamChunk], Optional[Awaitable[None]]],
) -> AsyncIterator[IRStreamChunk]:
    """Yield chunks unchanged, calling ``on_chunk`` for each."""
    async for chunk in stream:
        result = on_chunk(chunk)
        if result is not None:
            await result
        yield chunk
