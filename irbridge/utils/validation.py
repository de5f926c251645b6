"""Validation of IR requests before they reach a backend."""

from typing import Optional

from irbridge.exceptions import ErrorCode, ErrorProvenance, ValidationDetail, ValidationError
from irbridge.types import IRChatRequest, IRMessage, IRParameters

# (min, max) inclusive ranges
PARAMETER_RANGES: dict[str, tuple[float, float]] = {
    "temperature": (0.0, 2.0),
    "top_p": (0.0, 1.0),
    "frequency_penalty": (-2.0, 2.0),
    "presence_penalty": (-2.0, 2.0),
}


def validate_message(message: IRMessage, index: int = 0) -> list[ValidationDetail]:
    """Return the problems found in one message."""
    problems = []
    field = f"messages[{index}]"
    if isinstance(message.content, list) and not message.content and message.role != "assistant":
        problems.append(ValidationDetail(field=f"{field}.content", reason="content is empty"))
    if message.role == "tool" and not message.tool_results():
        problems.append(
            ValidationDetail(
                field=f"{field}.content",
                reason="tool messages must carry a tool_result block",
            )
        )
    return problems


def validate_parameters(parameters: IRParameters) -> list[ValidationDetail]:
    """Return the problems found in the sampling parameters."""
    problems = []
    for name, (low, high) in PARAMETER_RANGES.items():
        value = getattr(parameters, name)
        if value is not None and not low <= value <= high:
            problems.append(
                ValidationDetail(
                    field=f"parameters.{name}",
                    reason="out of range",
                    value=value,
                    expected=f"{low} <= {name} <= {high}",
                )
            )
    if parameters.max_tokens is not None and parameters.max_tokens <= 0:
        problems.append(
            ValidationDetail(
                field="parameters.max_tokens",
                reason="must be positive",
                value=parameters.max_tokens,
            )
        )
    if parameters.top_k is not None and parameters.top_k <= 0:
        problems.append(
            ValidationDetail(field="parameters.top_k", reason="must be positive", value=parameters.top_k)
        )
    return problems


def validate_ir_chat_request(
    request: IRChatRequest,
    provenance: Optional[ErrorProvenance] = None,
) -> None:
    """Validate an IR request.

    Checks that there is at least one message, that every tool_result
    answers a tool_use seen earlier in the conversation, and that
    parameters are within range.

    Args:
        request: The request to validate
        provenance: Provenance attached to the raised error

    Raises:
        ValidationError: If any problem is found
    """
    problems: list[ValidationDetail] = []
    if not request.messages:
        problems.append(ValidationDetail(field="messages", reason="at least one message is required"))

    seen_tool_uses: set[str] = set()
    for index, message in enumerate(request.messages):
        problems.extend(validate_message(message, index))
        for result in message.tool_results():
            if result.tool_use_id not in seen_tool_uses:
                problems.append(
                    ValidationDetail(
                        field=f"messages[{index}].content",
                        reason="tool_result does not follow a matching tool_use",
                        value=result.tool_use_id,
                    )
                )
        seen_tool_uses.update(block.id for block in message.tool_uses())

    problems.extend(validate_parameters(request.parameters))

    if problems:
        code = (
            ErrorCode.INVALID_PARAMETERS
            if all(p.field.startswith("parameters.") for p in problems)
            else ErrorCode.INVALID_MESSAGE_FORMAT
        )
        summary = "; ".join(f"{p.field}: {p.reason}" for p in problems)
        raise ValidationError(
            f"Invalid request: {summary}",
            code=code,
            validation_details=problems,
            provenance=provenance,
        )
