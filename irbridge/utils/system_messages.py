"""System message handling for backends with different conventions."""

from dataclasses import dataclass, field
from typing import Literal, Optional

from irbridge.exceptions import ErrorCode, ValidationDetail, ValidationError
from irbridge.types import IRMessage, IRWarning, SystemMessageStrategy

SystemMessagePolicy = Literal["merge", "reject"]

DEFAULT_SEPARATOR = "\n\n"


@dataclass
class NormalizedSystemMessages:
    """Result of :func:`normalize_system_messages`.

    Attributes:
        messages: Conversation messages to send
        system: System prompt to send separately, for the
            ``separate-parameter`` strategy
        warnings: Drift introduced while normalizing
    """

    messages: list[IRMessage]
    system: Optional[str] = None
    warnings: list[IRWarning] = field(default_factory=list)


def extract_system_messages(messages: list[IRMessage]) -> tuple[list[IRMessage], list[IRMessage]]:
    """Split messages into (system messages, everything else)."""
    system = [m for m in messages if m.role == "system"]
    others = [m for m in messages if m.role != "system"]
    return system, others


def combine_system_messages(
    messages: list[IRMessage],
    separator: str = DEFAULT_SEPARATOR,
) -> Optional[str]:
    """Concatenate the text of all system messages, or None if there are none."""
    texts = [m.text for m in messages if m.role == "system" and m.text]
    if not texts:
        return None
    return separator.join(texts)


def _merge_or_reject(
    system: list[IRMessage],
    policy: SystemMessagePolicy,
    separator: str,
) -> tuple[Optional[str], list[IRWarning]]:
    combined = combine_system_messages(system, separator)
    if len(system) <= 1:
        return combined, []
    if policy == "reject":
        raise ValidationError(
            f"Backend accepts a single system message, got {len(system)}",
            code=ErrorCode.INVALID_MESSAGE_FORMAT,
            validation_details=[
                ValidationDetail(
                    field="messages",
                    reason="multiple system messages",
                    value=len(system),
                    expected="at most 1",
                )
            ],
        )
    warning = IRWarning(
        category="system-message-merged",
        severity="info",
        message=f"Merged {len(system)} system messages into one",
        field="messages",
        original_value=len(system),
        transformed_value=1,
    )
    return combined, [warning]


def normalize_system_messages(
    messages: list[IRMessage],
    strategy: SystemMessageStrategy,
    *,
    supports_multiple: bool = True,
    policy: SystemMessagePolicy = "merge",
    separator: str = DEFAULT_SEPARATOR,
) -> NormalizedSystemMessages:
    """Rewrite system messages for a backend's system message strategy.

    Multiple system messages are concatenated with ``separator`` when the
    policy is ``merge`` and rejected with a ValidationError when it is
    ``reject``. Every rewrite is recorded as an IRWarning.

    Args:
        messages: The conversation
        strategy: How the backend accepts system prompts
        supports_multiple: Whether the backend accepts several system messages
        policy: What to do with several system messages when unsupported
        separator: Separator used when merging

    Returns:
        The normalized conversation
    """
    system, others = extract_system_messages(messages)
    if not system:
        return NormalizedSystemMessages(messages=list(messages))

    if strategy == "in-messages":
        if supports_multiple:
            return NormalizedSystemMessages(messages=list(messages))
        combined, warnings = _merge_or_reject(system, policy, separator)
        merged = [IRMessage.system(combined)] if combined else []
        return NormalizedSystemMessages(messages=merged + others, warnings=warnings)

    combined, warnings = _merge_or_reject(system, policy, separator)

    if strategy == "separate-parameter":
        return NormalizedSystemMessages(messages=others, system=combined, warnings=warnings)

    if strategy == "prepend-user":
        if combined is None:
            return NormalizedSystemMessages(messages=others, warnings=warnings)
        result = list(others)
        for index, message in enumerate(result):
            if message.role == "user":
                if isinstance(message.content, str):
                    content = f"{combined}{separator}{message.content}"
                else:
                    content = [{"type": "text", "text": combined + separator}] + [
                        block.model_dump() for block in message.content
                    ]
                result[index] = IRMessage(role="user", content=content, name=message.name)
                break
        else:
            result.insert(0, IRMessage.user(combined))
        warnings.append(
            IRWarning(
                category="system-message-emulated",
                severity="info",
                message="System prompt prepended to the first user message",
                field="messages",
            )
        )
        return NormalizedSystemMessages(messages=result, warnings=warnings)

    warnings.append(
        IRWarning(
            category="system-message-dropped",
            message="Backend does not support system messages; they were dropped",
            field="messages",
            original_value=combined,
        )
    )
    return NormalizedSystemMessages(messages=others, warnings=warnings)
