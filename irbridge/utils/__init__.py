"""Utility functions for irbridge."""

from .parameters import filter_unsupported_parameters
from .system_messages import (
    NormalizedSystemMessages,
    combine_system_messages,
    extract_system_messages,
    normalize_system_messages,
)
from .validation import validate_ir_chat_request, validate_message, validate_parameters

__all__ = [
    "filter_unsupported_parameters",
    "NormalizedSystemMessages",
    "combine_system_messages",
    "extract_system_messages",
    "normalize_system_messages",
    "validate_ir_chat_request",
    "validate_message",
    "validate_parameters",
]
