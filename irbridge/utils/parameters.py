"""Capability-driven parameter filtering."""

from typing import TYPE_CHECKING, Optional

from irbridge.types import IRParameters, IRWarning

if TYPE_CHECKING:
    from irbridge.adapters.base import AdapterCapabilities

# parameter name -> capability flag
CAPABILITY_FLAGS = {
    "temperature": "supports_temperature",
    "top_p": "supports_top_p",
    "top_k": "supports_top_k",
    "seed": "supports_seed",
    "frequency_penalty": "supports_frequency_penalty",
    "presence_penalty": "supports_presence_penalty",
}


def filter_unsupported_parameters(
    parameters: IRParameters,
    capabilities: "AdapterCapabilities",
    source: Optional[str] = None,
) -> tuple[IRParameters, list[IRWarning]]:
    """Drop or clamp parameters a backend cannot honor.

    Args:
        parameters: Requested parameters
        capabilities: Backend capabilities
        source: Name recorded as the warning source

    Returns:
        The filtered parameters and one warning per change
    """
    updates = {}
    warnings = []
    for name, flag in CAPABILITY_FLAGS.items():
        value = getattr(parameters, name)
        if value is not None and not getattr(capabilities, flag):
            updates[name] = None
            warnings.append(
                IRWarning(
                    category="parameter-unsupported",
                    message=f"Parameter '{name}' is not supported and was dropped",
                    field=name,
                    original_value=value,
                    source=source,
                )
            )

    stops = parameters.stop_sequences
    limit = capabilities.max_stop_sequences
    if stops and limit is not None and len(stops) > limit:
        updates["stop_sequences"] = list(stops[:limit]) or None
        warnings.append(
            IRWarning(
                category="parameter-truncated",
                message=f"Only {limit} stop sequences are supported",
                field="stop_sequences",
                original_value=list(stops),
                transformed_value=list(stops[:limit]),
                source=source,
            )
        )

    if not updates:
        return parameters, []
    return parameters.model_copy(update=updates), warnings
