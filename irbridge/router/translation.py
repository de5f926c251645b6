"""Model name translation between frontends and backends."""

import logging
import re
from dataclasses import dataclass, field
from typing import Literal, Optional, Pattern, Union

from irbridge.exceptions import ErrorCode, ErrorProvenance, RouterError

logger = logging.getLogger(__name__)

ModelMapping = dict[str, str]
TranslationStrategy = Literal["exact", "pattern", "hybrid", "none"]
TranslationSource = Literal["exact", "pattern", "default", "none"]


@dataclass(frozen=True)
class TranslationResult:
    """Outcome of translating a model name.

    Attributes:
        translated: Model name to send to the backend
        source: Which rule produced the name
        was_translated: False when the original name passed through
    """

    translated: Optional[str]
    source: TranslationSource
    was_translated: bool


@dataclass
class PatternMapping:
    """Regex rule mapping matching model names to one target model."""

    pattern: Union[str, Pattern[str]]
    target_model: str
    priority: int = 0
    backend: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.pattern, str):
            self.pattern = re.compile(self.pattern)

    def matches(self, model: str) -> bool:
        return self.pattern.search(model) is not None


@dataclass
class ModelTranslationConfig:
    """Model translation settings for a Router.

    Attributes:
        strategy: ``exact`` uses maps only, ``pattern`` adds regex rules,
            ``hybrid`` also falls back to the backend default, ``none``
            disables translation
        mapping: Global exact mapping
        backend_mappings: Exact mappings per backend, consulted first
        patterns: Regex rules, tried in descending priority
        default_model: Default for backends that declare none
        warn_on_default: Log a warning when a default model is substituted
        strict: Raise instead of passing an untranslated name through
    """

    strategy: TranslationStrategy = "hybrid"
    mapping: ModelMapping = field(default_factory=dict)
    backend_mappings: dict[str, ModelMapping] = field(default_factory=dict)
    patterns: list[PatternMapping] = field(default_factory=list)
    default_model: Optional[str] = None
    warn_on_default: bool = True
    strict: bool = False


def translate_model(
    model: Optional[str],
    *,
    mapping: Optional[ModelMapping] = None,
    patterns: Optional[list[PatternMapping]] = None,
    default_model: Optional[str] = None,
    strategy: TranslationStrategy = "exact",
    strict: bool = False,
) -> TranslationResult:
    """Translate a model name.

    Order: exact mapping, first matching pattern (``pattern`` and
    ``hybrid``), default model (``hybrid``), passthrough.

    Args:
        model: Requested model name
        mapping: Exact mapping
        patterns: Regex rules, already in priority order
        default_model: Fallback model for ``hybrid``
        strategy: Translation strategy
        strict: Raise when nothing matches

    Returns:
        The translation result

    Raises:
        RouterError: In strict mode when no rule matches
    """
    if strategy == "none":
        return TranslationResult(translated=model, source="none", was_translated=False)

    if model is not None and mapping and model in mapping:
        return TranslationResult(translated=mapping[model], source="exact", was_translated=True)

    if model is not None and strategy in ("pattern", "hybrid"):
        for rule in patterns or []:
            if rule.matches(model):
                return TranslationResult(translated=rule.target_model, source="pattern", was_translated=True)

    if strategy == "hybrid" and default_model:
        return TranslationResult(
            translated=default_model,
            source="default",
            was_translated=default_model != model,
        )

    if strict:
        raise RouterError(
            f"No model translation found for '{model}'",
            code=ErrorCode.ROUTING_FAILED,
            details={"model": model, "strategy": strategy},
        )
    return TranslationResult(translated=model, source="none", was_translated=False)


class ModelTranslator:
    """Resolves model names per backend from a ModelTranslationConfig."""

    def __init__(self, config: Optional[ModelTranslationConfig] = None) -> None:
        self.config = config or ModelTranslationConfig()

    def _patterns_for(self, backend: str) -> list[PatternMapping]:
        rules = [r for r in self.config.patterns if r.backend in (None, backend)]
        return sorted(rules, key=lambda r: r.priority, reverse=True)

    def translate(
        self,
        model: Optional[str],
        backend: str,
        backend_default: Optional[str] = None,
    ) -> TranslationResult:
        """Translate ``model`` for one backend.

        Args:
            model: Requested model name
            backend: Target backend name
            backend_default: The backend's own default model

        Returns:
            The translation result
        """
        config = self.config
        if config.strategy == "none":
            return TranslationResult(translated=model, source="none", was_translated=False)

        backend_map = config.backend_mappings.get(backend, {})
        if model is not None and model in backend_map:
            return TranslationResult(translated=backend_map[model], source="exact", was_translated=True)

        try:
            result = translate_model(
                model,
                mapping=config.mapping,
                patterns=self._patterns_for(backend),
                default_model=backend_default or config.default_model,
                strategy=config.strategy,
                strict=config.strict,
            )
        except RouterError as e:
            e.provenance = ErrorProvenance(backend=backend)
            raise

        if result.source == "default" and result.was_translated and config.warn_on_default:
            logger.warning(
                "No translation for model %r on backend %r; using default %r",
                model, backend, result.translated,
            )
        return result


def reverse_mapping(mapping: ModelMapping) -> ModelMapping:
    """Swap keys and values of a mapping."""
    return {target: source for source, target in mapping.items()}


def has_translation(model: str, mapping: ModelMapping) -> bool:
    return model in mapping


def merge_mappings(*mappings: ModelMapping) -> ModelMapping:
    """Merge mappings; later mappings win."""
    merged: ModelMapping = {}
    for mapping in mappings:
        merged.update(mapping)
    return merged


def validate_mapping(mapping: ModelMapping) -> None:
    """Check that every key and value is a non-empty string.

    Raises:
        ValueError: On the first invalid entry
    """
    if not isinstance(mapping, dict):
        raise ValueError("Model mapping must be a dict")
    for source, target in mapping.items():
        if not isinstance(source, str) or not source:
            raise ValueError(f"Invalid source model: {source!r}")
        if not isinstance(target, str) or not target:
            raise ValueError(f"Invalid target model for {source!r}: {target!r}")
