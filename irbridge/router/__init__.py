"""Multi-backend routing with failover and load balancing."""

from .cooldown import CooldownManager
from .router import BackendResponse, ParallelDispatchResult, Router
from .stats import BackendStats, RouterStats
from .strategies import (
    CostOptimizedStrategy,
    CustomStrategy,
    LatencyStrategy,
    ModelBasedStrategy,
    PriorityStrategy,
    RandomStrategy,
    RoundRobinStrategy,
    RoutingContext,
    create_strategy,
)
from .translation import (
    ModelTranslationConfig,
    ModelTranslator,
    PatternMapping,
    TranslationResult,
    has_translation,
    merge_mappings,
    reverse_mapping,
    translate_model,
    validate_mapping,
)

__all__ = [
    "CooldownManager",
    "BackendResponse",
    "ParallelDispatchResult",
    "Router",
    "BackendStats",
    "RouterStats",
    "CostOptimizedStrategy",
    "CustomStrategy",
    "LatencyStrategy",
    "ModelBasedStrategy",
    "PriorityStrategy",
    "RandomStrategy",
    "RoundRobinStrategy",
    "RoutingContext",
    "create_strategy",
    "ModelTranslationConfig",
    "ModelTranslator",
    "PatternMapping",
    "TranslationResult",
    "has_translation",
    "merge_mappings",
    "reverse_mapping",
    "translate_model",
    "validate_mapping",
]
