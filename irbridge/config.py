from __future__ import annotations

import logging
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from irbridge.adapters import AdapterRegistry, FrontendAdapter
from irbridge.bridge import Bridge, BridgeConfig
from irbridge.router import CooldownManager, ModelTranslationConfig, PatternMapping, Router
from irbridge.types.common import StreamMode


class BackendSettings(BaseModel):
    type: str
    name: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)


class PatternSettings(BaseModel):
    pattern: str
    target_model: str
    priority: int = 0
    backend: str | None = None


class ModelTranslationSettings(BaseModel):
    strategy: Literal["exact", "pattern", "hybrid", "none"] = "hybrid"
    mapping: dict[str, str] = Field(default_factory=dict)
    backend_mappings: dict[str, dict[str, str]] = Field(default_factory=dict)
    patterns: list[PatternSettings] = Field(default_factory=list)
    default_model: str | None = None
    warn_on_default: bool = True
    strict: bool = False

    def to_config(self) -> ModelTranslationConfig:
        return ModelTranslationConfig(
            strategy=self.strategy,
            mapping=dict(self.mapping),
            backend_mappings={k: dict(v) for k, v in self.backend_mappings.items()},
            patterns=[PatternMapping(**p.model_dump()) for p in self.patterns],
            default_model=self.default_model,
            warn_on_default=self.warn_on_default,
            strict=self.strict,
        )


class ModelRouteSettings(BaseModel):
    pattern: str
    backend: str


class RouterSettings(BaseModel):
    name: str = "router"
    strategy: Literal[
        "priority", "round-robin", "random", "latency", "model-based", "cost-optimized"
    ] = "priority"
    fallback_strategy: Literal["next", "none"] = "next"
    enable_cooldowns: bool = False
    cooldown_time: float = 60.0
    cooldown_failure_threshold: int = 3
    model_translation: ModelTranslationSettings = Field(default_factory=ModelTranslationSettings)
    model_routes: dict[str, str] = Field(default_factory=dict)
    pattern_routes: list[ModelRouteSettings] = Field(default_factory=list)


class BridgeSettings(BaseModel):
    default_model: str | None = None
    timeout: float | None = None
    validate_requests: bool = True
    stream_mode: StreamMode = "delta"

    def to_config(self) -> BridgeConfig:
        return BridgeConfig(
            default_model=self.default_model,
            timeout=self.timeout,
            validate_requests=self.validate_requests,
            stream_mode=self.stream_mode,
        )


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_logs: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {value}")
        return level


class GatewayConfig(BaseModel):
    backends: list[BackendSettings] = Field(default_factory=list)
    router: RouterSettings = Field(default_factory=RouterSettings)
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="IRBRIDGE_", extra="ignore")

    config_path: str = "irbridge.yaml"
    log_level: str = "INFO"
    json_logs: bool = False


def _resolve_env_vars(value: Any) -> Any:
    """Replace ``os.environ/NAME`` and ``${NAME}`` strings with environment values."""
    if isinstance(value, str):
        if value.startswith("os.environ/"):
            return os.getenv(value.split("/", 1)[1])
        if value.startswith("${") and value.endswith("}"):
            return os.getenv(value[2:-1])
        return value
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def load_config(path: str | Path) -> GatewayConfig:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return GatewayConfig()

    data = yaml.safe_load(cfg_path.read_text()) or {}
    return GatewayConfig.model_validate(_resolve_env_vars(data))


@lru_cache
def get_settings() -> EnvSettings:
    return EnvSettings()


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Route stdlib and structlog output through one handler."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def build_router(config: GatewayConfig, registry: type[AdapterRegistry] = AdapterRegistry) -> Router:
    if not config.backends:
        raise ValueError("at least one backend must be configured")

    backends = {}
    for index, backend_cfg in enumerate(config.backends):
        name = backend_cfg.name or f"{backend_cfg.type}-{index}"
        if name in backends:
            raise ValueError(f"duplicate backend name: {name}")
        params = dict(backend_cfg.params)
        params.setdefault("name", name)
        backends[name] = registry.create_backend(backend_cfg.type, **params)

    settings = config.router
    cooldown = None
    if settings.enable_cooldowns:
        cooldown = CooldownManager(
            cooldown_time=settings.cooldown_time,
            failure_threshold=settings.cooldown_failure_threshold,
        )
    return Router(
        backends,
        name=settings.name,
        strategy=settings.strategy,
        fallback_strategy=settings.fallback_strategy,
        model_translation=settings.model_translation.to_config(),
        cooldown=cooldown,
        model_routes=dict(settings.model_routes),
        pattern_routes=[(r.pattern, r.backend) for r in settings.pattern_routes],
    )


def build_bridge(
    config: GatewayConfig,
    frontend: FrontendAdapter | str = "generic",
    registry: type[AdapterRegistry] = AdapterRegistry,
) -> Bridge:
    if isinstance(frontend, str):
        frontend = registry.create_frontend(frontend)
    return Bridge(frontend, build_router(config, registry), config.bridge.to_config())
