"""Tests for model name translation."""

import logging

import pytest

from irbridge.exceptions import RouterError
from irbridge.router import (
    ModelTranslationConfig,
    ModelTranslator,
    PatternMapping,
    has_translation,
    merge_mappings,
    reverse_mapping,
    translate_model,
    validate_mapping,
)


class TestTranslateModel:
    """Test the translation function."""

    def test_exact(self):
        """Test an exact mapping."""
        result = translate_model("gpt-4", mapping={"gpt-4": "claude-3-5-sonnet"})
        assert result.translated == "claude-3-5-sonnet"
        assert result.source == "exact"
        assert result.was_translated

    def test_passthrough(self):
        """Test unmapped names pass through."""
        result = translate_model("llama", mapping={"gpt-4": "claude"})
        assert result.translated == "llama"
        assert result.source == "none"
        assert not result.was_translated

    def test_pattern(self):
        """Test regex rules apply in pattern mode."""
        patterns = [PatternMapping(pattern=r"^gpt-4", target_model="claude-3-opus")]
        result = translate_model("gpt-4-turbo", patterns=patterns, strategy="pattern")
        assert result.translated == "claude-3-opus"
        assert result.source == "pattern"

    def test_pattern_ignored_in_exact_mode(self):
        """Test exact mode skips patterns."""
        patterns = [PatternMapping(pattern=r"^gpt-4", target_model="claude-3-opus")]
        assert translate_model("gpt-4-turbo", patterns=patterns).source == "none"

    def test_hybrid_default(self):
        """Test hybrid falls back to the default model."""
        result = translate_model("unknown", default_model="fallback", strategy="hybrid")
        assert result.translated == "fallback"
        assert result.source == "default"

    def test_none_strategy(self):
        """Test translation can be disabled."""
        assert translate_model("gpt-4", mapping={"gpt-4": "x"}, strategy="none").translated == "gpt-4"

    def test_strict(self):
        """Test strict mode refuses untranslated names."""
        with pytest.raises(RouterError):
            translate_model("unknown", mapping={"gpt-4": "x"}, strict=True)


class TestModelTranslator:
    """Test per-backend translation."""

    @pytest.fixture
    def translator(self):
        return ModelTranslator(
            ModelTranslationConfig(
                strategy="hybrid",
                mapping={"gpt-4": "global-target"},
                backend_mappings={"anthropic": {"gpt-4": "claude-3-5-sonnet"}},
                patterns=[
                    PatternMapping(pattern=r"^gpt-3", target_model="low", priority=1),
                    PatternMapping(pattern=r"^gpt-3\.5", target_model="high", priority=10),
                    PatternMapping(pattern=r"^gpt", target_model="only-openai", backend="openai"),
                ],
            )
        )

    def test_backend_mapping_first(self, translator):
        """Test backend mappings beat the global mapping."""
        assert translator.translate("gpt-4", "anthropic").translated == "claude-3-5-sonnet"
        assert translator.translate("gpt-4", "other").translated == "global-target"

    def test_pattern_priority(self, translator):
        """Test higher priority patterns win."""
        assert translator.translate("gpt-3.5-turbo", "other").translated == "high"

    def test_backend_scoped_pattern(self, translator):
        """Test patterns scoped to another backend are skipped."""
        assert translator.translate("gpt-x", "other").source == "none"
        assert translator.translate("gpt-x", "openai").translated == "only-openai"

    def test_backend_default_warns(self, translator, caplog):
        """Test falling back to a backend default logs a warning."""
        with caplog.at_level(logging.WARNING):
            result = translator.translate("mistral", "other", backend_default="backend-default")
        assert result.translated == "backend-default"
        assert result.source == "default"
        assert "using default" in caplog.text

    def test_strict_records_backend(self):
        """Test strict failures name the backend."""
        translator = ModelTranslator(ModelTranslationConfig(strategy="exact", strict=True))
        with pytest.raises(RouterError) as exc_info:
            translator.translate("x", "anthropic")
        assert exc_info.value.provenance.backend == "anthropic"


class TestMappingHelpers:
    """Test mapping utilities."""

    def test_reverse(self):
        """Test reversing a mapping."""
        assert reverse_mapping({"a": "b"}) == {"b": "a"}

    def test_has_translation(self):
        """Test membership."""
        assert has_translation("a", {"a": "b"})
        assert not has_translation("b", {"a": "b"})

    def test_merge(self):
        """Test later mappings win."""
        assert merge_mappings({"a": "1", "b": "2"}, {"a": "3"}) == {"a": "3", "b": "2"}

    def test_validate(self):
        """Test invalid entries are rejected."""
        validate_mapping({"a": "b"})
        with pytest.raises(ValueError):
            validate_mapping({"a": ""})
        with pytest.raises(ValueError):
            validate_mapping({"": "b"})
