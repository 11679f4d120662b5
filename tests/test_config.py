"""Tests for neurogen.config — environment-driven settings."""

from __future__ import annotations

import pytest

from neurogen.config import (
    DEFAULT_ALLOWED_CAPABILITIES,
    AnalyzerConfig,
    AssemblyConfig,
    CompilerConfig,
    GeneratorConfig,
    NetworkConfig,
    NeurogenConfig,
    ValidatorConfig,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "NEUROGEN_APPROVAL_POLICY",
        "NEUROGEN_ALLOWED_CAPABILITIES",
        "NEUROGEN_EXTRA_ALLOWED_MODULES",
        "NEUROGEN_MAX_ASSEMBLED_NEURONS",
        "ANTHROPIC_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_assembly_fails_closed(self) -> None:
        config = AssemblyConfig()
        assert config.approval_policy == "deny"
        assert config.code_generator == "template"
        assert config.min_safety_score == 0.5
        assert config.max_assembled_neurons == 100

    def test_validator_allow_list(self) -> None:
        assert ValidatorConfig().allowed_capabilities == DEFAULT_ALLOWED_CAPABILITIES
        assert "network" not in DEFAULT_ALLOWED_CAPABILITIES

    def test_generator_unavailable_without_key(self) -> None:
        assert GeneratorConfig().is_available is False
        assert GeneratorConfig(ANTHROPIC_API_KEY="sk-test").is_available is True

    def test_gap_scan_disabled(self) -> None:
        assert AnalyzerConfig().scan_interval_seconds == 0.0


class TestEnvironment:
    def test_values_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("NEUROGEN_APPROVAL_POLICY", "manual")
        monkeypatch.setenv("NEUROGEN_MAX_ASSEMBLED_NEURONS", "7")
        config = AssemblyConfig()
        assert config.approval_policy == "manual"
        assert config.max_assembled_neurons == 7

    def test_comma_separated_list(self, monkeypatch) -> None:
        monkeypatch.setenv("NEUROGEN_ALLOWED_CAPABILITIES", "Reasoning, network ,")
        assert ValidatorConfig().allowed_capabilities == ["reasoning", "network"]

    def test_json_list(self, monkeypatch) -> None:
        monkeypatch.setenv("NEUROGEN_EXTRA_ALLOWED_MODULES", '["decimal", "fractions"]')
        assert CompilerConfig().extra_allowed_modules == ["decimal", "fractions"]

    def test_malformed_json_list(self, monkeypatch) -> None:
        monkeypatch.setenv("NEUROGEN_EXTRA_ALLOWED_MODULES", '["decimal"')
        assert CompilerConfig().extra_allowed_modules == []

    def test_invalid_policy_rejected(self) -> None:
        with pytest.raises(ValueError):
            AssemblyConfig(NEUROGEN_APPROVAL_POLICY="always")


class TestClamping:
    def test_assembly_limits(self) -> None:
        config = AssemblyConfig(
            NEUROGEN_MAX_ASSEMBLED_NEURONS=0,
            NEUROGEN_MIN_SAFETY_SCORE=3,
            NEUROGEN_APPROVAL_TIMEOUT=-1,
            NEUROGEN_AUTO_APPROVAL_THRESHOLD=-0.5,
            NEUROGEN_AUTO_APPROVAL_MIN_CONFIDENCE=2,
        )
        assert config.max_assembled_neurons == 1
        assert config.min_safety_score == 1.0
        assert config.approval_timeout_seconds == 0.01
        assert config.auto_approval_threshold == 0.0
        assert config.auto_approval_min_confidence == 1.0

    def test_other_limits(self) -> None:
        assert NetworkConfig(NEUROGEN_HISTORY_SIZE=0).history_size == 1
        assert CompilerConfig(NEUROGEN_MAX_SOURCE_CHARS=5).max_source_chars == 100
        assert AnalyzerConfig(NEUROGEN_GAP_SCAN_INTERVAL=-3).scan_interval_seconds == 0.0
        assert GeneratorConfig(NEUROGEN_MAX_TOKENS=10).max_tokens == 256


class TestMasterConfig:
    def test_aggregates_subsystems(self) -> None:
        config = NeurogenConfig()
        assert isinstance(config.assembly, AssemblyConfig)
        assert isinstance(config.network, NetworkConfig)
        assert "approval=deny" in repr(config)
