# neurogen/config.py
"""
Configuration for the self-assembly runtime.

All configuration flows through this module. Values are loaded from
environment variables (and an optional .env file at the project root) and
validated with Pydantic. Every knob has a safe default: with no environment
at all the runtime assembles nothing, because the approval policy defaults
to "deny".
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal, Optional

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings, NoDecode

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above neurogen/),
# so the config works regardless of the current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - A JSON array string  → '["a", "b"]'
      - Comma-separated str  → "a, b"
      - A single value       → ["value"]
      - An existing list     → passthrough with str coercion
    """
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                logger.warning("config.invalid_json_list", value=stripped[:80])
                return []
            return _coerce_str_list(parsed) if isinstance(parsed, list) else []
        return [part.strip() for part in stripped.split(",") if part.strip()]
    return []


# list[str] fields that accept JSON arrays, comma-separated strings, and lists.
# NoDecode stops pydantic-settings from JSON-decoding the raw env value first.
StrList = Annotated[list[str], NoDecode, BeforeValidator(_coerce_str_list)]


DEFAULT_ALLOWED_CAPABILITIES = [
    "text_processing",
    "reasoning",
    "event_observation",
    "summarization",
    "memory",
    "scheduling",
    "math",
]


class AssemblyConfig(BaseSettings):
    """Configuration for the self-assembly pipeline."""

    max_assembled_neurons: int = Field(100, alias="NEUROGEN_MAX_ASSEMBLED_NEURONS")
    min_safety_score: float = Field(0.5, alias="NEUROGEN_MIN_SAFETY_SCORE")

    # How long a proposal may wait for an approval decision (seconds)
    approval_timeout_seconds: float = Field(300.0, alias="NEUROGEN_APPROVAL_TIMEOUT")
    # Upper bound on one code-generation call (seconds)
    generation_timeout_seconds: float = Field(60.0, alias="NEUROGEN_GENERATION_TIMEOUT")

    # Approval policy wired by the runtime: "deny" leaves the gate empty
    # (fail-closed), "threshold" auto-approves clean high-scoring proposals,
    # "manual" holds proposals until approve_proposal()/reject_proposal().
    approval_policy: Literal["deny", "threshold", "manual"] = Field(
        "deny", alias="NEUROGEN_APPROVAL_POLICY"
    )
    auto_approval_threshold: float = Field(0.9, alias="NEUROGEN_AUTO_APPROVAL_THRESHOLD")
    auto_approval_min_confidence: float = Field(0.7, alias="NEUROGEN_AUTO_APPROVAL_MIN_CONFIDENCE")

    # Code generator wired by the runtime
    code_generator: Literal["template", "claude"] = Field(
        "template", alias="NEUROGEN_CODE_GENERATOR"
    )

    # Tick period for blueprints that request autonomous behavior
    tick_interval_seconds: float = Field(30.0, alias="NEUROGEN_TICK_INTERVAL")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "AssemblyConfig":
        self.max_assembled_neurons = max(1, int(self.max_assembled_neurons))
        self.min_safety_score = max(0.0, min(1.0, float(self.min_safety_score)))
        self.approval_timeout_seconds = max(0.01, float(self.approval_timeout_seconds))
        self.generation_timeout_seconds = max(0.01, float(self.generation_timeout_seconds))
        self.auto_approval_threshold = max(0.0, min(1.0, float(self.auto_approval_threshold)))
        self.auto_approval_min_confidence = max(0.0, min(1.0, float(self.auto_approval_min_confidence)))
        self.tick_interval_seconds = max(0.01, float(self.tick_interval_seconds))
        return self


class ValidatorConfig(BaseSettings):
    """Configuration for the blueprint safety validator."""

    allowed_capabilities: StrList = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_CAPABILITIES),
        alias="NEUROGEN_ALLOWED_CAPABILITIES",
    )
    low_confidence_threshold: float = Field(0.5, alias="NEUROGEN_LOW_CONFIDENCE_THRESHOLD")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_capabilities(self) -> "ValidatorConfig":
        self.allowed_capabilities = [c.strip().lower() for c in self.allowed_capabilities]
        self.low_confidence_threshold = max(0.0, min(1.0, float(self.low_confidence_threshold)))
        return self


class CompilerConfig(BaseSettings):
    """Configuration for the Python neuron compiler."""

    # Modules generated code may import in addition to the built-in allow-list
    extra_allowed_modules: StrList = Field(
        default_factory=list,
        alias="NEUROGEN_EXTRA_ALLOWED_MODULES",
    )
    max_source_chars: int = Field(50_000, alias="NEUROGEN_MAX_SOURCE_CHARS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "CompilerConfig":
        self.max_source_chars = max(100, int(self.max_source_chars))
        return self


class NetworkConfig(BaseSettings):
    """Configuration for the neuron network bus."""

    history_size: int = Field(500, alias="NEUROGEN_HISTORY_SIZE")
    # How long a neuron may take to drain its mailbox on stop (seconds)
    stop_timeout_seconds: float = Field(10.0, alias="NEUROGEN_STOP_TIMEOUT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "NetworkConfig":
        self.history_size = max(1, int(self.history_size))
        self.stop_timeout_seconds = max(0.1, float(self.stop_timeout_seconds))
        return self


class AnalyzerConfig(BaseSettings):
    """Configuration for capability-gap analysis."""

    importance_threshold: float = Field(0.6, alias="NEUROGEN_GAP_IMPORTANCE_THRESHOLD")
    window_size: int = Field(200, alias="NEUROGEN_GAP_WINDOW")
    max_unhandled_topics: int = Field(5, alias="NEUROGEN_GAP_MAX_TOPICS")
    # Seconds between automatic gap scans; 0 disables the scan loop
    scan_interval_seconds: float = Field(0.0, alias="NEUROGEN_GAP_SCAN_INTERVAL")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "AnalyzerConfig":
        self.importance_threshold = max(0.0, min(1.0, float(self.importance_threshold)))
        self.window_size = max(1, int(self.window_size))
        self.max_unhandled_topics = max(1, int(self.max_unhandled_topics))
        self.scan_interval_seconds = max(0.0, float(self.scan_interval_seconds))
        return self


class GeneratorConfig(BaseSettings):
    """Configuration for the Claude-backed code generator.

    Authentication is only required when the "claude" generator is selected,
    so a missing key is not a validation error here.
    """

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    model: str = Field("claude-sonnet-4-5-20250929", alias="NEUROGEN_MODEL")
    max_tokens: int = Field(4096, alias="NEUROGEN_MAX_TOKENS")
    request_timeout_seconds: float = Field(60.0, alias="NEUROGEN_REQUEST_TIMEOUT_SECONDS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "GeneratorConfig":
        self.max_tokens = max(256, int(self.max_tokens))
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        return self

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)


class NeurogenConfig:
    """Master configuration aggregating all subsystem configs."""

    def __init__(self):
        self.assembly = AssemblyConfig()
        self.validator = ValidatorConfig()
        self.compiler = CompilerConfig()
        self.network = NetworkConfig()
        self.analyzer = AnalyzerConfig()
        self.generator = GeneratorConfig()

    def __repr__(self) -> str:
        return (
            f"NeurogenConfig(approval={self.assembly.approval_policy}, "
            f"generator={self.assembly.code_generator}, "
            f"max_neurons={self.assembly.max_assembled_neurons})"
        )
