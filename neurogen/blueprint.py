"""
Blueprint Data Models — What a Neuron Should Be.

A Blueprint is the declarative, immutable description of one candidate
neuron: which topics it listens to, what it does with each message, whether
it acts on its own schedule, and why it should exist at all. Blueprints come
from the gap analyzer or from any external caller.

ValidationResult records what the safety validator thought of a blueprint.
Proposal pairs the two while a decision is pending. AssembledNeuron is the
catalog entry left behind once the blueprint has been compiled and wired in.
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from neurogen.assembly.compiler import LoadableUnit
    from neurogen.neuron import Neuron

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATOR_RE = re.compile(r"[\s\-]+")


def normalize_capability(value: str) -> str:
    """"FileAccess", "file-access" and "file access" all become "file_access"."""
    text = _CAMEL_BOUNDARY_RE.sub("_", str(value).strip())
    return _SEPARATOR_RE.sub("_", text).lower()


def new_proposal_id() -> str:
    return f"prop-{uuid.uuid4().hex[:12]}"


class NeuronType(str, Enum):
    """How a neuron is driven: by messages, by its own tick, or both."""

    REACTIVE = "reactive"
    PERIODIC = "periodic"
    HYBRID = "hybrid"


class MessageHandler(BaseModel):
    """One topic binding inside a blueprint."""

    model_config = ConfigDict(frozen=True)

    topic_pattern: str
    handling_logic: str = ""
    sends_response: bool = False
    broadcasts_result: bool = False


class Blueprint(BaseModel):
    """Immutable declarative description of one neuron."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    rationale: str = ""
    neuron_type: NeuronType = NeuronType.REACTIVE
    subscribed_topics: frozenset[str] = frozenset()
    capabilities: frozenset[str] = frozenset()
    message_handlers: tuple[MessageHandler, ...] = ()
    has_autonomous_tick: bool = False
    tick_behavior_description: str = ""
    confidence_score: float = Field(0.5, ge=0.0, le=1.0)
    identified_by: str = ""

    @field_validator("subscribed_topics", mode="before")
    @classmethod
    def _strip_topics(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(t).strip() for t in value if str(t).strip())
        return value

    @field_validator("capabilities", mode="before")
    @classmethod
    def _normalize_capabilities(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(normalize_capability(c) for c in value if str(c).strip())
        return value

    @property
    def all_topics(self) -> frozenset[str]:
        """Subscribed topics plus any handler patterns not listed separately."""
        return self.subscribed_topics | {h.topic_pattern for h in self.message_handlers}

    def summary(self) -> str:
        """One-paragraph description used in prompts and review screens."""
        handlers = "\n".join(
            f"- Topic '{h.topic_pattern}': {h.handling_logic} "
            f"(responds={h.sends_response}, broadcasts={h.broadcasts_result})"
            for h in self.message_handlers
        ) or "- (no message handlers)"
        tick = (
            f"AUTONOMOUS TICK: {self.tick_behavior_description}"
            if self.has_autonomous_tick
            else "No autonomous tick behavior"
        )
        return (
            f"Name: {self.name}\n"
            f"Description: {self.description}\n"
            f"Rationale: {self.rationale}\n"
            f"Type: {self.neuron_type.value}\n"
            f"Topics: {', '.join(sorted(self.subscribed_topics))}\n"
            f"Capabilities: {', '.join(sorted(self.capabilities))}\n"
            f"Handlers:\n{handlers}\n"
            f"{tick}"
        )


class ValidationResult(BaseModel):
    """Outcome of the static safety scoring of a blueprint."""

    model_config = ConfigDict(frozen=True)

    safety_score: float = Field(1.0, ge=0.0, le=1.0)
    violations: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.violations


class Proposal(BaseModel):
    """A validated blueprint waiting for an approval decision."""

    model_config = ConfigDict(frozen=True)

    proposal_id: str = Field(default_factory=new_proposal_id)
    blueprint: Blueprint
    validation: ValidationResult
    created_at: float = Field(default_factory=time.time)


@dataclass
class AssembledNeuron:
    """Catalog entry for a compiled neuron.

    The engine owns this record. The live instance, once created, is handed
    to the network which keeps only a routing reference keyed by name.
    """

    name: str
    unit: "LoadableUnit"
    blueprint: Blueprint
    proposal_id: str = ""
    created_at: float = field(default_factory=time.time)
    instance: Optional["Neuron"] = None

    @property
    def is_live(self) -> bool:
        return self.instance is not None and self.instance.is_alive
