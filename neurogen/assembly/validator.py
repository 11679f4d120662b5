"""
Blueprint Safety Validator — static scoring before anything runs.

The validator never executes or generates anything. It reads a blueprint
and returns a ValidationResult with a safety score (1.0 minus weighted
penalties, floored at 0), hard violations and soft warnings:

  Violations (always reject):
    restricted-capability:<cap>       capability outside the allow-list,
                                      declared or implied by handler logic
    unconditional-io-in-tick:<kind>   the tick reaches the network or disk
                                      on every beat
    missing-rationale                 nobody said why this neuron should exist
    network-manipulation:<what>       handler logic rewires the network itself

  Warnings (reported, never block):
    low-confidence:<x>, catch-all-subscription:<pattern>,
    invalid-topic-pattern:<pattern>, missing-description,
    type-mismatch:<type>-without-tick, conditional-io-in-tick:<kind>

Each warning kind is charged once, however many times it fires, so warnings
alone can never push a blueprint below the default minimum score.

Callers can add their own SafetyConstraints with register_constraint(). A
failing critical constraint is a violation (constraint:<name>), any other
failure a warning; either way its weight comes off the score. A check that
raises counts as failed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from neurogen.blueprint import Blueprint, NeuronType, ValidationResult
from neurogen.config import ValidatorConfig
from neurogen.topics import is_catch_all, is_valid_pattern

logger = structlog.get_logger(__name__)

RESTRICTED_CAPABILITY_PENALTY = 0.6
UNCONDITIONAL_IO_PENALTY = 0.5
MISSING_RATIONALE_PENALTY = 0.3
NETWORK_MANIPULATION_PENALTY = 0.5

WARNING_PENALTIES = {
    "low-confidence": 0.15,
    "catch-all-subscription": 0.1,
    "invalid-topic-pattern": 0.05,
    "missing-description": 0.05,
    "type-mismatch": 0.05,
    "conditional-io-in-tick": 0.05,
}

# Terms in free-text logic that imply a capability the allow-list may not grant
_IO_TERMS: dict[str, re.Pattern[str]] = {
    "network": re.compile(
        r"\b(https?|urls?|sockets?|download\w*|upload\w*|internet|web|api endpoints?|"
        r"remote servers?|e-?mails?|smtp|tcp|udp)\b",
        re.IGNORECASE,
    ),
    "file_access": re.compile(
        r"\b(files?|disk|filesystem|directory|directories|folders?)\b",
        re.IGNORECASE,
    ),
}

_CONDITIONAL_RE = re.compile(r"\b(if|when|only|unless|whenever)\b", re.IGNORECASE)

_NETWORK_MANIPULATION: list[tuple[str, re.Pattern[str]]] = [
    ("register_neuron", re.compile(r"(?<!un)register_?neuron", re.IGNORECASE)),
    ("unregister", re.compile(r"\bunregister", re.IGNORECASE)),
    ("add_neuron", re.compile(r"\badd_?neuron", re.IGNORECASE)),
    ("remove_neuron", re.compile(r"\bremove_?neuron", re.IGNORECASE)),
    ("modify_network", re.compile(r"\bmodify_?network", re.IGNORECASE)),
    ("self_assembly", re.compile(r"\bself[_ -]?assembl", re.IGNORECASE)),
    ("network_access", re.compile(r"\bnetwork\.\w", re.IGNORECASE)),
]


@dataclass(frozen=True)
class SafetyConstraint:
    """A caller-supplied rule; ``check`` returns True when the blueprint passes."""

    name: str
    description: str
    check: Callable[[Blueprint], bool]
    weight: float = 0.2
    critical: bool = False


class BlueprintValidator:
    """Pure Blueprint → ValidationResult scoring."""

    def __init__(self, config: Optional[ValidatorConfig] = None) -> None:
        self._config = config or ValidatorConfig()
        self._allowed = frozenset(self._config.allowed_capabilities)
        self._constraints: list[SafetyConstraint] = []

    @property
    def allowed_capabilities(self) -> frozenset[str]:
        return self._allowed

    @property
    def constraints(self) -> tuple[SafetyConstraint, ...]:
        return tuple(self._constraints)

    def register_constraint(self, constraint: SafetyConstraint) -> None:
        if any(c.name == constraint.name for c in self._constraints):
            raise ValueError(f"constraint '{constraint.name}' is already registered")
        self._constraints.append(constraint)
        logger.info("validator.constraint_registered", constraint=constraint.name, critical=constraint.critical)

    def validate(self, blueprint: Blueprint) -> ValidationResult:
        violations: list[str] = []
        warnings: list[str] = []
        penalty = 0.0

        # --- capabilities, declared and implied ---
        restricted = sorted(c for c in blueprint.capabilities if c not in self._allowed)
        for capability in self._implied_capabilities(blueprint):
            if capability not in self._allowed and capability not in restricted:
                restricted.append(capability)
        for capability in restricted:
            violations.append(f"restricted-capability:{capability}")
            penalty += RESTRICTED_CAPABILITY_PENALTY

        # --- tick behavior ---
        if blueprint.has_autonomous_tick:
            tick_text = blueprint.tick_behavior_description
            conditional = bool(_CONDITIONAL_RE.search(tick_text))
            for kind in self._io_kinds(tick_text):
                if conditional:
                    warnings.append(f"conditional-io-in-tick:{kind}")
                else:
                    violations.append(f"unconditional-io-in-tick:{kind}")
                    penalty += UNCONDITIONAL_IO_PENALTY
        elif blueprint.neuron_type in (NeuronType.PERIODIC, NeuronType.HYBRID):
            warnings.append(f"type-mismatch:{blueprint.neuron_type.value}-without-tick")

        # --- rationale and description ---
        if not blueprint.rationale.strip():
            violations.append("missing-rationale")
            penalty += MISSING_RATIONALE_PENALTY
        if not blueprint.description.strip():
            warnings.append("missing-description")

        # --- handler logic touching the network itself ---
        logic = " ".join(
            [h.handling_logic for h in blueprint.message_handlers]
            + [blueprint.tick_behavior_description]
        )
        for label, pattern in _NETWORK_MANIPULATION:
            if pattern.search(logic):
                violations.append(f"network-manipulation:{label}")
                penalty += NETWORK_MANIPULATION_PENALTY

        # --- confidence ---
        if blueprint.confidence_score < self._config.low_confidence_threshold:
            warnings.append(f"low-confidence:{blueprint.confidence_score:.2f}")

        # --- topics ---
        for pattern in sorted(blueprint.all_topics):
            if is_catch_all(pattern):
                warnings.append(f"catch-all-subscription:{pattern}")
            elif not is_valid_pattern(pattern):
                warnings.append(f"invalid-topic-pattern:{pattern}")

        # --- caller constraints ---
        for constraint in self._constraints:
            if self._passes(constraint, blueprint):
                continue
            penalty += max(0.0, constraint.weight)
            if constraint.critical:
                violations.append(f"constraint:{constraint.name}")
            else:
                warnings.append(f"constraint:{constraint.name}")

        charged = {w.split(":", 1)[0] for w in warnings}
        penalty += sum(WARNING_PENALTIES.get(kind, 0.0) for kind in charged)

        score = round(max(0.0, 1.0 - penalty), 4)
        result = ValidationResult(
            safety_score=score,
            violations=tuple(violations),
            warnings=tuple(warnings),
        )
        logger.debug(
            "validator.scored",
            blueprint=blueprint.name,
            score=score,
            violations=violations,
            warnings=warnings,
        )
        return result

    @staticmethod
    def _passes(constraint: SafetyConstraint, blueprint: Blueprint) -> bool:
        try:
            return bool(constraint.check(blueprint))
        except Exception:
            logger.warning(
                "validator.constraint_error",
                constraint=constraint.name,
                blueprint=blueprint.name,
                exc_info=True,
            )
            return False

    @staticmethod
    def _io_kinds(text: str) -> list[str]:
        kinds = []
        for capability, pattern in _IO_TERMS.items():
            if pattern.search(text):
                kinds.append("network" if capability == "network" else "file")
        return kinds

    @staticmethod
    def _implied_capabilities(blueprint: Blueprint) -> list[str]:
        implied = []
        logic = " ".join(h.handling_logic for h in blueprint.message_handlers)
        for capability, pattern in _IO_TERMS.items():
            if pattern.search(logic):
                implied.append(capability)
        return implied
