"""
Audit log — lifecycle events turned into log lines and counters.

The engine never logs its outcomes for auditing directly; it emits events,
and this module subscribes to them. Removing the subscriber silences the
audit trail without touching the pipeline.
"""

from __future__ import annotations

import structlog

from neurogen.events import (
    AssemblyFailedEvent,
    AssemblyProposedEvent,
    EventBus,
    NeuronAssembledEvent,
)
from neurogen.metrics import metrics

logger = structlog.get_logger("neurogen.audit")


def _on_assembled(event: NeuronAssembledEvent) -> None:
    metrics.inc("neurons_assembled_total", neuron_type=event.neuron_type)
    logger.info(
        "audit.neuron_assembled",
        name=event.name,
        neuron_type=event.neuron_type,
        proposal_id=event.proposal_id,
    )


def _on_failed(event: AssemblyFailedEvent) -> None:
    metrics.inc("assembly_failed_total", stage=event.stage)
    logger.warning(
        "audit.assembly_failed",
        name=event.name,
        stage=event.stage,
        reason=event.reason,
        proposal_id=event.proposal_id,
    )


def _on_proposed(event: AssemblyProposedEvent) -> None:
    metrics.inc("assembly_proposed_total")
    logger.info(
        "audit.assembly_proposed",
        name=event.name,
        proposal_id=event.proposal_id,
        safety_score=event.safety_score,
        warnings=event.warnings,
    )


def attach_audit_log(bus: EventBus) -> list[str]:
    """Subscribe the audit handlers; returns subscription ids for detaching."""
    return [
        bus.subscribe("neuron.assembled", _on_assembled),
        bus.subscribe("assembly.failed", _on_failed),
        bus.subscribe("assembly.proposed", _on_proposed),
    ]


def detach_audit_log(bus: EventBus, subscription_ids: list[str]) -> None:
    for sub_id in subscription_ids:
        bus.unsubscribe(sub_id)
