"""Tests for neurogen.metrics and the audit subscribers in neurogen.audit."""

from __future__ import annotations

import pytest

from neurogen.audit import attach_audit_log, detach_audit_log
from neurogen.events import AssemblyFailedEvent, AssemblyProposedEvent, NeuronAssembledEvent
from neurogen.metrics import MetricsRegistry, metrics


class TestRegistry:
    def test_counters_with_labels(self) -> None:
        registry = MetricsRegistry()
        registry.inc("assembly_failed_total", stage="approval")
        registry.inc("assembly_failed_total", 2, stage="approval")
        registry.inc("assembly_failed_total", stage="validation")
        assert registry.counter("assembly_failed_total", stage="approval") == 3
        assert registry.counter("assembly_failed_total", stage="validation") == 1
        assert registry.counter("assembly_failed_total") == 0
        assert "assembly_failed_total{stage=approval}" in registry.snapshot()["counters"]

    def test_gauges(self) -> None:
        registry = MetricsRegistry()
        registry.set_gauge("assembled_neurons", 3)
        registry.set_gauge("assembled_neurons", 2)
        assert registry.gauge("assembled_neurons") == 2
        assert registry.gauge("missing") == 0.0

    def test_histogram_snapshot(self) -> None:
        registry = MetricsRegistry()
        for value in (0.1, 0.3, 0.2):
            registry.observe("assembly_pipeline_seconds", value)
        hist = registry.snapshot()["histograms"]["assembly_pipeline_seconds"]
        assert hist["count"] == 3
        assert hist["min"] == pytest.approx(0.1)
        assert hist["max"] == pytest.approx(0.3)
        assert hist["avg"] == pytest.approx(0.2)

    def test_reset(self) -> None:
        registry = MetricsRegistry()
        registry.inc("x")
        registry.observe("y", 1.0)
        registry.reset()
        snapshot = registry.snapshot()
        assert snapshot["counters"] == {}
        assert snapshot["histograms"] == {}


class TestAuditLog:
    @pytest.mark.asyncio
    async def test_lifecycle_events_are_counted(self, event_bus) -> None:
        subscriptions = attach_audit_log(event_bus)
        assert len(subscriptions) == 3

        event_bus.emit(AssemblyProposedEvent(proposal_id="p1", name="greeter", safety_score=1.0))
        event_bus.emit(NeuronAssembledEvent(name="greeter", neuron_type="reactive"))
        event_bus.emit(AssemblyFailedEvent(name="scan", stage="validation", reason="violations"))
        await event_bus.flush()

        assert metrics.counter("assembly_proposed_total") == 1
        assert metrics.counter("neurons_assembled_total", neuron_type="reactive") == 1
        assert metrics.counter("assembly_failed_total", stage="validation") == 1

    @pytest.mark.asyncio
    async def test_detach_silences_audit(self, event_bus) -> None:
        subscriptions = attach_audit_log(event_bus)
        detach_audit_log(event_bus, subscriptions)
        assert event_bus.subscription_count == 0

        event_bus.emit(NeuronAssembledEvent(name="greeter", neuron_type="reactive"))
        await event_bus.flush()
        assert metrics.counter("neurons_assembled_total", neuron_type="reactive") == 0
