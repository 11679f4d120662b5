"""
Shared fixtures for the neurogen test suite.

Provides blueprint builders, fast configs, a running event bus, a network
and an engine wired together, so individual test modules can focus on
behavior rather than setup.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import pytest
import pytest_asyncio

from neurogen.assembly.engine import SelfAssemblyEngine
from neurogen.blueprint import Blueprint, MessageHandler
from neurogen.config import AssemblyConfig, ValidatorConfig
from neurogen.events import EventBus, NeurogenEvent
from neurogen.metrics import metrics
from neurogen.network import NeuronNetwork
from neurogen.neuron import NeuralMessage, Neuron


# ---------------------------------------------------------------------------
# Test neurons
# ---------------------------------------------------------------------------

class Recorder(Neuron):
    """Records every message delivered on its topics."""

    def configure(self) -> None:
        self.received: list[NeuralMessage] = []
        for pattern in sorted(self.topics):
            self.bind(pattern, self.received.append)


@pytest.fixture()
def recorder_cls() -> type[Recorder]:
    return Recorder


# ---------------------------------------------------------------------------
# Blueprint fixtures
# ---------------------------------------------------------------------------

def _blueprint(name: str = "greeter", **overrides: Any) -> Blueprint:
    fields: dict[str, Any] = {
        "name": name,
        "description": "Greets users who say hello",
        "rationale": "Users keep saying hello and nobody answers",
        "subscribed_topics": ["user.hello"],
        "capabilities": ["text_processing"],
        "message_handlers": [
            MessageHandler(
                topic_pattern="user.hello",
                handling_logic="Reply with a friendly greeting",
                sends_response=True,
            )
        ],
        "confidence_score": 0.8,
    }
    fields.update(overrides)
    return Blueprint(**fields)


@pytest.fixture()
def make_blueprint() -> Callable[..., Blueprint]:
    """Factory for a clean, valid blueprint with per-test overrides."""
    return _blueprint


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def assembly_config() -> AssemblyConfig:
    """Short timeouts so failure paths finish quickly.

    pydantic-settings fields with aliases are set using the alias name.
    """
    return AssemblyConfig(
        NEUROGEN_MAX_ASSEMBLED_NEURONS=10,
        NEUROGEN_MIN_SAFETY_SCORE=0.5,
        NEUROGEN_APPROVAL_TIMEOUT=0.2,
        NEUROGEN_GENERATION_TIMEOUT=1.0,
        NEUROGEN_APPROVAL_POLICY="deny",
        NEUROGEN_CODE_GENERATOR="template",
        NEUROGEN_TICK_INTERVAL=0.05,
    )


@pytest.fixture()
def validator_config() -> ValidatorConfig:
    return ValidatorConfig(
        NEUROGEN_ALLOWED_CAPABILITIES=[
            "text_processing",
            "reasoning",
            "event_observation",
            "summarization",
            "memory",
            "scheduling",
            "math",
        ],
        NEUROGEN_LOW_CONFIDENCE_THRESHOLD=0.5,
    )


# ---------------------------------------------------------------------------
# Runtime fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest_asyncio.fixture
async def event_bus():
    bus = EventBus()
    await bus.start()
    yield bus
    await bus.stop()


@pytest.fixture()
def recorded_events(event_bus: EventBus) -> list[NeurogenEvent]:
    """Every event dispatched on the bus, in order."""
    events: list[NeurogenEvent] = []
    event_bus.subscribe("*", events.append)
    return events


@pytest_asyncio.fixture
async def network():
    net = NeuronNetwork(history_size=100, stop_timeout=1.0)
    yield net
    await net.shutdown()


@pytest_asyncio.fixture
async def engine(network: NeuronNetwork, event_bus: EventBus, assembly_config: AssemblyConfig):
    eng = SelfAssemblyEngine(network, config=assembly_config, event_bus=event_bus)
    yield eng
    await eng.shutdown()


@pytest.fixture()
def wait_until() -> Callable[..., Awaitable[bool]]:
    """Poll a predicate until it holds or the timeout passes."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 1.0) -> bool:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                return False
            await asyncio.sleep(0.005)
        return True

    return _wait
