"""
Assembly Runtime — the host process wiring.

Builds the event bus, the neuron network, the self-assembly engine and the
gap analyzer from a NeurogenConfig, installs the configured approval policy
and code generator, and owns their start/stop order:

    start: event bus → audit log → (optional) gap-scan loop
    stop:  gap-scan loop → engine (pipelines, then every neuron) → event bus

Usage:
    async with AssemblyRuntime() as runtime:
        await runtime.add_neuron(MySensor())
        await runtime.assemble_from_history()
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from neurogen.analyzer import GapAnalyzer
from neurogen.assembly.approval import ThresholdApprovalPolicy, hold_for_review
from neurogen.assembly.compiler import PythonNeuronCompiler
from neurogen.assembly.engine import ApprovalCallback, CodeGenerator, SelfAssemblyEngine
from neurogen.assembly.generator import ClaudeCodeGenerator
from neurogen.assembly.validator import BlueprintValidator
from neurogen.audit import attach_audit_log, detach_audit_log
from neurogen.config import NeurogenConfig
from neurogen.errors import AssemblyError
from neurogen.events import EventBus
from neurogen.network import NeuronNetwork
from neurogen.neuron import NeuralMessage, Neuron

logger = structlog.get_logger(__name__)


class AssemblyRuntime:
    """Owns every long-lived component of a self-assembling host."""

    def __init__(self, config: Optional[NeurogenConfig] = None) -> None:
        self._config = config or NeurogenConfig()

        self._event_bus = EventBus()
        self._network = NeuronNetwork(
            history_size=self._config.network.history_size,
            stop_timeout=self._config.network.stop_timeout_seconds,
        )
        self._engine = SelfAssemblyEngine(
            self._network,
            config=self._config.assembly,
            validator=BlueprintValidator(self._config.validator),
            compiler=PythonNeuronCompiler(self._config.compiler),
            event_bus=self._event_bus,
        )

        self._claude: Optional[ClaudeCodeGenerator] = None
        if self._config.generator.is_available:
            self._claude = ClaudeCodeGenerator(self._config.generator)

        self._analyzer = GapAnalyzer(
            self._network,
            config=self._config.analyzer,
            llm=self._claude.complete if self._claude is not None else None,
        )

        self._engine.set_approval_callback(self._approval_from_config())
        self._engine.set_code_generator(self._generator_from_config())

        self._audit_subscriptions: list[str] = []
        self._scan_task: Optional[asyncio.Task[None]] = None
        self._shutdown_event = asyncio.Event()
        self._running = False

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _approval_from_config(self) -> Optional[ApprovalCallback]:
        policy = self._config.assembly.approval_policy
        if policy == "threshold":
            return ThresholdApprovalPolicy(
                self._config.assembly.auto_approval_threshold,
                self._config.assembly.auto_approval_min_confidence,
            )
        if policy == "manual":
            return hold_for_review
        return None

    def _generator_from_config(self) -> Optional[CodeGenerator]:
        if self._config.assembly.code_generator != "claude":
            return None
        if self._claude is None:
            logger.warning(
                "runtime.claude_generator_unavailable",
                hint="Set ANTHROPIC_API_KEY; falling back to the template generator.",
            )
            return None
        return self._claude

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> NeurogenConfig:
        return self._config

    @property
    def engine(self) -> SelfAssemblyEngine:
        return self._engine

    @property
    def network(self) -> NeuronNetwork:
        return self._network

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def analyzer(self) -> GapAnalyzer:
        return self._analyzer

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("runtime.already_running")
            return
        await self._event_bus.start()
        self._audit_subscriptions = attach_audit_log(self._event_bus)
        interval = self._config.analyzer.scan_interval_seconds
        if interval > 0:
            self._scan_task = asyncio.create_task(self._scan_loop(interval), name="neurogen-gap-scan")
        self._running = True
        self._shutdown_event.clear()
        logger.info("runtime.started", config=repr(self._config), gap_scan_interval=interval or None)

    async def stop(self) -> None:
        """Stop scanning, cancel pipelines, drain every neuron, stop the bus."""
        if not self._running:
            return
        self._running = False
        if self._scan_task is not None:
            self._scan_task.cancel()
            try:
                await self._scan_task
            except asyncio.CancelledError:
                pass
            self._scan_task = None
        try:
            await self._engine.shutdown()
        finally:
            await self._event_bus.stop()
            detach_audit_log(self._event_bus, self._audit_subscriptions)
            self._audit_subscriptions = []
            self._shutdown_event.set()
        logger.info("runtime.stopped", stats=self._engine.stats)

    async def __aenter__(self) -> "AssemblyRuntime":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def request_shutdown(self, reason: str = "requested") -> None:
        logger.info("runtime.shutdown_requested", reason=reason)
        self._shutdown_event.set()

    async def run_until_shutdown(self) -> None:
        """Start if needed, wait for request_shutdown(), then stop."""
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def add_neuron(self, neuron: Neuron) -> None:
        """Register and start a hand-written neuron alongside assembled ones."""
        self._network.register(neuron)
        await neuron.start()

    def publish(self, topic: str, payload: object = None, **kwargs: object) -> int:
        return self._network.publish(topic, payload, **kwargs)  # type: ignore[arg-type]

    async def assemble_from_history(self, messages: Optional[list[NeuralMessage]] = None) -> list[str]:
        """Submit a blueprint for every important gap; returns proposal ids.

        Gaps whose blueprint is already assembled or in flight are skipped.
        """
        proposal_ids = []
        for blueprint in await self._analyzer.propose(messages):
            try:
                proposal_ids.append(await self._engine.submit_blueprint(blueprint))
            except AssemblyError as exc:
                logger.info(
                    "runtime.gap_blueprint_skipped",
                    name=blueprint.name,
                    error_type=type(exc).__name__,
                    reason=exc.reason,
                )
        return proposal_ids

    async def _scan_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                submitted = await self.assemble_from_history()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("runtime.gap_scan_failed", exc_info=True)
                continue
            if submitted:
                logger.info("runtime.gap_scan_submitted", proposals=submitted)
