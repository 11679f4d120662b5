"""
Self-Assembly Engine — the pipeline that grows the network.

A submitted blueprint runs through one ordered, strictly forward pipeline:

    submitted → validating → pending → approved → generating → generated
              → compiling → compiled → registering → assembled

with a terminal failure branch at every decision point (rejected, denied,
generation_failed, compile_failed, registration_failed). Nothing is ever
retried; a failed name may simply be submitted again.

Submission does only the cheap synchronous checks (name, shape, duplicates,
capacity) and returns a proposal id. The rest runs as a background task per
submission, so distinct names proceed in parallel and a slow approval never
holds up anyone else. Every terminal outcome emits exactly one lifecycle
event: NeuronAssembledEvent on success, AssemblyFailedEvent (with the failing
stage and a readable reason) otherwise.

The approval gate is fail-closed. With no callback configured, every
proposal is denied.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from neurogen.assembly.compiler import Compiler, LoadableUnit, PythonNeuronCompiler
from neurogen.assembly.generator import extract_code_block, finalize_source, template_generator
from neurogen.assembly.validator import BlueprintValidator
from neurogen.blueprint import AssembledNeuron, Blueprint, Proposal, ValidationResult, new_proposal_id
from neurogen.config import AssemblyConfig
from neurogen.errors import (
    ApprovalDenied,
    AssemblyCapacityError,
    AssemblyError,
    CompileError,
    DuplicateBlueprint,
    GenerationError,
    InvalidBlueprint,
    NeuronAlreadyRunning,
    NeuronNotFound,
    RegistrationError,
    ValidationRejected,
)
from neurogen.events import (
    AssemblyFailedEvent,
    AssemblyProposedEvent,
    EventBus,
    NeurogenEvent,
    NeuronAssembledEvent,
)
from neurogen.metrics import metrics
from neurogen.network import NeuronNetwork
from neurogen.neuron import Neuron

logger = structlog.get_logger(__name__)

CodeGenerator = Callable[[Blueprint], Union[Awaitable[str], str]]
ApprovalCallback = Callable[[Proposal], Union[Awaitable[bool], bool]]

# Oldest finished records are forgotten beyond this many
MAX_RECORDS = 1000


class AssemblyState(str, Enum):
    SUBMITTED = "submitted"
    VALIDATING = "validating"
    REJECTED = "rejected"
    PENDING = "pending"
    DENIED = "denied"
    APPROVED = "approved"
    GENERATING = "generating"
    GENERATION_FAILED = "generation_failed"
    GENERATED = "generated"
    COMPILING = "compiling"
    COMPILE_FAILED = "compile_failed"
    COMPILED = "compiled"
    REGISTERING = "registering"
    ASSEMBLED = "assembled"
    REGISTRATION_FAILED = "registration_failed"


_S = AssemblyState

_TRANSITIONS: dict[AssemblyState, frozenset[AssemblyState]] = {
    _S.SUBMITTED: frozenset({_S.VALIDATING, _S.REJECTED}),
    _S.VALIDATING: frozenset({_S.REJECTED, _S.PENDING}),
    _S.PENDING: frozenset({_S.DENIED, _S.APPROVED}),
    _S.APPROVED: frozenset({_S.GENERATING, _S.GENERATION_FAILED}),
    _S.GENERATING: frozenset({_S.GENERATION_FAILED, _S.GENERATED}),
    _S.GENERATED: frozenset({_S.COMPILING, _S.COMPILE_FAILED}),
    _S.COMPILING: frozenset({_S.COMPILE_FAILED, _S.COMPILED}),
    _S.COMPILED: frozenset({_S.REGISTERING, _S.REGISTRATION_FAILED}),
    _S.REGISTERING: frozenset({_S.ASSEMBLED, _S.REGISTRATION_FAILED}),
}

TERMINAL_STATES = frozenset({
    _S.REJECTED, _S.DENIED, _S.GENERATION_FAILED, _S.COMPILE_FAILED,
    _S.REGISTRATION_FAILED, _S.ASSEMBLED,
})

# Where a pipeline lands when it fails while in a given state
_FAILURE_FOR: dict[AssemblyState, AssemblyState] = {
    _S.SUBMITTED: _S.REJECTED,
    _S.VALIDATING: _S.REJECTED,
    _S.PENDING: _S.DENIED,
    _S.APPROVED: _S.GENERATION_FAILED,
    _S.GENERATING: _S.GENERATION_FAILED,
    _S.GENERATED: _S.COMPILE_FAILED,
    _S.COMPILING: _S.COMPILE_FAILED,
    _S.COMPILED: _S.REGISTRATION_FAILED,
    _S.REGISTERING: _S.REGISTRATION_FAILED,
}

_ERROR_FOR: dict[AssemblyState, type[AssemblyError]] = {
    _S.REJECTED: ValidationRejected,
    _S.DENIED: ApprovalDenied,
    _S.GENERATION_FAILED: GenerationError,
    _S.COMPILE_FAILED: CompileError,
    _S.REGISTRATION_FAILED: RegistrationError,
}


@dataclass(frozen=True)
class StateTransition:
    state: AssemblyState
    timestamp: float
    detail: str = ""


@dataclass
class ProposalRecord:
    """Everything the engine knows about one submission."""

    proposal_id: str
    blueprint: Blueprint
    state: AssemblyState = AssemblyState.SUBMITTED
    history: list[StateTransition] = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    proposal: Optional[Proposal] = None
    source: str = ""
    error: Optional[AssemblyError] = None
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    task: Optional[asyncio.Task[None]] = field(default=None, repr=False)
    _decision: Optional[asyncio.Future[tuple[bool, str]]] = field(default=None, repr=False)
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def name(self) -> str:
        return self.blueprint.name

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        return self.state is AssemblyState.ASSEMBLED

    @property
    def failure_stage(self) -> Optional[str]:
        return self.error.stage if self.error is not None else None


class SelfAssemblyEngine:
    """Turns blueprints into running neurons, one ordered pipeline per submission."""

    def __init__(
        self,
        network: NeuronNetwork,
        *,
        config: Optional[AssemblyConfig] = None,
        validator: Optional[BlueprintValidator] = None,
        compiler: Optional[Compiler] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self._network = network
        self._config = config or AssemblyConfig()
        self._validator = validator or BlueprintValidator()
        self._compiler = compiler or PythonNeuronCompiler()
        self._event_bus = event_bus

        self._slots_lock = threading.Lock()
        self._code_generator: Optional[CodeGenerator] = None
        self._approval_callback: Optional[ApprovalCallback] = None

        self._catalog_lock = threading.Lock()
        self._catalog: dict[str, AssembledNeuron] = {}
        self._in_flight: dict[str, ProposalRecord] = {}
        self._records: dict[str, ProposalRecord] = {}

        self._compile_lock = asyncio.Lock()
        self._closed = False

        self._submitted = 0
        self._succeeded = 0
        self._failed = 0

        logger.info(
            "engine.initialized",
            max_assembled_neurons=self._config.max_assembled_neurons,
            min_safety_score=self._config.min_safety_score,
            approval_timeout=self._config.approval_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Collaborator slots
    # ------------------------------------------------------------------

    def set_code_generator(self, generator: Optional[CodeGenerator]) -> None:
        """Install the code generator; None restores the built-in template."""
        with self._slots_lock:
            self._code_generator = generator
        logger.info("engine.code_generator_set", generator=_describe(generator))

    def set_approval_callback(self, callback: Optional[ApprovalCallback]) -> None:
        """Install the approval gate; None makes every proposal fail closed."""
        with self._slots_lock:
            self._approval_callback = callback
        logger.info("engine.approval_callback_set", callback=_describe(callback))

    @property
    def code_generator(self) -> Optional[CodeGenerator]:
        with self._slots_lock:
            return self._code_generator

    @property
    def approval_callback(self) -> Optional[ApprovalCallback]:
        with self._slots_lock:
            return self._approval_callback

    @property
    def validator(self) -> BlueprintValidator:
        return self._validator

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_blueprint(self, blueprint: Blueprint) -> str:
        """Start assembling a blueprint; returns the proposal id.

        Raises InvalidBlueprint, DuplicateBlueprint or AssemblyCapacityError
        immediately. Every later failure is reported through
        AssemblyFailedEvent and the proposal record.
        """
        if self._closed:
            raise RuntimeError("engine is shut down")

        name = blueprint.name
        if not name.strip():
            raise InvalidBlueprint("blueprint name is empty")
        if not blueprint.message_handlers and not blueprint.has_autonomous_tick:
            raise InvalidBlueprint(
                "blueprint declares no message handlers and no autonomous tick", name=name
            )

        with self._catalog_lock:
            if name in self._in_flight:
                raise DuplicateBlueprint(f"'{name}' is already being assembled", name=name)
            if name in self._catalog:
                raise DuplicateBlueprint(
                    f"'{name}' is already assembled; tear it down before resubmitting", name=name
                )
            limit = self._config.max_assembled_neurons
            if len(self._catalog) + len(self._in_flight) >= limit:
                raise AssemblyCapacityError(
                    f"assembled neuron limit reached ({limit})", name=name
                )
            record = ProposalRecord(proposal_id=new_proposal_id(), blueprint=blueprint)
            self._in_flight[name] = record
            self._records[record.proposal_id] = record
            self._prune_records()
            self._submitted += 1

        record.history.append(StateTransition(AssemblyState.SUBMITTED, record.created_at))
        record.task = asyncio.create_task(self._run_pipeline(record), name=f"assembly:{name}")
        record.task.add_done_callback(lambda _task: self._settle(record))
        metrics.inc("assembly_submitted_total")
        logger.info(
            "engine.submitted",
            proposal_id=record.proposal_id,
            name=name,
            identified_by=blueprint.identified_by or None,
        )
        return record.proposal_id

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_pipeline(self, record: ProposalRecord) -> None:
        started = time.monotonic()
        try:
            await self._validate(record)
            await self._approve(record)
            source = await self._generate(record)
            unit = await self._compile(record, source)
            await self._register(record, unit)
        except AssemblyError as exc:
            self._fail(record, exc)
        except asyncio.CancelledError:
            self._cancelled(record)
        except Exception as exc:
            logger.error(
                "engine.pipeline_unexpected_error",
                proposal_id=record.proposal_id,
                name=record.name,
                state=record.state.value,
                exc_info=True,
            )
            failure = _FAILURE_FOR.get(record.state, AssemblyState.REGISTRATION_FAILED)
            self._fail(record, _ERROR_FOR[failure](f"unexpected error: {exc}", name=record.name))
        finally:
            self._release(record)
            record._done.set()
            metrics.observe("assembly_pipeline_seconds", time.monotonic() - started)

    async def _validate(self, record: ProposalRecord) -> None:
        self._transition(record, AssemblyState.VALIDATING)
        result = self._validator.validate(record.blueprint)
        record.validation = result

        if result.violations:
            raise ValidationRejected(
                "validation found violations: " + ", ".join(result.violations),
                name=record.name,
                violations=list(result.violations),
            )
        if result.safety_score < self._config.min_safety_score:
            raise ValidationRejected(
                f"safety score {result.safety_score:.2f} is below the minimum "
                f"{self._config.min_safety_score:.2f}",
                name=record.name,
            )

        record.proposal = Proposal(
            proposal_id=record.proposal_id,
            blueprint=record.blueprint,
            validation=result,
        )
        self._transition(record, AssemblyState.PENDING, f"score={result.safety_score:.2f}")

    async def _approve(self, record: ProposalRecord) -> None:
        assert record.proposal is not None
        callback = self.approval_callback
        decision: asyncio.Future[tuple[bool, str]] = asyncio.get_running_loop().create_future()
        record._decision = decision

        self._emit(AssemblyProposedEvent(
            proposal_id=record.proposal_id,
            name=record.name,
            safety_score=record.proposal.validation.safety_score,
            warnings=list(record.proposal.validation.warnings),
        ))

        if callback is None:
            record._decision = None
            raise ApprovalDenied("no approval callback configured", name=record.name)

        reviewer = asyncio.create_task(
            self._ask_reviewer(callback, record.proposal, decision),
            name=f"approval:{record.name}",
        )
        try:
            approved, reason = await asyncio.wait_for(
                asyncio.shield(decision), timeout=self._config.approval_timeout_seconds
            )
        except asyncio.TimeoutError:
            raise ApprovalDenied("timeout", name=record.name) from None
        finally:
            record._decision = None
            if not decision.done():
                decision.cancel()
            if not reviewer.done():
                reviewer.cancel()

        if not approved:
            raise ApprovalDenied(reason, name=record.name)
        self._transition(record, AssemblyState.APPROVED, reason)

    async def _ask_reviewer(
        self,
        callback: ApprovalCallback,
        proposal: Proposal,
        decision: asyncio.Future[tuple[bool, str]],
    ) -> None:
        try:
            result = callback(proposal)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.error(
                "engine.approval_callback_error",
                proposal_id=proposal.proposal_id,
                error=str(exc),
                exc_info=True,
            )
            self._decide(decision, proposal.proposal_id, False, f"approval callback failed: {exc}")
            return
        approved = bool(result)
        self._decide(
            decision,
            proposal.proposal_id,
            approved,
            "approved by callback" if approved else "rejected by approval callback",
        )

    @staticmethod
    def _decide(
        decision: asyncio.Future[tuple[bool, str]], proposal_id: str, approved: bool, reason: str
    ) -> bool:
        if decision.done():
            logger.info("engine.late_decision_discarded", proposal_id=proposal_id, approved=approved)
            return False
        decision.set_result((approved, reason))
        return True

    async def _generate(self, record: ProposalRecord) -> str:
        self._transition(record, AssemblyState.GENERATING)
        generator = self.code_generator or template_generator
        timeout = self._config.generation_timeout_seconds
        try:
            raw = await asyncio.wait_for(_call(generator, record.blueprint), timeout=timeout)
        except asyncio.TimeoutError:
            raise GenerationError(
                f"code generation timed out after {timeout:g}s", name=record.name
            ) from None
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"code generator failed: {exc}", name=record.name) from exc

        if not isinstance(raw, str):
            raise GenerationError(
                f"code generator returned {type(raw).__name__}, expected text", name=record.name
            )
        try:
            source = finalize_source(extract_code_block(raw))
        except GenerationError as exc:
            exc.name = record.name
            raise
        record.source = source
        self._transition(record, AssemblyState.GENERATED, f"{len(source)} chars")
        return source

    async def _compile(self, record: ProposalRecord, source: str) -> LoadableUnit:
        self._transition(record, AssemblyState.COMPILING)
        async with self._compile_lock:
            try:
                unit = self._compiler.compile(source)
            except CompileError as exc:
                exc.name = record.name
                raise
            except Exception as exc:
                raise CompileError(
                    "compiler failed", name=record.name, diagnostics=[f"{type(exc).__name__}: {exc}"]
                ) from exc
        self._transition(record, AssemblyState.COMPILED, unit.class_name)
        return unit

    async def _register(self, record: ProposalRecord, unit: LoadableUnit) -> None:
        self._transition(record, AssemblyState.REGISTERING)
        entry = AssembledNeuron(
            name=record.name,
            unit=unit,
            blueprint=record.blueprint,
            proposal_id=record.proposal_id,
        )
        with self._catalog_lock:
            self._catalog[record.name] = entry

        try:
            await self.launch(record.name)
        except BaseException as exc:
            await self._rollback(record.name)
            if isinstance(exc, RegistrationError):
                exc.name = record.name
                raise
            if isinstance(exc, Exception):
                raise RegistrationError(str(exc), name=record.name) from exc
            raise

        self._terminate(record, AssemblyState.ASSEMBLED, unit.class_name)
        self._succeeded += 1
        metrics.inc("assembly_succeeded_total")
        metrics.set_gauge("assembled_neurons", len(self._catalog))
        logger.info(
            "engine.assembled",
            proposal_id=record.proposal_id,
            name=record.name,
            class_name=unit.class_name,
        )
        self._emit(NeuronAssembledEvent(
            name=record.name,
            neuron_type=record.blueprint.neuron_type.value,
            proposal_id=record.proposal_id,
        ))

    async def _rollback(self, name: str) -> None:
        with self._catalog_lock:
            entry = self._catalog.pop(name, None)
        if entry is not None and entry.instance is not None:
            if self._network.get(name) is entry.instance:
                self._network.unregister(name)
            await entry.instance.stop()
        logger.info("engine.registration_rolled_back", name=name)

    # ------------------------------------------------------------------
    # Terminal handling
    # ------------------------------------------------------------------

    def _fail(self, record: ProposalRecord, exc: AssemblyError) -> None:
        if record.is_terminal:
            return
        failure = _FAILURE_FOR[record.state]
        if not exc.name:
            exc.name = record.name
        record.error = exc
        self._terminate(record, failure, exc.reason)
        self._failed += 1
        metrics.inc("assembly_failures_total", stage=exc.stage)
        logger.warning(
            "engine.assembly_failed",
            proposal_id=record.proposal_id,
            name=record.name,
            stage=exc.stage,
            reason=str(exc),
        )
        self._emit(AssemblyFailedEvent(
            name=record.name,
            stage=exc.stage,
            reason=str(exc),
            proposal_id=record.proposal_id,
        ))

    def _cancelled(self, record: ProposalRecord) -> None:
        """Record a cancelled pipeline."""
        if record.is_terminal:
            return
        failure = _FAILURE_FOR[record.state]
        reason = "timeout" if failure is AssemblyState.DENIED else "cancelled"
        exc = _ERROR_FOR[failure](reason, name=record.name)
        record.error = exc
        self._terminate(record, failure, reason)
        self._failed += 1
        metrics.inc("assembly_failures_total", stage=exc.stage)
        logger.warning(
            "engine.assembly_cancelled",
            proposal_id=record.proposal_id,
            name=record.name,
            stage=exc.stage,
        )
        self._emit(AssemblyFailedEvent(
            name=record.name,
            stage=exc.stage,
            reason=reason,
            proposal_id=record.proposal_id,
        ))

    def _settle(self, record: ProposalRecord) -> None:
        """Close out a pipeline that was cancelled before it ever ran."""
        if not record.is_terminal:
            self._cancelled(record)
        self._release(record)
        record._done.set()

    def _transition(self, record: ProposalRecord, state: AssemblyState, detail: str = "") -> None:
        if state not in _TRANSITIONS.get(record.state, frozenset()):
            raise RuntimeError(f"illegal transition {record.state.value} → {state.value}")
        record.state = state
        record.history.append(StateTransition(state, time.time(), detail))
        logger.debug(
            "engine.stage_entered",
            proposal_id=record.proposal_id,
            name=record.name,
            state=state.value,
            detail=detail or None,
        )

    def _terminate(self, record: ProposalRecord, state: AssemblyState, detail: str = "") -> None:
        self._transition(record, state, detail)
        record.finished_at = time.time()
        self._release(record)

    def _release(self, record: ProposalRecord) -> None:
        with self._catalog_lock:
            if self._in_flight.get(record.name) is record:
                del self._in_flight[record.name]

    def _prune_records(self) -> None:
        excess = len(self._records) - MAX_RECORDS
        if excess <= 0:
            return
        for proposal_id in [pid for pid, r in self._records.items() if r.is_terminal][:excess]:
            del self._records[proposal_id]

    def _emit(self, event: NeurogenEvent) -> None:
        """Enqueue a lifecycle event; subscribers never hold up a pipeline."""
        if self._event_bus is not None:
            self._event_bus.emit(event)

    # ------------------------------------------------------------------
    # Reviewing proposals
    # ------------------------------------------------------------------

    def approve_proposal(self, proposal_id: str) -> bool:
        """Approve a pending proposal. False when nothing is waiting on it."""
        return self._review(proposal_id, True, "approved by reviewer")

    def reject_proposal(self, proposal_id: str, reason: str = "rejected by reviewer") -> bool:
        return self._review(proposal_id, False, reason)

    def _review(self, proposal_id: str, approved: bool, reason: str) -> bool:
        record = self._records.get(proposal_id)
        if record is None or record._decision is None:
            logger.warning("engine.review_ignored", proposal_id=proposal_id, approved=approved)
            return False
        return self._decide(record._decision, proposal_id, approved, reason)

    def cancel_proposal(self, proposal_id: str) -> bool:
        """Cancel an in-flight pipeline. A pending proposal ends as denied."""
        record = self._records.get(proposal_id)
        if record is None or record.task is None or record.task.done():
            return False
        record.task.cancel()
        return True

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        record = self._records.get(proposal_id)
        return record.proposal if record is not None else None

    def get_record(self, proposal_id: str) -> Optional[ProposalRecord]:
        return self._records.get(proposal_id)

    def get_pending_proposals(self) -> list[Proposal]:
        return [
            r.proposal
            for r in list(self._records.values())
            if r.state is AssemblyState.PENDING and r.proposal is not None
        ]

    def get_state_history(self, proposal_id: str) -> list[StateTransition]:
        record = self._records.get(proposal_id)
        return list(record.history) if record is not None else []

    async def wait_for_outcome(self, proposal_id: str, timeout: Optional[float] = None) -> ProposalRecord:
        """Wait until the pipeline reaches a terminal state and return its record."""
        record = self._records.get(proposal_id)
        if record is None:
            raise KeyError(proposal_id)
        await asyncio.wait_for(record._done.wait(), timeout=timeout)
        return record

    # ------------------------------------------------------------------
    # Catalog and instances
    # ------------------------------------------------------------------

    def get_assembled_neurons(self) -> dict[str, AssembledNeuron]:
        """Point-in-time snapshot of the catalog."""
        with self._catalog_lock:
            return dict(self._catalog)

    def create_neuron_instance(self, name: str) -> Neuron:
        """Build the single live instance for a catalog entry (not yet started)."""
        with self._catalog_lock:
            entry = self._catalog.get(name)
            if entry is None:
                raise NeuronNotFound(f"no assembled neuron named '{name}'", name=name)
            if entry.is_live:
                raise NeuronAlreadyRunning(f"'{name}' already has a live instance", name=name)

            blueprint = entry.blueprint
            tick = self._config.tick_interval_seconds if blueprint.has_autonomous_tick else None
            try:
                instance = entry.unit.instantiate(
                    name=name,
                    topics=blueprint.subscribed_topics or None,
                    tick_interval=tick,
                )
            except Exception as exc:
                raise RegistrationError(f"instantiation failed: {exc}", name=name) from exc
            entry.instance = instance
        return instance

    async def launch(self, name: str) -> Neuron:
        """Instantiate, register and start the neuron for a catalog entry."""
        instance = self.create_neuron_instance(name)
        try:
            self._network.register(instance)
        except Exception as exc:
            await instance.stop()
            if isinstance(exc, RegistrationError):
                raise
            raise RegistrationError(f"network refused '{name}': {exc}", name=name) from exc

        try:
            await instance.start()
        except Exception as exc:
            self._network.unregister(name)
            await instance.stop()
            raise RegistrationError(f"neuron failed to start: {exc}", name=name) from exc
        logger.info("engine.launched", name=name)
        return instance

    async def stop_neuron(self, name: str) -> bool:
        """Unregister and stop the live instance; the catalog entry stays."""
        with self._catalog_lock:
            entry = self._catalog.get(name)
        if entry is None:
            raise NeuronNotFound(f"no assembled neuron named '{name}'", name=name)
        instance = entry.instance
        if instance is None or not instance.is_alive:
            return False
        self._network.unregister(name)
        await instance.stop()
        return True

    async def teardown(self, name: str) -> None:
        """Stop the neuron and drop it from the catalog so the name can be reused."""
        await self.stop_neuron(name)
        with self._catalog_lock:
            self._catalog.pop(name, None)
            remaining = len(self._catalog)
        metrics.set_gauge("assembled_neurons", remaining)
        logger.info("engine.torn_down", name=name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Cancel in-flight pipelines, then stop every neuron on the network."""
        if self._closed:
            return
        self._closed = True
        with self._catalog_lock:
            tasks = [r.task for r in self._in_flight.values() if r.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._network.shutdown()
        logger.info("engine.shutdown", cancelled_pipelines=len(tasks), assembled=len(self._catalog))

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> dict[str, Any]:
        with self._catalog_lock:
            assembled = len(self._catalog)
            in_flight = len(self._in_flight)
            live = sum(1 for e in self._catalog.values() if e.is_live)
        return {
            "submitted": self._submitted,
            "succeeded": self._succeeded,
            "failed": self._failed,
            "in_flight": in_flight,
            "assembled": assembled,
            "live": live,
            "pending_review": len(self.get_pending_proposals()),
        }


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _describe(fn: Optional[Callable[..., Any]]) -> Optional[str]:
    if fn is None:
        return None
    return getattr(fn, "__qualname__", None) or type(fn).__name__
