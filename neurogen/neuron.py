"""
Neuron Runtime — one independently scheduled message handler.

A neuron owns an inbound mailbox (an unbounded asyncio.Queue) that any
number of publishers feed without waiting, and a single consumer task that
works through it in arrival order. Handlers are bound to topic patterns,
either declaratively with ``@handles("sensor.*")`` on methods or at runtime
with ``bind()``; every binding whose pattern matches a message runs, in
binding order. A neuron may also act on its own schedule through
``on_tick()`` when it has a ``tick_interval``.

Lifecycle is monotonic: CREATED → STARTED → STOPPED. A stopped neuron never
restarts; the engine builds a fresh instance from its catalog instead.

Assembled neurons are ordinary subclasses:

    class Greeter(Neuron):
        name = "greeter"
        topics = ("user.hello",)

        @handles("user.hello")
        async def greet(self, message: NeuralMessage) -> None:
            self.respond(message, {"text": f"hello {message.payload}"})
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from neurogen.metrics import metrics
from neurogen.topics import topic_matches

if TYPE_CHECKING:
    from neurogen.network import NeuronNetwork

logger = structlog.get_logger(__name__)

HandlerAction = Callable[["NeuralMessage"], Awaitable[Any] | Any]

_HANDLES_ATTR = "_neuron_handles_patterns"
_SENTINEL = object()


class NeuralMessage(BaseModel):
    """A single message travelling through the network."""

    topic: str
    payload: Any = None
    sender: str = ""
    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    correlation_id: Optional[str] = None
    expects_response: bool = False
    timestamp: float = Field(default_factory=time.time)


class NeuronState(str, Enum):
    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"


@dataclass(frozen=True)
class HandlerBinding:
    pattern: str
    action: HandlerAction

    def matches(self, topic: str) -> bool:
        return topic_matches(self.pattern, topic)


def handles(*patterns: str) -> Callable[[Callable], Callable]:
    """Mark a neuron method as the handler for one or more topic patterns."""

    def decorator(func: Callable) -> Callable:
        existing = getattr(func, _HANDLES_ATTR, ())
        setattr(func, _HANDLES_ATTR, tuple(existing) + tuple(patterns))
        return func

    return decorator


class Neuron:
    """Base class for every runtime neuron, hand-written or assembled."""

    name: str = ""
    topics: tuple[str, ...] = ()
    tick_interval: Optional[float] = None
    stop_timeout: float = 10.0

    _declared_bindings: tuple[tuple[str, str], ...] = ()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        declared = list(cls._declared_bindings)
        for attr_name, value in cls.__dict__.items():
            for pattern in getattr(value, _HANDLES_ATTR, ()):
                declared.append((pattern, attr_name))
        cls._declared_bindings = tuple(declared)

    def __init__(
        self,
        name: Optional[str] = None,
        topics: Optional[Any] = None,
        tick_interval: Optional[float] = None,
    ) -> None:
        self.name = name or type(self).name or type(self).__name__
        declared_topics = topics if topics is not None else type(self).topics
        self.topics: frozenset[str] = frozenset(declared_topics)
        self.tick_interval = tick_interval if tick_interval is not None else type(self).tick_interval

        self._bindings: list[HandlerBinding] = [
            HandlerBinding(pattern, getattr(self, attr_name))
            for pattern, attr_name in type(self)._declared_bindings
        ]
        self._mailbox: asyncio.Queue[Any] = asyncio.Queue()
        self._state = NeuronState.CREATED
        self._accepting = True
        self._network: Optional["NeuronNetwork"] = None
        self._consumer_task: Optional[asyncio.Task[None]] = None
        self._tick_task: Optional[asyncio.Task[None]] = None
        self._stop_task: Optional[asyncio.Task[None]] = None

        self.processed_count = 0
        self.error_count = 0
        self.tick_count = 0

        self.configure()

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    def configure(self) -> None:
        """Called at the end of __init__; override to add bindings."""

    async def on_message(self, message: NeuralMessage) -> None:
        """Run every binding whose pattern matches, in binding order."""
        for binding in list(self._bindings):
            if not binding.matches(message.topic):
                continue
            try:
                result = binding.action(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.error_count += 1
                metrics.inc("neuron_handler_errors_total", neuron=self.name)
                logger.error(
                    "neuron.handler_error",
                    neuron=self.name,
                    pattern=binding.pattern,
                    topic=message.topic,
                    exc_info=True,
                )

    async def on_tick(self) -> None:
        """Periodic behavior; called every ``tick_interval`` seconds."""

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------

    def bind(self, pattern: str, action: HandlerAction) -> None:
        self._bindings.append(HandlerBinding(pattern, action))

    @property
    def bindings(self) -> list[HandlerBinding]:
        return list(self._bindings)

    @property
    def subscribed_patterns(self) -> frozenset[str]:
        """Topics used for routing: declared topics plus handler patterns."""
        return self.topics | {b.pattern for b in self._bindings}

    # ------------------------------------------------------------------
    # Mailbox
    # ------------------------------------------------------------------

    def deliver(self, message: NeuralMessage) -> bool:
        """Enqueue a message without waiting. Returns False once stopping."""
        if not self._accepting:
            logger.debug("neuron.delivery_refused", neuron=self.name, topic=message.topic)
            return False
        self._mailbox.put_nowait(message)
        return True

    @property
    def pending_messages(self) -> int:
        return self._mailbox.qsize()

    async def _consume(self) -> None:
        while True:
            item = await self._mailbox.get()
            if item is _SENTINEL:
                break
            await self.on_message(item)
            self.processed_count += 1

    async def _tick_loop(self) -> None:
        interval = float(self.tick_interval or 0.0)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.on_tick()
                self.tick_count += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                self.error_count += 1
                metrics.inc("neuron_tick_errors_total", neuron=self.name)
                logger.error("neuron.tick_error", neuron=self.name, exc_info=True)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def publish(
        self,
        topic: str,
        payload: Any = None,
        *,
        correlation_id: Optional[str] = None,
        expects_response: bool = False,
        include_self: bool = False,
    ) -> int:
        """Publish through the attached network; returns the delivery count.

        The neuron does not receive its own message unless ``include_self``.
        """
        if self._network is None:
            logger.debug("neuron.publish_without_network", neuron=self.name, topic=topic)
            return 0
        return self._network.publish(
            topic,
            payload,
            sender=self.name,
            correlation_id=correlation_id,
            expects_response=expects_response,
            skip_sender=not include_self,
        )

    def respond(self, message: NeuralMessage, payload: Any = None) -> int:
        """Reply on ``<name>.response``, correlated to the original message."""
        return self.publish(f"{self.name}.response", payload, correlation_id=message.message_id)

    def broadcast(self, payload: Any = None) -> int:
        """Share a result on ``<name>.result``."""
        return self.publish(f"{self.name}.result", payload)

    # ------------------------------------------------------------------
    # Network attachment (called by NeuronNetwork)
    # ------------------------------------------------------------------

    def attach(self, network: "NeuronNetwork") -> None:
        if self._network is not None and self._network is not network:
            raise RuntimeError(f"neuron '{self.name}' is already attached to another network")
        self._network = network

    def detach(self) -> None:
        self._network = None

    @property
    def network(self) -> Optional["NeuronNetwork"]:
        return self._network

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> NeuronState:
        return self._state

    @property
    def is_alive(self) -> bool:
        """True until stop() has been requested."""
        return self._state is not NeuronState.STOPPED

    async def start(self) -> None:
        if self._state is NeuronState.STARTED:
            logger.warning("neuron.already_running", neuron=self.name)
            return
        if self._state is NeuronState.STOPPED:
            raise RuntimeError(f"neuron '{self.name}' was stopped and cannot restart")

        self._state = NeuronState.STARTED
        self._consumer_task = asyncio.create_task(self._consume(), name=f"neuron:{self.name}")
        if self.tick_interval:
            self._tick_task = asyncio.create_task(self._tick_loop(), name=f"neuron-tick:{self.name}")
        logger.info(
            "neuron.started",
            neuron=self.name,
            topics=sorted(self.subscribed_patterns),
            tick_interval=self.tick_interval,
        )

    async def stop(self) -> None:
        """Stop accepting messages, drain the mailbox, then return.

        Safe to call any number of times; concurrent callers all wait on the
        same shutdown. Called from the neuron's own handler or tick, it only
        starts the shutdown: the drain finishes once that handler returns.
        """
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self._shutdown(), name=f"neuron-stop:{self.name}")
        current = asyncio.current_task()
        if current is not None and current in (self._consumer_task, self._tick_task):
            return
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        was_started = self._state is NeuronState.STARTED
        self._accepting = False
        self._state = NeuronState.STOPPED

        if self._tick_task is not None:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None

        if self._consumer_task is not None:
            self._mailbox.put_nowait(_SENTINEL)
            try:
                await asyncio.wait_for(asyncio.shield(self._consumer_task), timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "neuron.drain_timeout_cancelling",
                    neuron=self.name,
                    pending=self._mailbox.qsize(),
                    timeout=self.stop_timeout,
                )
                self._consumer_task.cancel()
                try:
                    await self._consumer_task
                except asyncio.CancelledError:
                    pass
            self._consumer_task = None

        if was_started:
            logger.info(
                "neuron.stopped",
                neuron=self.name,
                processed=self.processed_count,
                errors=self.error_count,
            )

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "topics": sorted(self.subscribed_patterns),
            "pending": self._mailbox.qsize(),
            "processed": self.processed_count,
            "errors": self.error_count,
            "ticks": self.tick_count,
        }
