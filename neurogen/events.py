"""
Event Bus — the runtime's audit channel.

Lifecycle events (a neuron assembled, an assembly failed, a proposal waiting
for review) are Pydantic models emitted onto an asyncio.Queue-backed
dispatcher that fans them out to pattern-matched subscribers. The engine only
emits; logging, metrics and UIs subscribe. Nothing here routes neuron
traffic, which travels through neurogen.network instead.

Concurrency model:
  - emit() enqueues: non-blocking, sync-safe
  - flush() waits until everything emitted so far has been dispatched
  - A dispatcher task dequeues and fans out to matching handlers
  - Handler exceptions are logged but do not propagate
  - Events are dispatched in emission order
"""

from __future__ import annotations

import asyncio
import fnmatch
import re
import time
import uuid
from typing import Any, Callable, Coroutine

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

EventHandler = Callable[["NeurogenEvent"], Any] | Callable[["NeurogenEvent"], Coroutine[Any, Any, Any]]

# "HTTPSRequest" → ["HTTPS", "Request"], "NeuronAssembled" → ["Neuron", "Assembled"]
_CAMEL_SPLIT_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z][a-z]*")


class NeurogenEvent(BaseModel):
    """Base class for all typed lifecycle events.

    ``event_type`` is derived from the class name when not given:
    ``NeuronAssembledEvent`` becomes ``"neuron.assembled"``.
    """

    event_type: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.event_type:
            name = type(self).__name__.removesuffix("Event")
            parts = _CAMEL_SPLIT_RE.findall(name)
            self.event_type = ".".join(p.lower() for p in parts) if parts else name.lower()


class _Subscription:
    __slots__ = ("sub_id", "pattern", "handler", "_compiled")

    def __init__(self, sub_id: str, pattern: str, handler: EventHandler) -> None:
        self.sub_id = sub_id
        self.pattern = pattern
        self.handler = handler
        self._compiled: re.Pattern[str] = re.compile(fnmatch.translate(pattern))

    def matches(self, event_type: str) -> bool:
        return self._compiled.match(event_type) is not None


_SENTINEL = object()


class EventBus:
    """Async event bus with typed events and fnmatch-style subscriptions.

      "neuron.*"    matches "neuron.assembled"
      "assembly.*"  matches "assembly.failed", "assembly.proposed"
      "*"           matches everything
    """

    def __init__(self, max_queue_size: int = 10000) -> None:
        self._queue: asyncio.Queue[NeurogenEvent | object] = asyncio.Queue(maxsize=max_queue_size)
        self._subscriptions: dict[str, _Subscription] = {}
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._running = False

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._dispatcher_task = asyncio.create_task(
            self._dispatch_loop(), name="neurogen-event-dispatcher"
        )
        logger.info("event_bus.started")

    async def stop(self, timeout: float = 5.0) -> None:
        """Dispatch whatever is queued, then stop the dispatcher."""
        if not self._running:
            return
        self._running = False
        task, self._dispatcher_task = self._dispatcher_task, None
        try:
            self._queue.put_nowait(_SENTINEL)
        except asyncio.QueueFull:
            logger.warning("event_bus.stop_queue_full_cancelling_directly")
            if task is not None:
                task.cancel()
        if task is not None:
            try:
                await asyncio.wait_for(task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("event_bus.stop_timeout_cancelling", timeout=timeout)
            except asyncio.CancelledError:
                pass
        logger.info("event_bus.stopped")

    def subscribe(self, pattern: str, handler: EventHandler) -> str:
        """Subscribe a sync or async handler; returns a subscription ID."""
        sub_id = uuid.uuid4().hex[:12]
        self._subscriptions[sub_id] = _Subscription(sub_id, pattern, handler)
        logger.debug("event_bus.subscribed", pattern=pattern, sub_id=sub_id)
        return sub_id

    def unsubscribe(self, subscription_id: str) -> None:
        if self._subscriptions.pop(subscription_id, None) is not None:
            logger.debug("event_bus.unsubscribed", sub_id=subscription_id)

    def emit(self, event: NeurogenEvent) -> None:
        """Enqueue an event; dropped with a warning if the queue is full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("event_bus.queue_full", event_type=event.event_type, dropped=True)

    async def flush(self, timeout: float = 5.0) -> None:
        """Wait until every event emitted so far has been dispatched.

        Raises RuntimeError if the bus is not running.
        """
        if not self._running:
            raise RuntimeError("flush called on a stopped EventBus")
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def _dispatch_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _SENTINEL:
                    break
                await self._dispatch_event(item)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()

        # Drain whatever was emitted before stop()
        while not self._queue.empty():
            item = self._queue.get_nowait()
            try:
                if item is not _SENTINEL:
                    await self._dispatch_event(item)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()

    async def _dispatch_event(self, event: NeurogenEvent) -> None:
        coros = [
            self._invoke_handler(sub, event)
            for sub in list(self._subscriptions.values())
            if sub.matches(event.event_type)
        ]
        if coros:
            await asyncio.gather(*coros)

    @staticmethod
    async def _invoke_handler(sub: _Subscription, event: NeurogenEvent) -> None:
        try:
            result = sub.handler(event)
            if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                await result
        except Exception:
            logger.error(
                "event_bus.handler_error",
                pattern=sub.pattern,
                event_type=event.event_type,
                exc_info=True,
            )

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def is_running(self) -> bool:
        return self._running


# ---------------------------------------------------------------------------
# Event Definitions
# ---------------------------------------------------------------------------

class NeuronAssembledEvent(NeurogenEvent):
    """Emitted exactly once when a pipeline ends with a running neuron."""

    name: str
    neuron_type: str
    proposal_id: str = ""
    timestamp: float = Field(default_factory=time.time)


class AssemblyFailedEvent(NeurogenEvent):
    """Emitted exactly once when a pipeline ends in any failure state."""

    name: str
    stage: str
    reason: str
    proposal_id: str = ""
    timestamp: float = Field(default_factory=time.time)


class AssemblyProposedEvent(NeurogenEvent):
    """Emitted when a validated proposal starts waiting for approval."""

    proposal_id: str
    name: str
    safety_score: float
    warnings: list[str] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)
