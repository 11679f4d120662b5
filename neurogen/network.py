"""
Neuron Network — topic routing between running neurons.

The routing table maps every neuron name to its instance and every
subscribed pattern to the set of names listening on it. Publishing resolves
recipients under a lock, releases it, then drops the message into each
recipient's mailbox without waiting. A slow handler therefore never holds up
a publisher or a concurrent register()/unregister().

A bounded history of published messages is kept for the gap analyzer.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from typing import Any, Optional

import structlog

from neurogen.errors import NetworkHalted, RegistrationError
from neurogen.metrics import metrics
from neurogen.neuron import NeuralMessage, Neuron
from neurogen.topics import topic_matches

logger = structlog.get_logger(__name__)


class NeuronNetwork:
    """Many-to-many publish/subscribe bus for neurons."""

    def __init__(self, history_size: int = 500, stop_timeout: float = 10.0) -> None:
        self._lock = threading.Lock()
        self._neurons: dict[str, Neuron] = {}
        self._routes: dict[str, set[str]] = {}
        self._history: deque[NeuralMessage] = deque(maxlen=max(1, history_size))
        self._stop_timeout = stop_timeout
        self._halted = False
        self._halt_reason = ""

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, neuron: Neuron) -> None:
        """Add a neuron and its subscriptions to the routing table.

        Raises RegistrationError when the name is taken, the neuron is
        already attached to another network, or the network has halted.
        """
        patterns = neuron.subscribed_patterns
        with self._lock:
            if self._halted:
                raise RegistrationError(f"network halted: {self._halt_reason}", name=neuron.name)
            if neuron.name in self._neurons:
                raise RegistrationError(
                    f"a neuron named '{neuron.name}' is already registered", name=neuron.name
                )
            if neuron.network is not None and neuron.network is not self:
                raise RegistrationError(
                    f"neuron '{neuron.name}' is registered with another network", name=neuron.name
                )
            neuron.attach(self)
            self._neurons[neuron.name] = neuron
            for pattern in patterns:
                self._routes.setdefault(pattern, set()).add(neuron.name)
            count = len(self._neurons)

        metrics.set_gauge("network_neurons", count)
        logger.info("network.registered", neuron=neuron.name, patterns=sorted(patterns))

    def unregister(self, name: str) -> bool:
        """Remove a neuron's routes. Messages already queued are not retracted."""
        with self._lock:
            neuron = self._neurons.pop(name, None)
            if neuron is None:
                return False
            for pattern in list(self._routes):
                names = self._routes[pattern]
                names.discard(name)
                if not names:
                    del self._routes[pattern]
            count = len(self._neurons)

        neuron.detach()
        metrics.set_gauge("network_neurons", count)
        logger.info("network.unregistered", neuron=name)
        return True

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(
        self,
        topic: str,
        payload: Any = None,
        *,
        sender: str = "",
        correlation_id: Optional[str] = None,
        expects_response: bool = False,
        skip_sender: bool = False,
    ) -> int:
        """Deliver to every matching subscriber; returns the number of mailboxes reached.

        With ``skip_sender`` the neuron named by ``sender`` is left out even
        when one of its patterns matches.
        """
        message = NeuralMessage(
            topic=topic,
            payload=payload,
            sender=sender,
            correlation_id=correlation_id,
            expects_response=expects_response,
        )
        return self.publish_message(message, skip_sender=skip_sender)

    def publish_message(self, message: NeuralMessage, *, skip_sender: bool = False) -> int:
        recipients = self._resolve(message.topic, message.sender if skip_sender else "")

        delivered = 0
        for neuron in recipients:
            if neuron.deliver(message):
                delivered += 1

        self._history.append(message)
        metrics.inc("messages_published_total")
        if delivered:
            metrics.inc("messages_delivered_total", delivered)
        else:
            metrics.inc("messages_unrouted_total")
        logger.debug(
            "network.published",
            topic=message.topic,
            sender=message.sender,
            recipients=delivered,
        )
        return delivered

    def _resolve(self, topic: str, sender: str) -> list[Neuron]:
        with self._lock:
            if self._halted:
                raise NetworkHalted(self._halt_reason)
            names: set[str] = set()
            for pattern, subscribers in self._routes.items():
                if topic_matches(pattern, topic):
                    names.update(subscribers)
            if sender:
                names.discard(sender)
            missing = sorted(n for n in names if n not in self._neurons)
            if missing:
                self._halted = True
                self._halt_reason = f"routes reference unregistered neurons: {missing}"
            else:
                return [self._neurons[n] for n in sorted(names)]

        metrics.inc("network_halted_total")
        logger.critical("network.halted", reason=self._halt_reason, topic=topic)
        raise NetworkHalted(self._halt_reason)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def subscribers(self, topic: str) -> list[str]:
        """Names of neurons a message on *topic* would currently reach."""
        with self._lock:
            names: set[str] = set()
            for pattern, subscribers in self._routes.items():
                if topic_matches(pattern, topic):
                    names.update(subscribers)
        return sorted(names)

    def subscriptions(self) -> dict[str, list[str]]:
        with self._lock:
            return {pattern: sorted(names) for pattern, names in self._routes.items()}

    def recent_messages(self, limit: Optional[int] = None) -> list[NeuralMessage]:
        items = list(self._history)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def get(self, name: str) -> Optional[Neuron]:
        with self._lock:
            return self._neurons.get(name)

    @property
    def neurons(self) -> dict[str, Neuron]:
        with self._lock:
            return dict(self._neurons)

    @property
    def is_halted(self) -> bool:
        return self._halted

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._neurons

    def __len__(self) -> int:
        with self._lock:
            return len(self._neurons)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Stop every neuron (draining mailboxes) and clear the routing table."""
        with self._lock:
            neurons = list(self._neurons.values())
        if not neurons:
            return

        logger.info("network.shutting_down", neurons=len(neurons))
        results = await asyncio.gather(
            *(asyncio.wait_for(n.stop(), timeout=self._stop_timeout + 1.0) for n in neurons),
            return_exceptions=True,
        )
        for neuron, result in zip(neurons, results):
            if isinstance(result, BaseException):
                logger.error(
                    "network.neuron_stop_failed",
                    neuron=neuron.name,
                    error=str(result) or type(result).__name__,
                )
            self.unregister(neuron.name)
        logger.info("network.shutdown_complete")
