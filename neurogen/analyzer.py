"""
Gap Analyzer — noticing what the network cannot do yet.

Reads a bounded window of recent traffic and looks for capability gaps:

  - Unhandled topics: messages published where nobody is listening
    (importance 0.7, suggests an event-observation neuron).
  - Unanswered requests: topics where most messages that expect a response
    never get a correlated reply (importance 0.5, suggests text processing
    and reasoning).
  - Optionally, whatever a text-generation collaborator spots when shown a
    summary of neurons and traffic (a JSON array of gaps).

Each gap can be turned into a Blueprint, and propose() returns blueprints for
the gaps important enough to act on. The analyzer never submits anything; the
host decides what to hand to the engine.
"""

from __future__ import annotations

import json
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from neurogen.blueprint import Blueprint, MessageHandler, NeuronType, normalize_capability
from neurogen.config import AnalyzerConfig
from neurogen.network import NeuronNetwork
from neurogen.neuron import NeuralMessage

logger = structlog.get_logger(__name__)

TextGenerator = Callable[[str], Awaitable[str]]

UNHANDLED_TOPIC_IMPORTANCE = 0.7
UNANSWERED_REQUEST_IMPORTANCE = 0.5

_NAME_PREFIXES = {
    "text_processing": "text_processor",
    "api_integration": "api_handler",
    "reasoning": "reasoner",
    "event_observation": "observer",
    "orchestration": "coordinator",
}

_TOPIC_SLUG_RE = re.compile(r"[^A-Za-z0-9]+")


@dataclass
class CapabilityGap:
    """A missing capability inferred from traffic."""

    description: str
    rationale: str
    importance: float
    affected_topics: list[str]
    suggested_capabilities: list[str]
    identified_by: str
    identified_at: float = field(default_factory=time.time)


class GapAnalyzer:
    """Finds capability gaps in recent network traffic and drafts blueprints for them."""

    def __init__(
        self,
        network: NeuronNetwork,
        config: Optional[AnalyzerConfig] = None,
        llm: Optional[TextGenerator] = None,
    ) -> None:
        self._network = network
        self._config = config or AnalyzerConfig()
        self._llm = llm
        self._identified: list[CapabilityGap] = []

    @property
    def identified_gaps(self) -> list[CapabilityGap]:
        return list(self._identified)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze_gaps(self, messages: Optional[list[NeuralMessage]] = None) -> list[CapabilityGap]:
        window = self._window(messages)
        gaps: list[CapabilityGap] = []

        unhandled = self._find_unhandled_topics(window)
        if unhandled:
            gaps.append(CapabilityGap(
                description=f"Messages on topics [{', '.join(unhandled)}] have no subscribers",
                rationale="Messages are being published but no neuron is listening",
                importance=UNHANDLED_TOPIC_IMPORTANCE,
                affected_topics=unhandled,
                suggested_capabilities=["event_observation"],
                identified_by="TopicAnalyzer",
            ))

        unanswered = self._find_unanswered_topics(window)
        if unanswered:
            gaps.append(CapabilityGap(
                description="Some request topics consistently go unanswered",
                rationale=f"Topics [{', '.join(unanswered)}] show missing or slow responses",
                importance=UNANSWERED_REQUEST_IMPORTANCE,
                affected_topics=unanswered,
                suggested_capabilities=["text_processing", "reasoning"],
                identified_by="LatencyAnalyzer",
            ))

        if self._llm is not None and window:
            gaps.extend(await self._analyze_with_llm(window))

        self._identified.extend(gaps)
        logger.info(
            "analyzer.gaps_found",
            window=len(window),
            gaps=len(gaps),
            topics=[t for g in gaps for t in g.affected_topics],
        )
        return gaps

    def _window(self, messages: Optional[list[NeuralMessage]]) -> list[NeuralMessage]:
        if messages is None:
            return self._network.recent_messages(self._config.window_size)
        return list(messages)[-self._config.window_size:]

    def _find_unhandled_topics(self, messages: list[NeuralMessage]) -> list[str]:
        seen: dict[str, None] = {}
        for message in messages:
            # Replies are addressed to whoever asked, not to a subscriber
            if message.correlation_id is None:
                seen.setdefault(message.topic, None)
        unhandled = [t for t in seen if not self._network.subscribers(t)]
        return unhandled[: self._config.max_unhandled_topics]

    @staticmethod
    def _find_unanswered_topics(messages: list[NeuralMessage]) -> list[str]:
        answered = {m.correlation_id for m in messages if m.correlation_id}
        requests: dict[str, list[NeuralMessage]] = {}
        for message in messages:
            if message.expects_response:
                requests.setdefault(message.topic, []).append(message)

        slow = []
        for topic, group in requests.items():
            unanswered = sum(1 for m in group if m.message_id not in answered)
            if unanswered > len(group) // 2:
                slow.append(topic)
        return slow

    async def _analyze_with_llm(self, messages: list[NeuralMessage]) -> list[CapabilityGap]:
        counts = Counter(m.topic for m in messages)
        topic_summary = "\n".join(f"- {topic}: {count} messages" for topic, count in counts.most_common())
        neuron_summary = "\n".join(
            f"- {name}: subscribes to [{', '.join(sorted(n.subscribed_patterns))}]"
            for name, n in sorted(self._network.neurons.items())
        ) or "- (none)"
        prompt = (
            "Analyze this neuron network and identify capability gaps.\n\n"
            f"Current neurons:\n{neuron_summary}\n\n"
            f"Recent message topics:\n{topic_summary}\n\n"
            "Identify 1-3 capability gaps that would improve the system. Respond with a "
            "JSON array only:\n"
            '[{"description": "...", "rationale": "...", "topics": ["..."], '
            '"importance": 0.5, "capabilities": ["text_processing"]}]'
        )
        try:
            response = await self._llm(prompt)  # type: ignore[misc]
        except Exception as exc:
            logger.warning("analyzer.llm_failed", error=str(exc))
            return []
        return parse_llm_gaps(response)

    # ------------------------------------------------------------------
    # Blueprints
    # ------------------------------------------------------------------

    async def generate_blueprint_for_gap(self, gap: CapabilityGap) -> Optional[Blueprint]:
        """Draft a reactive blueprint covering every affected topic."""
        if not gap.affected_topics:
            return None

        primary = gap.suggested_capabilities[0] if gap.suggested_capabilities else ""
        prefix = _NAME_PREFIXES.get(primary, "custom_handler")
        slug = _TOPIC_SLUG_RE.sub("_", gap.affected_topics[0]).strip("_").lower() or "topic"
        name = f"{prefix}_{slug}"

        if self._llm is not None:
            refined = await self._refine_with_llm(name, gap)
            if refined is not None:
                return refined

        return Blueprint(
            name=name,
            description=f"Auto-generated neuron to address: {gap.description}",
            rationale=gap.rationale,
            neuron_type=NeuronType.REACTIVE,
            subscribed_topics=gap.affected_topics,
            capabilities=gap.suggested_capabilities,
            message_handlers=[
                MessageHandler(
                    topic_pattern=topic,
                    handling_logic=f"Process {topic} messages: {gap.rationale}",
                    sends_response=True,
                )
                for topic in gap.affected_topics
            ],
            confidence_score=min(0.9, gap.importance + 0.2),
            identified_by=f"GapAnalyzer:{gap.identified_by}",
        )

    async def _refine_with_llm(self, base_name: str, gap: CapabilityGap) -> Optional[Blueprint]:
        prompt = (
            "Design a neuron for this capability gap.\n\n"
            f"Gap: {gap.description}\n"
            f"Rationale: {gap.rationale}\n"
            f"Topics: {', '.join(gap.affected_topics)}\n"
            f"Suggested capabilities: {', '.join(gap.suggested_capabilities)}\n\n"
            "Respond with one JSON object only:\n"
            '{"name": "snake_case_name", "description": "...", '
            '"handlers": [{"topic": "...", "logic": "...", "sends_response": true, '
            '"broadcasts_result": false}], "has_autonomous_tick": false, "tick_behavior": null}'
        )
        try:
            response = await self._llm(prompt)  # type: ignore[misc]
        except Exception as exc:
            logger.warning("analyzer.llm_refine_failed", gap=gap.description, error=str(exc))
            return None
        return parse_llm_blueprint(response, gap, default_name=base_name)

    async def propose(self, messages: Optional[list[NeuralMessage]] = None) -> list[Blueprint]:
        """Blueprints for every gap at or above the importance threshold."""
        threshold = self._config.importance_threshold
        blueprints = []
        for gap in await self.analyze_gaps(messages):
            if gap.importance < threshold:
                logger.debug("analyzer.gap_below_threshold", gap=gap.description, importance=gap.importance)
                continue
            blueprint = await self.generate_blueprint_for_gap(gap)
            if blueprint is not None:
                blueprints.append(blueprint)
        return blueprints


# ---------------------------------------------------------------------------
# Parsing collaborator output
# ---------------------------------------------------------------------------

def _json_slice(text: str, open_char: str, close_char: str) -> Optional[Any]:
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start < 0 or end <= start:
        return None
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None


def parse_llm_gaps(response: str) -> list[CapabilityGap]:
    parsed = _json_slice(response or "", "[", "]")
    if not isinstance(parsed, list):
        logger.debug("analyzer.llm_gaps_unparseable")
        return []

    gaps = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        topics = [str(t) for t in item.get("topics") or [] if str(t).strip()]
        capabilities = [normalize_capability(c) for c in item.get("capabilities") or [] if str(c).strip()]
        try:
            importance = float(item.get("importance", 0.0))
        except (TypeError, ValueError):
            importance = 0.0
        gaps.append(CapabilityGap(
            description=str(item.get("description") or "LLM-identified gap"),
            rationale=str(item.get("rationale") or "Identified by LLM analysis"),
            importance=max(0.0, min(1.0, importance)),
            affected_topics=topics,
            suggested_capabilities=capabilities or ["text_processing"],
            identified_by="LlmAnalyzer",
        ))
    return gaps


def parse_llm_blueprint(response: str, gap: CapabilityGap, default_name: str) -> Optional[Blueprint]:
    parsed = _json_slice(response or "", "{", "}")
    if not isinstance(parsed, dict):
        return None

    handlers = []
    for h in parsed.get("handlers") or []:
        if not isinstance(h, dict):
            continue
        handlers.append(MessageHandler(
            topic_pattern=str(h.get("topic") or (gap.affected_topics[0] if gap.affected_topics else "default")),
            handling_logic=str(h.get("logic") or ""),
            sends_response=bool(h.get("sends_response", True)),
            broadcasts_result=bool(h.get("broadcasts_result", False)),
        ))
    has_tick = bool(parsed.get("has_autonomous_tick", False))
    if not handlers and not has_tick:
        return None

    return Blueprint(
        name=str(parsed.get("name") or default_name),
        description=str(parsed.get("description") or f"Auto-generated neuron to address: {gap.description}"),
        rationale=gap.rationale,
        neuron_type=NeuronType.HYBRID if has_tick and handlers else (
            NeuronType.PERIODIC if has_tick else NeuronType.REACTIVE
        ),
        subscribed_topics=gap.affected_topics,
        capabilities=gap.suggested_capabilities,
        message_handlers=handlers,
        has_autonomous_tick=has_tick,
        tick_behavior_description=str(parsed.get("tick_behavior") or ""),
        confidence_score=min(0.9, gap.importance + 0.2),
        identified_by=f"GapAnalyzer:{gap.identified_by}",
    )
