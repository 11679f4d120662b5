"""
Code Generator Adapters — turning a blueprint into neuron source.

A code generator is any callable ``async (blueprint) -> str``. The engine
treats the returned text as untrusted: it pulls out the first fenced code
block (if any), makes sure the foundational import is present, and hands the
result to the compiler, which does its own security scan.

Two generators ship here:

  - template_generator: deterministic, offline, builds a Neuron subclass
    straight from the blueprint's handler list.
  - ClaudeCodeGenerator: asks Claude to write the class from the blueprint
    summary.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Optional

import anthropic
import structlog

from neurogen.blueprint import Blueprint
from neurogen.config import GeneratorConfig
from neurogen.errors import GenerationError

logger = structlog.get_logger(__name__)

FOUNDATION_IMPORT = "from neurogen.neuron import NeuralMessage, Neuron, handles"

_FENCE_RE = re.compile(r"```[ \t]*[\w+-]*[ \t]*\n(.*?)```", re.DOTALL)
_NAME_PART_RE = re.compile(r"[^A-Za-z0-9]+")


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------

def extract_code_block(text: str) -> str:
    """Return the first fenced code block, or the stripped text if unfenced."""
    if not text or not text.strip():
        raise GenerationError("no code block")
    match = _FENCE_RE.search(text)
    code = match.group(1) if match else text
    code = code.strip()
    if not code:
        raise GenerationError("no code block")
    return code


def finalize_source(code: str) -> str:
    """Prepend the foundational import unless the source already has it."""
    lines = [line.strip() for line in code.splitlines()]
    if FOUNDATION_IMPORT in lines:
        return code if code.endswith("\n") else code + "\n"
    return f"{FOUNDATION_IMPORT}\n\n\n{code.rstrip()}\n"


def class_name_for(name: str) -> str:
    """'weather_watcher' → 'WeatherWatcher'."""
    parts = [p for p in _NAME_PART_RE.split(name) if p]
    result = "".join(p[:1].upper() + p[1:] for p in parts)
    if not result:
        return "GeneratedNeuron"
    if result[0].isdigit():
        result = f"Neuron{result}"
    return result


# ---------------------------------------------------------------------------
# Template generator
# ---------------------------------------------------------------------------

def render_neuron_source(blueprint: Blueprint, tick_interval: Optional[float] = None) -> str:
    """Render a Neuron subclass implementing the blueprint's declared handlers.

    Each handler packages the incoming payload together with its declared
    logic and responds and/or broadcasts as the blueprint asks. All text from
    the blueprint is emitted through repr(), never spliced into code.
    """
    class_name = class_name_for(blueprint.name)
    topics = tuple(sorted(blueprint.subscribed_topics))

    lines = [
        f"class {class_name}(Neuron):",
        f"    {blueprint.description or blueprint.name!r}",
        "",
        f"    name = {blueprint.name!r}",
        f"    topics = {topics!r}",
    ]
    if blueprint.has_autonomous_tick and tick_interval:
        lines.append(f"    tick_interval = {float(tick_interval)!r}")

    for index, handler in enumerate(blueprint.message_handlers):
        lines += [
            "",
            f"    @handles({handler.topic_pattern!r})",
            f"    async def handle_{index}(self, message: NeuralMessage) -> None:",
            "        result = {",
            "            'neuron': self.name,",
            "            'topic': message.topic,",
            "            'payload': message.payload,",
            f"            'logic': {handler.handling_logic!r},",
            "        }",
        ]
        if handler.sends_response:
            lines.append("        self.respond(message, result)")
        if handler.broadcasts_result:
            lines.append("        self.broadcast(result)")
        if not (handler.sends_response or handler.broadcasts_result):
            lines.append("        self.last_result = result")

    if blueprint.has_autonomous_tick:
        lines += [
            "",
            "    async def on_tick(self) -> None:",
            "        self.publish(",
            f"            {blueprint.name + '.tick'!r},",
            f"            {{'tick': self.tick_count, 'behavior': {blueprint.tick_behavior_description!r}}},",
            "        )",
        ]

    return "\n".join(lines) + "\n"


async def template_generator(blueprint: Blueprint) -> str:
    """Deterministic offline generator; the engine's default."""
    return f"```python\n{render_neuron_source(blueprint)}```"


# ---------------------------------------------------------------------------
# Claude-backed generator
# ---------------------------------------------------------------------------

GENERATION_SYSTEM_PROMPT = f"""\
You write one Python class for a running neuron network.

Start the file with exactly:
    {FOUNDATION_IMPORT}

Rules:
- Define exactly one subclass of Neuron. Set the class attributes `name`
  (the blueprint name) and `topics` (a tuple of subscribed topics).
- Decorate each message handler with @handles("<topic pattern>"). Handlers are
  `async def handler(self, message: NeuralMessage) -> None`.
- Reply with self.respond(message, payload), share results with
  self.broadcast(payload), publish with self.publish(topic, payload).
- For autonomous behavior, override `async def on_tick(self) -> None`.
- You may import only: asyncio, json, math, re, time, datetime, random,
  statistics, collections, itertools, functools, typing, string, enum,
  dataclasses.
- No file, network or subprocess access. No eval, exec, open, getattr,
  setattr, __import__, or dunder attribute access.
- Return the code in a single ```python fenced block and nothing else.
"""


def build_generation_prompt(blueprint: Blueprint) -> str:
    return (
        "Write the neuron described by this blueprint.\n\n"
        f"{blueprint.summary()}\n"
    )


class ClaudeCodeGenerator:
    """Generates neuron source with the Anthropic Messages API."""

    def __init__(self, config: GeneratorConfig, client: Optional[Any] = None) -> None:
        self._config = config
        self._client = client or anthropic.AsyncAnthropic(api_key=config.api_key)
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._timeout = float(config.request_timeout_seconds)
        self.total_calls = 0

    async def complete(self, prompt: str, *, system: Optional[str] = None) -> str:
        """One Messages API round trip; returns the concatenated text blocks."""
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**kwargs),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("generator.request_timeout", timeout=self._timeout)
            raise GenerationError(
                f"generation request timed out after {self._timeout:.0f}s"
            ) from exc
        except anthropic.APIError as exc:
            logger.error(
                "generator.api_error",
                error=str(exc),
                status=getattr(exc, "status_code", None),
            )
            raise GenerationError(f"text generation failed: {exc}") from exc

        self.total_calls += 1
        return "".join(block.text for block in response.content if block.type == "text")

    async def __call__(self, blueprint: Blueprint) -> str:
        try:
            text = await self.complete(
                build_generation_prompt(blueprint), system=GENERATION_SYSTEM_PROMPT
            )
        except GenerationError as exc:
            exc.name = blueprint.name
            raise
        logger.info(
            "generator.completed",
            blueprint=blueprint.name,
            model=self._model,
            chars=len(text),
        )
        return text
