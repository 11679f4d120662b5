"""
Topic pattern matching shared by the network router and neuron handlers.

Topics are dot-separated names ("sensor.temp"). Patterns support:
  "sensor.temp"  exact match
  "sensor.*"     everything below "sensor." (any depth)
  "sensor*"      any topic starting with "sensor"
  "*"            everything
"""

from __future__ import annotations

import re

CATCH_ALL_PATTERNS = frozenset({"*", "#", ">", "**", "*.*"})

_VALID_TOPIC_RE = re.compile(r"^[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)*(\.\*|\*)?$")


def topic_matches(pattern: str, topic: str) -> bool:
    """Return True when *topic* falls under *pattern*."""
    if pattern in CATCH_ALL_PATTERNS:
        return True
    if pattern.endswith(".*"):
        return topic.startswith(pattern[:-1])
    if pattern.endswith("*"):
        return topic.startswith(pattern[:-1])
    return pattern == topic


def is_catch_all(pattern: str) -> bool:
    return pattern.strip() in CATCH_ALL_PATTERNS


def is_valid_pattern(pattern: str) -> bool:
    """Alphanumeric dot-separated segments with an optional trailing wildcard."""
    return is_catch_all(pattern) or bool(_VALID_TOPIC_RE.match(pattern))
