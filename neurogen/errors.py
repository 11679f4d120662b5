"""
Error taxonomy for self-assembly.

Every failure a submission can meet has its own exception type carrying the
pipeline stage where it happened. Inside the background pipeline these are
caught and turned into AssemblyFailedEvent; only the synchronous submission
checks and catalog lookups raise them directly to callers.
"""

from __future__ import annotations


class AssemblyError(Exception):
    """Base class for all self-assembly failures."""

    stage: str = "assembly"

    def __init__(self, reason: str, *, name: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.name = name


class InvalidBlueprint(AssemblyError):
    """Blueprint is structurally unusable (empty name, nothing to do)."""

    stage = "submission"


class DuplicateBlueprint(AssemblyError):
    """A blueprint with this name is already in flight or assembled."""

    stage = "submission"


class AssemblyCapacityError(AssemblyError):
    """The catalog already holds the configured maximum of neurons."""

    stage = "submission"


class ValidationRejected(AssemblyError):
    """Safety validation found hard violations or a score below the floor."""

    stage = "validation"

    def __init__(self, reason: str, *, name: str = "", violations: list[str] | None = None) -> None:
        super().__init__(reason, name=name)
        self.violations = list(violations or [])


class ApprovalDenied(AssemblyError):
    """The approval gate said no, timed out, or was never configured."""

    stage = "approval"


class GenerationError(AssemblyError):
    """Source generation failed, timed out, or produced nothing usable."""

    stage = "generation"


class CompileError(AssemblyError):
    """Source could not be turned into a loadable unit."""

    stage = "compilation"

    def __init__(self, reason: str, *, name: str = "", diagnostics: list[str] | None = None) -> None:
        super().__init__(reason, name=name)
        self.diagnostics = list(diagnostics or [])

    def __str__(self) -> str:
        if not self.diagnostics:
            return self.reason
        return f"{self.reason}: " + "; ".join(self.diagnostics)


class RegistrationError(AssemblyError):
    """The network refused the neuron or the neuron failed to start."""

    stage = "registration"


class NeuronNotFound(AssemblyError):
    """No catalog entry exists for the requested name."""

    stage = "catalog"


class NeuronAlreadyRunning(AssemblyError):
    """A live instance already exists for the requested name."""

    stage = "catalog"


class NetworkHalted(RuntimeError):
    """The routing table was found inconsistent; the network stopped routing."""
