"""Self-assembly pipeline — validate, approve, generate, compile, register."""
from neurogen.assembly.approval import ThresholdApprovalPolicy, deny_all, hold_for_review
from neurogen.assembly.compiler import Compiler, LoadableUnit, PythonNeuronCompiler
from neurogen.assembly.engine import AssemblyState, ProposalRecord, SelfAssemblyEngine
from neurogen.assembly.generator import ClaudeCodeGenerator, template_generator
from neurogen.assembly.validator import BlueprintValidator, SafetyConstraint

__all__ = [
    "SelfAssemblyEngine",
    "AssemblyState",
    "ProposalRecord",
    "BlueprintValidator",
    "SafetyConstraint",
    "Compiler",
    "LoadableUnit",
    "PythonNeuronCompiler",
    "ClaudeCodeGenerator",
    "template_generator",
    "ThresholdApprovalPolicy",
    "hold_for_review",
    "deny_all",
]
