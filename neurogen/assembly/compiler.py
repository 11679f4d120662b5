"""
Compiler / Loader — from untrusted source text to a loadable unit.

The engine depends only on the Compiler interface: ``compile(source)``
returns an opaque LoadableUnit or raises CompileError with diagnostics, and
never leaves anything half-loaded behind. PythonNeuronCompiler is the
in-process strategy:

  1. parse with ``ast``
  2. statically scan the tree (imports, dangerous builtins, dunder access,
     subprocess/socket helpers, handles on the network itself)
  3. compile and execute in a fresh namespace with a trimmed set of
     builtins and an import hook that only admits allow-listed modules
  4. find the single Neuron subclass the source defines
  5. probe-instantiate it once to prove it can be built

This is a best-effort filter for generated code, not a sandbox.
"""

from __future__ import annotations

import ast
import builtins
import hashlib
import types
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import structlog

from neurogen.config import CompilerConfig
from neurogen.errors import CompileError
from neurogen.metrics import metrics
from neurogen.neuron import Neuron

logger = structlog.get_logger(__name__)

ASSEMBLED_MODULE_PREFIX = "neurogen.assembled"

ALLOWED_MODULES = frozenset({
    "neurogen.neuron",
    "asyncio",
    "json",
    "math",
    "re",
    "time",
    "datetime",
    "random",
    "statistics",
    "collections",
    "collections.abc",
    "itertools",
    "functools",
    "typing",
    "string",
    "enum",
    "dataclasses",
})

FORBIDDEN_NAMES = frozenset({
    "eval",
    "exec",
    "compile",
    "open",
    "__import__",
    "globals",
    "locals",
    "vars",
    "getattr",
    "setattr",
    "delattr",
    "input",
    "breakpoint",
    "__builtins__",
})

FORBIDDEN_ATTRIBUTES = frozenset({
    # subprocesses, sockets and thread escapes reachable through asyncio
    "create_subprocess_exec",
    "create_subprocess_shell",
    "open_connection",
    "start_server",
    "open_unix_connection",
    "start_unix_server",
    "run_in_executor",
    "to_thread",
    # the same, as event loop methods
    "subprocess_exec",
    "subprocess_shell",
    "create_connection",
    "create_server",
    "create_datagram_endpoint",
    "create_unix_connection",
    "create_unix_server",
    "connect_accepted_socket",
    "connect_read_pipe",
    "connect_write_pipe",
    "sock_connect",
    "sock_accept",
    "sock_recv",
    "sock_recv_into",
    "sock_sendall",
    "sock_sendfile",
    "sendfile",
    "start_tls",
    "getaddrinfo",
    "getnameinfo",
    "add_reader",
    "add_writer",
    "add_signal_handler",
    "set_default_executor",
    # modules hanging off allowed packages
    "subprocess",
    "base_events",
    "base_subprocess",
    "selector_events",
    "proactor_events",
    "unix_events",
    "windows_events",
    "os",
    "sys",
    "socket",
    "threading",
    # the network a neuron is attached to
    "_network",
    "network",
    "attach",
    "detach",
    "register",
    "unregister",
})

ALLOWED_DUNDERS = frozenset({"__init__", "__name__"})

_SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "bool", "callable", "chr", "classmethod", "dict",
    "divmod", "enumerate", "filter", "float", "format", "frozenset", "hash",
    "int", "isinstance", "issubclass", "iter", "len", "list", "map", "max",
    "min", "next", "object", "ord", "pow", "print", "property", "range",
    "repr", "reversed", "round", "set", "slice", "sorted", "staticmethod",
    "str", "sum", "super", "tuple", "zip",
    "ArithmeticError", "AttributeError", "Exception", "IndexError",
    "KeyError", "LookupError", "NotImplementedError", "RuntimeError",
    "StopAsyncIteration", "StopIteration", "TypeError", "ValueError",
    "ZeroDivisionError",
)


@dataclass(frozen=True)
class LoadableUnit:
    """Opaque handle to a compiled neuron class."""

    unit_id: str
    class_name: str
    neuron_class: type[Neuron] = field(repr=False)
    source: str = field(repr=False)
    digest: str = ""

    def instantiate(
        self,
        name: Optional[str] = None,
        topics: Optional[Iterable[str]] = None,
        tick_interval: Optional[float] = None,
    ) -> Neuron:
        """Build a fresh, unstarted instance."""
        kwargs: dict[str, Any] = {}
        if name is not None:
            kwargs["name"] = name
        if topics is not None:
            kwargs["topics"] = tuple(topics)
        if tick_interval is not None:
            kwargs["tick_interval"] = tick_interval
        return self.neuron_class(**kwargs)


class Compiler(ABC):
    """Turns generated source into a LoadableUnit, atomically."""

    @abstractmethod
    def compile(self, source: str) -> LoadableUnit:
        """Return a unit or raise CompileError; never both, never partial."""


class _SecurityScanner(ast.NodeVisitor):
    """Collects diagnostics for constructs generated code may not use."""

    def __init__(self, allowed_modules: frozenset[str]) -> None:
        self._allowed = allowed_modules
        self.diagnostics: list[str] = []

    def _flag(self, node: ast.AST, message: str) -> None:
        self.diagnostics.append(f"line {getattr(node, 'lineno', '?')}: {message}")

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            if not module_allowed(alias.name, self._allowed):
                self._flag(node, f"import of '{alias.name}' is not allowed")
        self.generic_visit(node)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        if node.level:
            self._flag(node, "relative imports are not allowed")
        elif not module_allowed(node.module or "", self._allowed):
            self._flag(node, f"import from '{node.module}' is not allowed")
        for alias in node.names:
            if alias.name == "*":
                self._flag(node, "star imports are not allowed")
            elif alias.name in FORBIDDEN_ATTRIBUTES:
                self._flag(node, f"import of '{alias.name}' from '{node.module}' is not allowed")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id in FORBIDDEN_NAMES:
            self._flag(node, f"use of '{node.id}' is not allowed")
        elif _is_dunder(node.id) and node.id not in ALLOWED_DUNDERS:
            self._flag(node, f"dunder name '{node.id}' is not allowed")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if _is_dunder(node.attr) and node.attr not in ALLOWED_DUNDERS:
            self._flag(node, f"dunder attribute '{node.attr}' is not allowed")
        elif node.attr in FORBIDDEN_ATTRIBUTES:
            self._flag(node, f"attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global) -> None:
        self._flag(node, "global statements are not allowed")
        self.generic_visit(node)


def _is_dunder(name: str) -> bool:
    return len(name) > 4 and name.startswith("__") and name.endswith("__")


def module_allowed(module: str, allowed: frozenset[str]) -> bool:
    """Only exact allow-list entries; submodules must be listed themselves."""
    return bool(module) and module in allowed


class PythonNeuronCompiler(Compiler):
    """Compiles generated Python into a Neuron subclass in-process."""

    def __init__(self, config: Optional[CompilerConfig] = None) -> None:
        self._config = config or CompilerConfig()
        self._allowed_modules = ALLOWED_MODULES | frozenset(self._config.extra_allowed_modules)
        self._safe_builtins = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}
        self._safe_builtins["__build_class__"] = builtins.__build_class__
        self._safe_builtins["__import__"] = self._guarded_import

    def scan(self, tree: ast.AST) -> list[str]:
        scanner = _SecurityScanner(self._allowed_modules)
        scanner.visit(tree)
        return scanner.diagnostics

    def compile(self, source: str) -> LoadableUnit:
        unit_id = uuid.uuid4().hex[:12]
        try:
            unit = self._compile(source, unit_id)
        except CompileError as exc:
            metrics.inc("compile_failures_total")
            logger.warning("compiler.rejected", unit_id=unit_id, reason=exc.reason, diagnostics=exc.diagnostics)
            raise
        metrics.inc("compile_successes_total")
        logger.info("compiler.compiled", unit_id=unit_id, class_name=unit.class_name, digest=unit.digest[:12])
        return unit

    def _compile(self, source: str, unit_id: str) -> LoadableUnit:
        if not source or not source.strip():
            raise CompileError("empty source")
        if len(source) > self._config.max_source_chars:
            raise CompileError(
                "source too large",
                diagnostics=[f"{len(source)} characters exceeds limit of {self._config.max_source_chars}"],
            )

        try:
            tree = ast.parse(source, filename=f"<neuron:{unit_id}>")
        except SyntaxError as exc:
            raise CompileError("syntax error", diagnostics=[f"line {exc.lineno}: {exc.msg}"]) from exc

        diagnostics = self.scan(tree)
        if diagnostics:
            raise CompileError("security scan failed", diagnostics=diagnostics)

        module_name = f"{ASSEMBLED_MODULE_PREFIX}.unit_{unit_id}"
        namespace: dict[str, Any] = {
            "__builtins__": dict(self._safe_builtins),
            "__name__": module_name,
        }
        try:
            code = compile(tree, filename=f"<neuron:{unit_id}>", mode="exec")
            exec(code, namespace)
        except Exception as exc:
            raise CompileError(
                "execution failed", diagnostics=[f"{type(exc).__name__}: {exc}"]
            ) from exc

        candidates = [
            value
            for value in namespace.values()
            if isinstance(value, type)
            and issubclass(value, Neuron)
            and value is not Neuron
            and value.__module__ == module_name
        ]
        if not candidates:
            raise CompileError("no Neuron subclass defined")
        if len(candidates) > 1:
            raise CompileError(
                "more than one Neuron subclass defined",
                diagnostics=[c.__name__ for c in candidates],
            )
        neuron_class = candidates[0]

        try:
            probe = neuron_class()
        except Exception as exc:
            raise CompileError(
                "probe instantiation failed", diagnostics=[f"{type(exc).__name__}: {exc}"]
            ) from exc
        if not probe.subscribed_patterns and not probe.tick_interval and type(probe).on_tick is Neuron.on_tick:
            logger.warning("compiler.inert_neuron", class_name=neuron_class.__name__)

        return LoadableUnit(
            unit_id=unit_id,
            class_name=neuron_class.__name__,
            neuron_class=neuron_class,
            source=source,
            digest=hashlib.sha256(source.encode("utf-8")).hexdigest(),
        )

    def _guarded_import(
        self,
        name: str,
        globals: Optional[dict[str, Any]] = None,
        locals: Optional[dict[str, Any]] = None,
        fromlist: tuple[str, ...] = (),
        level: int = 0,
    ) -> Any:
        if level != 0 or not module_allowed(name, self._allowed_modules):
            raise ImportError(f"import of '{name}' is not allowed in assembled neurons")
        module = builtins.__import__(name, globals, locals, fromlist, level)
        for item in fromlist or ():
            if isinstance(getattr(module, item, None), types.ModuleType) and not module_allowed(
                f"{name}.{item}", self._allowed_modules
            ):
                raise ImportError(f"import of '{name}.{item}' is not allowed in assembled neurons")
        return module
