"""
Tests for neurogen.assembly.compiler — static scan, restricted load, probe.

Covers:
- Valid sources load into a LoadableUnit
- Forbidden imports, builtins, dunder access and network handles are rejected
- Failures are atomic and carry diagnostics
"""

from __future__ import annotations

import textwrap

import pytest

from neurogen.assembly.compiler import PythonNeuronCompiler, module_allowed, ALLOWED_MODULES
from neurogen.assembly.generator import FOUNDATION_IMPORT
from neurogen.config import CompilerConfig
from neurogen.errors import CompileError
from neurogen.neuron import Neuron, NeuronState


def _src(body: str) -> str:
    return FOUNDATION_IMPORT + "\n\n" + textwrap.dedent(body)


ECHO = _src(
    """
    import json


    class Echo(Neuron):
        name = "echo"
        topics = ("echo.in",)

        @handles("echo.in")
        async def on_echo(self, message: NeuralMessage) -> None:
            self.respond(message, json.dumps({"echo": message.payload}))
    """
)


@pytest.fixture()
def compiler() -> PythonNeuronCompiler:
    return PythonNeuronCompiler()


class TestSuccessfulCompile:
    def test_loads_neuron_class(self, compiler) -> None:
        unit = compiler.compile(ECHO)
        assert unit.class_name == "Echo"
        assert issubclass(unit.neuron_class, Neuron)
        assert len(unit.digest) == 64
        assert unit.neuron_class.__module__.startswith("neurogen.assembled.")

    def test_instantiate_returns_fresh_unstarted_instances(self, compiler) -> None:
        unit = compiler.compile(ECHO)
        a = unit.instantiate()
        b = unit.instantiate(name="echo2", topics=["other.in"], tick_interval=1.0)
        assert a is not b
        assert a.state is NeuronState.CREATED
        assert a.name == "echo"
        assert b.name == "echo2"
        assert "other.in" in b.subscribed_patterns
        assert b.tick_interval == 1.0

    def test_super_and_init_are_usable(self, compiler) -> None:
        source = _src(
            """
            class Counter(Neuron):
                name = "counter"

                def __init__(self, **kwargs):
                    super().__init__(**kwargs)
                    self.count = 0

                async def on_tick(self) -> None:
                    self.count += 1
            """
        )
        assert compiler.compile(source).instantiate().count == 0

    def test_extra_allowed_modules(self) -> None:
        compiler = PythonNeuronCompiler(CompilerConfig(NEUROGEN_EXTRA_ALLOWED_MODULES="decimal"))
        source = _src(
            """
            import decimal


            class Money(Neuron):
                name = "money"
            """
        )
        assert compiler.compile(source).class_name == "Money"


class TestRejectedSources:
    @pytest.mark.parametrize(
        "snippet, fragment",
        [
            ("import os", "import of 'os'"),
            ("import subprocess", "import of 'subprocess'"),
            ("from socket import socket", "import from 'socket'"),
            ("from . import sibling", "relative imports"),
            ("import asyncio.subprocess", "import of 'asyncio.subprocess'"),
            ("from asyncio import subprocess", "import of 'subprocess' from 'asyncio'"),
            ("x = eval('1')", "'eval'"),
            ("x = open('/etc/passwd')", "'open'"),
            ("x = getattr(object, 'mro')", "'getattr'"),
            ("x = __import__('os')", "'__import__'"),
            ("x = (1).__class__", "dunder attribute '__class__'"),
        ],
    )
    def test_security_scan(self, compiler, snippet: str, fragment: str) -> None:
        source = _src(
            f"""
            {snippet}


            class Bad(Neuron):
                name = "bad"
            """
        )
        with pytest.raises(CompileError) as excinfo:
            compiler.compile(source)
        assert excinfo.value.reason == "security scan failed"
        assert any(fragment in d for d in excinfo.value.diagnostics)

    @pytest.mark.parametrize(
        "expr",
        [
            "self.network.unregister('other')",
            "self._network",
            "asyncio.create_subprocess_shell('ls')",
            "asyncio.open_connection('example.com', 80)",
            "await asyncio.get_running_loop().subprocess_shell(asyncio.SubprocessProtocol, 'touch x')",
            "await asyncio.get_running_loop().subprocess_exec(asyncio.SubprocessProtocol, 'ls')",
            "await asyncio.get_running_loop().create_connection(asyncio.Protocol, 'example.com', 80)",
            "await asyncio.get_running_loop().create_server(asyncio.Protocol, port=8080)",
            "await asyncio.get_running_loop().create_datagram_endpoint(asyncio.DatagramProtocol)",
            "await asyncio.get_running_loop().create_unix_server(asyncio.Protocol, '/tmp/s')",
            "await asyncio.get_running_loop().getaddrinfo('example.com', 80)",
            "asyncio.get_running_loop().set_default_executor(None)",
            "asyncio.subprocess.PIPE",
            "asyncio.base_events.os",
        ],
    )
    def test_network_and_process_handles(self, compiler, expr: str) -> None:
        source = _src(
            f"""
            import asyncio


            class Sneaky(Neuron):
                name = "sneaky"

                async def on_tick(self) -> None:
                    {expr}
            """
        )
        with pytest.raises(CompileError):
            compiler.compile(source)

    def test_syntax_error(self, compiler) -> None:
        with pytest.raises(CompileError) as excinfo:
            compiler.compile(_src("class Broken(Neuron)\n    pass\n"))
        assert excinfo.value.reason == "syntax error"
        assert excinfo.value.diagnostics

    def test_empty_source(self, compiler) -> None:
        with pytest.raises(CompileError, match="empty source"):
            compiler.compile("   ")

    def test_source_too_large(self) -> None:
        compiler = PythonNeuronCompiler(CompilerConfig(NEUROGEN_MAX_SOURCE_CHARS=200))
        with pytest.raises(CompileError, match="source too large"):
            compiler.compile(ECHO + "\n# padding" * 50)

    def test_no_neuron_subclass(self, compiler) -> None:
        with pytest.raises(CompileError, match="no Neuron subclass"):
            compiler.compile(_src("x = 1\n"))

    def test_more_than_one_subclass(self, compiler) -> None:
        source = _src(
            """
            class A(Neuron):
                name = "a"


            class B(Neuron):
                name = "b"
            """
        )
        with pytest.raises(CompileError, match="more than one"):
            compiler.compile(source)

    def test_module_level_failure(self, compiler) -> None:
        source = _src(
            """
            x = 1 / 0


            class A(Neuron):
                name = "a"
            """
        )
        with pytest.raises(CompileError) as excinfo:
            compiler.compile(source)
        assert excinfo.value.reason == "execution failed"
        assert "ZeroDivisionError" in str(excinfo.value)

    def test_probe_failure(self, compiler) -> None:
        source = _src(
            """
            class Fragile(Neuron):
                name = "fragile"

                def configure(self) -> None:
                    raise ValueError("not today")
            """
        )
        with pytest.raises(CompileError) as excinfo:
            compiler.compile(source)
        assert excinfo.value.reason == "probe instantiation failed"
        assert "not today" in str(excinfo.value)

    def test_import_guard_blocks_unlisted_modules(self, compiler) -> None:
        with pytest.raises(ImportError, match="not allowed"):
            compiler._guarded_import("os")
        with pytest.raises(ImportError):
            compiler._guarded_import("json", None, None, (), 1)
        assert compiler._guarded_import("json").__name__ == "json"

    def test_import_guard_blocks_unlisted_submodules_in_fromlist(self, compiler) -> None:
        with pytest.raises(ImportError, match="asyncio.subprocess"):
            compiler._guarded_import("asyncio", None, None, ("subprocess",))
        assert compiler._guarded_import("collections", None, None, ("abc", "deque")).__name__ == "collections"


class TestModuleAllowed:
    def test_exact_and_submodules(self) -> None:
        assert module_allowed("json", ALLOWED_MODULES)
        assert module_allowed("collections.abc", ALLOWED_MODULES)
        assert module_allowed("neurogen.neuron", ALLOWED_MODULES)
        assert not module_allowed("neurogen.network", ALLOWED_MODULES)
        assert not module_allowed("os.path", ALLOWED_MODULES)
        assert not module_allowed("asyncio.subprocess", ALLOWED_MODULES)
        assert not module_allowed("json.decoder", ALLOWED_MODULES)
        assert not module_allowed("", ALLOWED_MODULES)
