"""
Entry point for the ``neurogen`` command.

Configures logging, builds an AssemblyRuntime from the environment and runs
it until SIGINT/SIGTERM. Everything interesting is configured through
NEUROGEN_* environment variables (see neurogen.config).
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

import structlog

from neurogen.config import NeurogenConfig
from neurogen.runtime import AssemblyRuntime

_logging_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure structlog over standard-library logging.

    Safe to call more than once; subsequent calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    level_name = (level or os.environ.get("NEUROGEN_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger(__name__)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, runtime: AssemblyRuntime) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runtime.request_shutdown, f"signal_{sig.name.lower()}")
        except NotImplementedError:
            pass


async def _run() -> None:
    runtime = AssemblyRuntime(NeurogenConfig())
    _install_signal_handlers(asyncio.get_running_loop(), runtime)
    await runtime.run_until_shutdown()


def main() -> None:
    """Entry point for the neurogen command."""
    configure_logging()
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("main.interrupted")
    except Exception as exc:
        logger.error("main.fatal", error=str(exc), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
