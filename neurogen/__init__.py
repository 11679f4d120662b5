"""
Neurogen — Self-Assembling Neuron Runtime

This package lets a long-running agent grow new message-handling units
("neurons") while it runs.  A declarative Blueprint describes the unit; the
self-assembly engine validates it, asks for approval, synthesizes source code,
compiles it in a restricted namespace, and wires the result into the live
publish/subscribe network without restarting the host.

Architecture layers (bottom to top):
    1. Blueprint model and error taxonomy
    2. Neuron runtime (mailbox actor with optional tick)
    3. Neuron network (topic-routed pub/sub bus)
    4. Assembly pipeline (validator, approval, generator, compiler)
    5. Self-assembly engine (per-submission state machine + catalog)
    6. Gap analyzer (proposes blueprints from interaction history)
    7. Runtime host (event bus, audit log, shutdown)
"""

__version__ = "0.1.0"
