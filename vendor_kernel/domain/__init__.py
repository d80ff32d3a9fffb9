"""
Pure domain layer: value objects, enumerations and state machines.

ZERO I/O.  Nothing here imports from ``db/`` (other than exceptions),
``models/`` or ``services/``.
"""
