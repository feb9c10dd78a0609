"""Cooperative scheduler and runtime for generator-based threads and futures."""

__version__ = "0.1.0"

__all__ = [
    "formatting",
    "message",
    "runtime",
    "scheduler",
    "state",
    "tablebuilder",
    "thread",
]