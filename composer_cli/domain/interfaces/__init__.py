"""Domain interfaces package - Protocols for ports."""

from .backend import RawCallback, ComposeStatusSource, Clock, Sleeper

__all__ = [
    "RawCallback",
    "ComposeStatusSource",
    "Clock",
    "Sleeper",
]
