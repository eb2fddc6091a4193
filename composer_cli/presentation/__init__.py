"""Presentation layer - Command handlers and output formatting."""

from .cli import ComposerCLI, JSONCollector

__all__ = [
    "ComposerCLI",
    "JSONCollector",
]
