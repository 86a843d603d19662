"""Prompt scratchpads for code assistants and completion telemetry."""

__version__ = "0.1.0"