"""Inline fill-in-the-middle code completion for Qt editors, backed by a local Ollama server."""

__version__ = "0.1.0"
