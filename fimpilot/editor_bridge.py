"""Narrow interfaces the completion core uses to talk to its host editor.

Lines are 1-based, columns are 0-based character offsets into the line.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Hashable

BufferId = Hashable

# Buffer types that never get completions (scratch, prompt and quickfix-like).
SPECIAL_BUFTYPES = frozenset({"nofile", "prompt", "quickfix"})


@dataclass(frozen=True, slots=True)
class Position:
    line: int
    column: int

    def as_tuple(self) -> tuple[int, int]:
        return (self.line, self.column)


@dataclass(frozen=True, slots=True)
class Diagnostic:
    line: int
    message: str
    severity: int = 1  # LSP DiagnosticSeverity: 1 error, 2 warning, 3 info, 4 hint


@dataclass(frozen=True, slots=True)
class KeyBindings:
    """Portable key sequence texts (``"Tab"``, ``"Ctrl+Space"``); empty disables a binding."""

    accept: str = ""
    dismiss: str = ""
    trigger: str = ""


class EditorBridge(ABC):
    @abstractmethod
    def current_buffer_id(self) -> BufferId:
        raise NotImplementedError

    @abstractmethod
    def cursor(self) -> Position:
        raise NotImplementedError

    @abstractmethod
    def is_insert_mode(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def filetype(self, buffer_id: BufferId) -> str:
        raise NotImplementedError

    @abstractmethod
    def buftype(self, buffer_id: BufferId) -> str:
        raise NotImplementedError

    @abstractmethod
    def buffer_name(self, buffer_id: BufferId) -> str:
        raise NotImplementedError

    @abstractmethod
    def line_count(self, buffer_id: BufferId) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_lines(self, buffer_id: BufferId, start: int, end: int) -> list[str]:
        """Return lines ``start`` (inclusive) to ``end`` (exclusive), 0-based."""
        raise NotImplementedError

    @abstractmethod
    def set_lines(self, buffer_id: BufferId, start: int, end: int, lines: list[str]) -> None:
        """Replace lines ``start`` to ``end`` (0-based, exclusive) with ``lines``."""
        raise NotImplementedError

    @abstractmethod
    def set_cursor(self, position: Position) -> None:
        raise NotImplementedError

    def commentstring(self, buffer_id: BufferId) -> str:
        """Editor comment template such as ``"# %s"``; empty when unknown."""
        return ""

    def is_text_locked(self) -> bool:
        """True while the editor forbids buffer changes (e.g. inside a key handler)."""
        return False

    def attach_completion(self, hooks: Any, keymaps: KeyBindings) -> None:
        """Route edit events and key bindings to ``hooks`` (an orchestrator). Hosts that push events themselves can ignore this."""
        return None


class SuggestionRenderer(ABC):
    @abstractmethod
    def show(self, text: str, buffer_id: BufferId, anchor: Position) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_visible(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def get_text(self) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def get_position(self) -> tuple[BufferId, Position] | None:
        raise NotImplementedError

    def update(self, text: str) -> None:
        current = self.get_position()
        if current is None:
            return
        buffer_id, anchor = current
        self.show(text, buffer_id, anchor)

    def is_at_position(self, buffer_id: BufferId, position: Position) -> bool:
        current = self.get_position()
        if current is None:
            return False
        return current[0] == buffer_id and current[1] == position

    def set_highlight(self, color: str) -> None:
        return None


class LanguageContextSource(ABC):
    """Access to language-server style information for a buffer."""

    @abstractmethod
    def diagnostics(self, buffer_id: BufferId) -> list[Diagnostic]:
        raise NotImplementedError

    @abstractmethod
    def supports(self, buffer_id: BufferId, capability: str) -> bool:
        """Whether any attached server advertises ``capability`` (e.g. ``hoverProvider``)."""
        raise NotImplementedError

    @abstractmethod
    def request(
        self,
        buffer_id: BufferId,
        method: str,
        position: Position,
        timeout_ms: int,
    ) -> list[dict[str, Any]] | None:
        """Synchronous request; one response dict (with ``result``) per server, or None on timeout."""
        raise NotImplementedError
