from __future__ import annotations

import os
from typing import Any

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6.QtCore import QEvent  # noqa: E402
from PySide6.QtWidgets import QApplication  # noqa: E402

from fimpilot.ai.provider_base import (  # noqa: E402
    CompletionTransport,
    GenerateRequest,
    ModelListResult,
    ProviderResult,
    StreamCallback,
    StreamEvent,
)
from fimpilot.editor_bridge import BufferId, Diagnostic, EditorBridge, LanguageContextSource, Position, SuggestionRenderer  # noqa: E402
from fimpilot.settings_schema import CompletionConfig  # noqa: E402


@pytest.fixture(scope="session")
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app
    QApplication.sendPostedEvents(None, QEvent.Type.DeferredDelete)
    app.processEvents()


class FakeEditor(EditorBridge):
    def __init__(self, lines: list[str] | None = None, cursor: tuple[int, int] = (1, 0)) -> None:
        self.lines = list(lines if lines is not None else [""])
        self.position = Position(*cursor)
        self.buffer = 1
        self.insert_mode = True
        self.ft = "python"
        self.bt = ""
        self.name = "/work/demo.py"
        self.locked = False
        self.comment_template = ""
        self.set_lines_calls = 0
        self.attached: tuple[Any, Any] | None = None

    def move_cursor(self, line: int, column: int) -> None:
        self.position = Position(line, column)

    def current_buffer_id(self) -> BufferId:
        return self.buffer

    def cursor(self) -> Position:
        return self.position

    def is_insert_mode(self) -> bool:
        return self.insert_mode

    def filetype(self, buffer_id: BufferId) -> str:
        return self.ft

    def buftype(self, buffer_id: BufferId) -> str:
        return self.bt

    def buffer_name(self, buffer_id: BufferId) -> str:
        return self.name

    def line_count(self, buffer_id: BufferId) -> int:
        return len(self.lines)

    def get_lines(self, buffer_id: BufferId, start: int, end: int) -> list[str]:
        return self.lines[max(0, start) : end]

    def set_lines(self, buffer_id: BufferId, start: int, end: int, lines: list[str]) -> None:
        self.set_lines_calls += 1
        self.lines[start:end] = list(lines)

    def set_cursor(self, position: Position) -> None:
        self.position = position

    def commentstring(self, buffer_id: BufferId) -> str:
        return self.comment_template

    def is_text_locked(self) -> bool:
        return self.locked

    def attach_completion(self, hooks: Any, keymaps: Any) -> None:
        self.attached = (hooks, keymaps)


class FakeRenderer(SuggestionRenderer):
    def __init__(self) -> None:
        self.text = ""
        self.buffer_id: BufferId | None = None
        self.anchor: Position | None = None
        self.show_calls: list[str] = []
        self.clear_calls = 0
        self.highlight = ""

    def show(self, text: str, buffer_id: BufferId, anchor: Position) -> None:
        self.text = text
        self.buffer_id = buffer_id
        self.anchor = anchor
        self.show_calls.append(text)

    def clear(self) -> None:
        self.clear_calls += 1
        self.text = ""
        self.buffer_id = None
        self.anchor = None

    def is_visible(self) -> bool:
        return bool(self.text)

    def get_text(self) -> str | None:
        return self.text or None

    def get_position(self) -> tuple[BufferId, Position] | None:
        if self.anchor is None:
            return None
        return self.buffer_id, self.anchor

    def set_highlight(self, color: str) -> None:
        self.highlight = color


class FakeTransport(CompletionTransport):
    """Records requests; tests push stream events through ``emit``."""

    def __init__(self) -> None:
        self.requests: list[tuple[GenerateRequest, StreamCallback]] = []
        self.active: int | None = None
        self.cancel_calls = 0
        self.overlaps = 0
        self.health = ProviderResult(ok=True, status_text="ok")
        self.models = ModelListResult(ok=True, status_text="ok", models=["qwen2.5-coder:1.5b", "codellama:7b"])
        self.shutdown_calls = 0

    def generate(self, request: GenerateRequest, on_event: StreamCallback) -> int:
        if self.active is not None:
            # A request was still running when a new one was issued.
            self.overlaps += 1
        self.requests.append((request, on_event))
        self.active = len(self.requests)
        return self.active

    def cancel(self) -> None:
        self.cancel_calls += 1
        self.active = None

    def is_running(self) -> bool:
        return self.active is not None

    def emit(self, kind: str, text: str = "", *, index: int = -1, error_kind: str = "") -> None:
        request_id = len(self.requests) if index == -1 else index + 1
        _request, callback = self.requests[index]
        if kind in ("done", "error") and self.active == request_id:
            self.active = None
        callback(StreamEvent(request_id, kind, text, error_kind))

    def health_check(self, *, endpoint: str, timeout_s: float = 5.0) -> ProviderResult:
        return self.health

    def list_models(self, *, endpoint: str, timeout_s: float = 5.0, force_refresh: bool = False) -> ModelListResult:
        return self.models

    def shutdown(self) -> None:
        self.shutdown_calls += 1
        self.cancel()


class FakeLanguageSource(LanguageContextSource):
    def __init__(self) -> None:
        self.items: list[Diagnostic] = []
        self.capabilities: set[str] = {"hoverProvider", "signatureHelpProvider"}
        self.responses: dict[str, list[dict[str, Any]] | None] = {}
        self.request_calls: list[str] = []
        self.fail = False

    def diagnostics(self, buffer_id: BufferId) -> list[Diagnostic]:
        return list(self.items)

    def supports(self, buffer_id: BufferId, capability: str) -> bool:
        return capability in self.capabilities

    def request(self, buffer_id: BufferId, method: str, position: Position, timeout_ms: int):
        self.request_calls.append(method)
        if self.fail:
            raise RuntimeError("server crashed")
        return self.responses.get(method)


@pytest.fixture
def editor() -> FakeEditor:
    return FakeEditor()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def language_source() -> FakeLanguageSource:
    return FakeLanguageSource()


@pytest.fixture
def config() -> CompletionConfig:
    return CompletionConfig.from_mapping({"debounce_ms": 20})
