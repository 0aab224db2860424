from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any

from PySide6.QtCore import QObject, QTimer, Signal

from fimpilot.ai.context_provider import ContextProvider
from fimpilot.ai.provider_base import CompletionTransport, GenerateRequest, StreamEvent
from fimpilot.editor_bridge import SPECIAL_BUFTYPES, BufferId, EditorBridge, Position, SuggestionRenderer
from fimpilot.settings_schema import CompletionConfig, default_completion_settings

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"  # waiting for the debounce timer
    STREAMING = "streaming"  # receiving tokens
    SHOWING = "showing"  # finished, waiting for accept or dismiss


@dataclass(slots=True)
class CompletionSession:
    token: int
    status: SessionStatus = SessionStatus.IDLE
    buffer_id: BufferId | None = None
    anchor: Position | None = None
    manual: bool = False
    suggestion_text: str = ""
    request_id: int | None = None


class CompletionOrchestrator(QObject):
    """Drives one inline completion at a time for a single editor.

    Every trigger starts a fresh session with a new token. Transport callbacks
    are bound to the token they were issued for and ignored once that session
    is gone, so late tokens from a cancelled request never reach the renderer.
    """

    diagnosticMessage = Signal(str)
    stateChanged = Signal(str)

    def __init__(
        self,
        *,
        editor: EditorBridge,
        renderer: SuggestionRenderer,
        transport: CompletionTransport,
        context_provider: ContextProvider | None = None,
        config: CompletionConfig | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._editor = editor
        self._renderer = renderer
        self._transport = transport
        self._context = context_provider or ContextProvider(editor)
        self._cfg = config or CompletionConfig.from_mapping(default_completion_settings())
        self._enabled = bool(self._cfg.enabled)

        self._token_counter = 0
        self._session = CompletionSession(token=self._next_token())

        self._debounce = QTimer(self)
        self._debounce.setSingleShot(True)
        self._debounce.timeout.connect(self._on_debounce_timeout)

    @property
    def config(self) -> CompletionConfig:
        return self._cfg

    @property
    def session(self) -> CompletionSession:
        return self._session

    def update_settings(self, config: CompletionConfig) -> None:
        previous = self._cfg
        self._cfg = config
        # The runtime enable flag only follows the config when the setting itself changes.
        if bool(config.enabled) != bool(previous.enabled):
            self._enabled = bool(config.enabled)
        self._context.language.clear_cache()
        if not self._enabled:
            self.dismiss()

    # --------- eligibility ---------
    def should_trigger(self, buffer_id: BufferId | None = None) -> bool:
        if not self._enabled:
            return False
        if not self._editor.is_insert_mode():
            return False
        if buffer_id is None:
            buffer_id = self._editor.current_buffer_id()
        if not self._cfg.is_filetype_enabled(self._editor.filetype(buffer_id)):
            return False
        if str(self._editor.buftype(buffer_id) or "") in SPECIAL_BUFTYPES:
            return False
        return True

    # --------- triggering ---------
    def trigger(self, manual: bool = False) -> bool:
        buffer_id = self._editor.current_buffer_id()
        if not self.should_trigger(buffer_id):
            return False

        self._cancel_outstanding()
        self._renderer.clear()

        session = CompletionSession(
            token=self._next_token(),
            status=SessionStatus.PENDING,
            buffer_id=buffer_id,
            anchor=self._editor.cursor(),
            manual=bool(manual),
        )
        self._session = session
        self.stateChanged.emit(session.status.value)

        if manual:
            self._fire(session.token)
        else:
            self._debounce.start(max(0, int(self._cfg.debounce_ms)))
        return True

    def _on_debounce_timeout(self) -> None:
        self._fire(self._session.token)

    def _fire(self, token: int) -> None:
        session = self._session
        if session.token != token or session.status != SessionStatus.PENDING:
            return

        buffer_id = session.buffer_id
        if not self.should_trigger(buffer_id):
            self._reset()
            return
        if self._editor.current_buffer_id() != buffer_id or self._editor.cursor() != session.anchor:
            logger.debug("Cursor moved before the debounce fired; dropping trigger")
            self._reset()
            return

        try:
            prompt, snapshot = self._context.get_prompt(buffer_id, session.anchor, self._cfg)
        except Exception:
            logger.warning("Could not gather completion context", exc_info=True)
            self._reset()
            return

        logger.debug(
            "Triggering completion, prefix length: %d, suffix length: %d",
            len(snapshot.prefix),
            len(snapshot.suffix),
        )

        request = GenerateRequest(
            endpoint=self._cfg.endpoint,
            model=self._cfg.model,
            prompt=prompt,
            max_tokens=self._cfg.max_tokens,
            temperature=self._cfg.temperature,
            stop=list(self._cfg.stop),
            timeout_s=self._cfg.request_timeout_ms / 1000.0,
        )
        session.status = SessionStatus.STREAMING
        session.suggestion_text = ""
        self.stateChanged.emit(session.status.value)
        try:
            session.request_id = self._transport.generate(request, partial(self._on_stream_event, token))
        except Exception as exc:
            logger.warning("Completion request failed to start: %s", exc)
            self.diagnosticMessage.emit(f"Completion request failed: {exc}")
            self._reset()

    # --------- stream handling ---------
    def _on_stream_event(self, token: int, event: StreamEvent) -> None:
        session = self._session
        if session.token != token or session.status != SessionStatus.STREAMING:
            logger.debug("Discarding %s event from stale request %s", event.kind, event.request_id)
            return

        if event.kind == "token":
            if not self._cursor_at_anchor(session):
                self.dismiss()
                return
            session.suggestion_text += event.text
            if self._renderer.is_visible():
                self._renderer.update(session.suggestion_text)
            else:
                self._renderer.show(session.suggestion_text, session.buffer_id, session.anchor)
        elif event.kind == "done":
            if session.suggestion_text:
                session.status = SessionStatus.SHOWING
                logger.debug("Completion done, suggestion: %d chars", len(session.suggestion_text))
                self.stateChanged.emit(session.status.value)
            else:
                self.dismiss()
        elif event.kind == "error":
            logger.debug("Completion error (%s): %s", event.error_kind, event.text)
            self.diagnosticMessage.emit(event.text)
            self.dismiss()

    def _cursor_at_anchor(self, session: CompletionSession) -> bool:
        return self._editor.current_buffer_id() == session.buffer_id and self._editor.cursor() == session.anchor

    # --------- accept / dismiss ---------
    def accept(self) -> bool:
        session = self._session
        if session.status not in (SessionStatus.STREAMING, SessionStatus.SHOWING):
            return False
        if not session.suggestion_text:
            return False

        text = session.suggestion_text
        buffer_id = session.buffer_id
        anchor = session.anchor

        self._renderer.clear()
        self._reset()

        if self._editor.is_text_locked():
            QTimer.singleShot(0, lambda: self._apply_accept(buffer_id, anchor, text))
        else:
            self._apply_accept(buffer_id, anchor, text)
        return True

    def _apply_accept(self, buffer_id: BufferId, anchor: Position, text: str) -> None:
        row = anchor.line
        current = self._editor.get_lines(buffer_id, row - 1, row)
        current_line = current[0] if current else ""
        before = current_line[: anchor.column]
        after = current_line[anchor.column :]

        lines = text.split("\n")
        lines[0] = before + lines[0]
        lines[-1] = lines[-1] + after

        self._editor.set_lines(buffer_id, row - 1, row, lines)
        self._editor.set_cursor(Position(row + len(lines) - 1, len(lines[-1]) - len(after)))

    def dismiss(self) -> None:
        self._renderer.clear()
        self._reset()

    def is_visible(self) -> bool:
        session = self._session
        return session.status in (SessionStatus.STREAMING, SessionStatus.SHOWING) and bool(session.suggestion_text)

    def get_suggestion(self) -> str | None:
        if self.is_visible():
            return self._session.suggestion_text
        return None

    # --------- enable flag ---------
    def enable(self) -> None:
        self._enabled = True
        self.diagnosticMessage.emit("Completions enabled")

    def disable(self) -> None:
        self.dismiss()
        self._enabled = False
        self.diagnosticMessage.emit("Completions disabled")

    def toggle(self) -> None:
        if self._enabled:
            self.disable()
        else:
            self.enable()

    def is_enabled(self) -> bool:
        return self._enabled

    def get_state(self) -> dict[str, Any]:
        session = self._session
        return {
            "status": session.status.value,
            "suggestion_length": len(session.suggestion_text),
            "anchor": session.anchor.as_tuple() if session.anchor is not None else None,
            "buffer_id": session.buffer_id,
            "enabled": self._enabled,
        }

    # --------- editor hooks ---------
    def on_text_changed(self) -> None:
        if self._cfg.auto_trigger and self._enabled:
            self.trigger(False)

    def on_cursor_moved(self) -> None:
        session = self._session
        if session.status not in (SessionStatus.STREAMING, SessionStatus.SHOWING):
            return
        if not self._cursor_at_anchor(session):
            self.dismiss()

    def on_insert_leave(self) -> None:
        self.dismiss()

    def on_buffer_leave(self) -> None:
        self.dismiss()

    def shutdown(self) -> None:
        self.dismiss()
        self._debounce.stop()

    # --------- internals ---------
    def _next_token(self) -> int:
        self._token_counter += 1
        return self._token_counter

    def _cancel_outstanding(self) -> None:
        self._debounce.stop()
        self._transport.cancel()

    def _reset(self) -> None:
        self._cancel_outstanding()
        was_idle = self._session.status == SessionStatus.IDLE
        self._session = CompletionSession(token=self._next_token())
        if not was_idle:
            self.stateChanged.emit(SessionStatus.IDLE.value)
