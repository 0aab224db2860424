from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from PySide6.QtCore import QRect, Qt, Signal
from PySide6.QtGui import QColor, QKeySequence, QPainter, QPalette, QTextCursor, QTextDocument
from PySide6.QtWidgets import QPlainTextEdit, QWidget

from fimpilot.editor_bridge import (
    BufferId,
    Diagnostic,
    EditorBridge,
    KeyBindings,
    LanguageContextSource,
    Position,
    SuggestionRenderer,
)
from fimpilot.services.language_id import filetype_for_path

logger = logging.getLogger(__name__)

_PANEL_MAX_LINES = 10


class GhostTextEdit(QPlainTextEdit):
    """Plain text editor that hosts inline completions.

    ``bridge`` exposes the buffer to the completion core (1-based lines,
    0-based columns) and ``renderer`` holds the suggestion painted after the
    cursor. Key presses matching the configured bindings go to the attached
    orchestrator before normal editing.
    """

    insertLeft = Signal()
    bufferLeft = Signal()

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._file_path = ""
        self._filetype: str | None = None
        self._buftype = ""
        self._insert_mode = True
        self._text_locked = False
        self._suppress_hooks = False
        self._diagnostics: list[Diagnostic] = []

        self._hooks: Any = None
        self._accept_seq: QKeySequence | None = None
        self._dismiss_seq: QKeySequence | None = None
        self._trigger_seq: QKeySequence | None = None

        self.bridge = GhostTextEditorBridge(self)
        self.renderer = GhostTextRenderer(self)

        self.setLineWrapMode(QPlainTextEdit.LineWrapMode.NoWrap)
        self.textChanged.connect(self._on_text_changed)
        self.cursorPositionChanged.connect(self._on_cursor_position_changed)

    # --------- files ---------
    def load_file(self, file_path: str) -> None:
        path = Path(file_path)
        text = path.read_text(encoding="utf-8") if path.exists() else ""
        self.bufferLeft.emit()
        if self._hooks is not None:
            self._hooks.on_buffer_leave()
        self._suppress_hooks = True
        try:
            self.setPlainText(text)
        finally:
            self._suppress_hooks = False
        self._file_path = str(path)
        self._filetype = None
        self.document().setModified(False)

    def save_file(self, file_path: str | None = None) -> str:
        target = str(file_path or self._file_path or "").strip()
        if not target:
            raise ValueError("No file path to save to.")
        Path(target).write_text(self.toPlainText(), encoding="utf-8")
        self._file_path = target
        self.document().setModified(False)
        return target

    def file_path(self) -> str:
        return self._file_path

    def set_file_path(self, file_path: str) -> None:
        self._file_path = str(file_path or "")
        self._filetype = None

    def set_filetype(self, filetype: str | None) -> None:
        self._filetype = filetype

    def set_buftype(self, buftype: str) -> None:
        self._buftype = str(buftype or "")

    def set_insert_mode(self, enabled: bool) -> None:
        was_insert = self._insert_mode
        self._insert_mode = bool(enabled)
        if was_insert and not self._insert_mode:
            self._leave_insert()

    def is_insert_mode(self) -> bool:
        return self._insert_mode and not self.isReadOnly()

    def is_text_locked(self) -> bool:
        return self._text_locked

    def set_diagnostics(self, diagnostics: list[Diagnostic]) -> None:
        self._diagnostics = list(diagnostics or [])

    def diagnostics(self) -> list[Diagnostic]:
        return list(self._diagnostics)

    def resolved_filetype(self) -> str:
        if self._filetype is not None:
            return self._filetype
        return filetype_for_path(self._file_path, default="text") if self._file_path else "text"

    def buftype(self) -> str:
        return self._buftype

    def cursor_position(self) -> Position:
        tc = self.textCursor()
        return Position(tc.blockNumber() + 1, tc.positionInBlock())

    def run_without_hooks(self, fn, *args) -> Any:
        self._suppress_hooks = True
        try:
            return fn(*args)
        finally:
            self._suppress_hooks = False

    # --------- completion wiring ---------
    def attach_completion(self, hooks: Any, keymaps: KeyBindings) -> None:
        self._hooks = hooks
        self._accept_seq = self._key_sequence(keymaps.accept)
        self._dismiss_seq = self._key_sequence(keymaps.dismiss)
        self._trigger_seq = self._key_sequence(keymaps.trigger)

    @staticmethod
    def _key_sequence(text: str) -> QKeySequence | None:
        value = str(text or "").strip()
        if not value:
            return None
        seq = QKeySequence(value)
        if seq.isEmpty():
            logger.warning("Ignoring unrecognised key binding %r", value)
            return None
        return seq

    @staticmethod
    def _matches(event, seq: QKeySequence | None) -> bool:
        if seq is None:
            return False
        pressed = QKeySequence(event.keyCombination())
        return pressed.matches(seq) == QKeySequence.SequenceMatch.ExactMatch

    def keyPressEvent(self, event):
        hooks = self._hooks
        if hooks is not None:
            if self._matches(event, self._accept_seq) and hooks.is_visible():
                # Buffer edits are deferred until the key handler returns.
                self._text_locked = True
                try:
                    accepted = hooks.accept()
                finally:
                    self._text_locked = False
                if accepted:
                    event.accept()
                    return
            if self._matches(event, self._dismiss_seq) and hooks.is_visible():
                hooks.dismiss()
                event.accept()
                return
            if self._matches(event, self._trigger_seq):
                hooks.trigger(True)
                event.accept()
                return
            if event.key() == Qt.Key_Escape and hooks.is_visible():
                hooks.dismiss()
                event.accept()
                return
        super().keyPressEvent(event)

    def focusInEvent(self, event):
        self._insert_mode = True
        super().focusInEvent(event)

    def focusOutEvent(self, event):
        if self._insert_mode:
            self._insert_mode = False
            self._leave_insert()
        super().focusOutEvent(event)

    def _leave_insert(self) -> None:
        self.insertLeft.emit()
        if self._hooks is not None:
            self._hooks.on_insert_leave()

    def _on_text_changed(self) -> None:
        if self._suppress_hooks or self._hooks is None:
            return
        self._hooks.on_text_changed()

    def _on_cursor_position_changed(self) -> None:
        if self.renderer.is_visible():
            self.viewport().update()
        if self._suppress_hooks or self._hooks is None:
            return
        self._hooks.on_cursor_moved()

    # --------- painting ---------
    def paintEvent(self, event):
        super().paintEvent(event)
        self._paint_ghost_text()

    def _paint_ghost_text(self) -> None:
        text = self.renderer.get_text()
        position = self.renderer.get_position()
        if not text or position is None:
            return
        buffer_id, anchor = position
        if buffer_id is not self.document() or self.cursor_position() != anchor:
            return

        lines = text.split("\n")
        rect = self.cursorRect()
        fm = self.fontMetrics()
        color = QColor(self.renderer.color) if self.renderer.color is not None else QColor(
            self.palette().color(QPalette.PlaceholderText)
        )
        color.setAlpha(180)

        painter = QPainter(self.viewport())
        painter.setRenderHint(QPainter.Antialiasing, True)
        try:
            # First line sits inline beside the cursor.
            first = lines[0]
            if first:
                y = int(rect.top() + max(0, (rect.height() - fm.height()) // 2) + fm.ascent())
                x = int(rect.left())
                max_w = max(8, self.viewport().width() - x - 8)
                painter.setPen(color)
                painter.drawText(x, y, fm.elidedText(first, Qt.TextElideMode.ElideRight, max_w))

            rest = lines[1:]
            if not rest:
                return

            preview = list(rest[:_PANEL_MAX_LINES])
            if len(rest) > _PANEL_MAX_LINES:
                preview[-1] = f"{preview[-1]} ..."

            line_h = max(int(fm.lineSpacing()), int(rect.height()))
            pad_x = 6
            pad_y = 4
            x = max(0, int(self.contentOffset().x() + self.document().documentMargin()))
            max_panel_w = max(100, self.viewport().width() - x - 8)
            widest = max((int(fm.horizontalAdvance(line)) for line in preview), default=0)
            panel_w = min(max_panel_w, widest + (pad_x * 2))
            text_w = max(20, panel_w - (pad_x * 2))
            draw_lines = [fm.elidedText(line, Qt.TextElideMode.ElideRight, text_w) for line in preview]

            panel_h = (line_h * len(draw_lines)) + (pad_y * 2)
            y = int(rect.bottom() + 2)
            if y + panel_h > self.viewport().height():
                y = max(0, int(rect.top() - panel_h - 2))

            panel_rect = QRect(x, y, panel_w, panel_h)
            bg = QColor(self.palette().color(QPalette.Base))
            bg.setAlpha(224)
            border = QColor(self.palette().color(QPalette.Mid))
            border.setAlpha(200)
            painter.setPen(border)
            painter.setBrush(bg)
            painter.drawRoundedRect(panel_rect, 4, 4)

            painter.setPen(color)
            base_x = panel_rect.left() + pad_x
            base_y = panel_rect.top() + pad_y + fm.ascent()
            for idx, line in enumerate(draw_lines):
                painter.drawText(base_x, base_y + (idx * line_h), line)
        finally:
            painter.end()


class GhostTextEditorBridge(EditorBridge, LanguageContextSource):
    """Buffer access for a ``GhostTextEdit``; the buffer id is its ``QTextDocument``."""

    def __init__(self, editor: GhostTextEdit) -> None:
        self._editor = editor

    def _document_for(self, buffer_id: BufferId) -> QTextDocument:
        return buffer_id if isinstance(buffer_id, QTextDocument) else self._editor.document()

    def current_buffer_id(self) -> BufferId:
        return self._editor.document()

    def cursor(self) -> Position:
        return self._editor.cursor_position()

    def is_insert_mode(self) -> bool:
        return self._editor.is_insert_mode()

    def filetype(self, buffer_id: BufferId) -> str:
        return self._editor.resolved_filetype()

    def buftype(self, buffer_id: BufferId) -> str:
        return self._editor.buftype()

    def buffer_name(self, buffer_id: BufferId) -> str:
        return self._editor.file_path()

    def line_count(self, buffer_id: BufferId) -> int:
        return self._document_for(buffer_id).blockCount()

    def get_lines(self, buffer_id: BufferId, start: int, end: int) -> list[str]:
        doc = self._document_for(buffer_id)
        stop = min(int(end), doc.blockCount())
        return [doc.findBlockByNumber(n).text() for n in range(max(0, int(start)), stop)]

    def set_lines(self, buffer_id: BufferId, start: int, end: int, lines: list[str]) -> None:
        doc = self._document_for(buffer_id)
        count = doc.blockCount()
        start = max(0, min(int(start), count))
        end = max(start, min(int(end), count))

        cursor = QTextCursor(doc)
        if start == end:
            if start < count:
                cursor.setPosition(doc.findBlockByNumber(start).position())
                text = "\n".join(lines) + "\n"
            else:
                cursor.movePosition(QTextCursor.MoveOperation.End)
                text = "\n" + "\n".join(lines)
        else:
            first = doc.findBlockByNumber(start)
            last = doc.findBlockByNumber(end - 1)
            cursor.setPosition(first.position())
            cursor.setPosition(last.position() + last.length() - 1, QTextCursor.MoveMode.KeepAnchor)
            text = "\n".join(lines)

        def _apply() -> None:
            cursor.beginEditBlock()
            cursor.insertText(text)
            cursor.endEditBlock()

        self._editor.run_without_hooks(_apply)

    def set_cursor(self, position: Position) -> None:
        doc = self._editor.document()
        block = doc.findBlockByNumber(max(0, min(position.line - 1, doc.blockCount() - 1)))
        column = max(0, min(position.column, block.length() - 1))
        tc = self._editor.textCursor()
        tc.setPosition(block.position() + column)
        self._editor.run_without_hooks(self._editor.setTextCursor, tc)

    def is_text_locked(self) -> bool:
        return self._editor.is_text_locked()

    def attach_completion(self, hooks: Any, keymaps: KeyBindings) -> None:
        self._editor.attach_completion(hooks, keymaps)

    # language context: diagnostics only, no language server behind a plain editor
    def diagnostics(self, buffer_id: BufferId) -> list[Diagnostic]:
        return self._editor.diagnostics()

    def supports(self, buffer_id: BufferId, capability: str) -> bool:
        return False

    def request(self, buffer_id: BufferId, method: str, position: Position, timeout_ms: int):
        return None


class GhostTextRenderer(SuggestionRenderer):
    def __init__(self, editor: GhostTextEdit) -> None:
        self._editor = editor
        self._text = ""
        self._buffer_id: BufferId | None = None
        self._anchor: Position | None = None
        self.color: QColor | None = None

    def show(self, text: str, buffer_id: BufferId, anchor: Position) -> None:
        self._text = str(text or "").replace("\r", "")
        self._buffer_id = buffer_id
        self._anchor = anchor
        self._editor.viewport().update()

    def update(self, text: str) -> None:
        if self._anchor is None:
            return
        self._text = str(text or "").replace("\r", "")
        self._editor.viewport().update()

    def clear(self) -> None:
        if not self._text and self._anchor is None:
            return
        self._text = ""
        self._buffer_id = None
        self._anchor = None
        self._editor.viewport().update()

    def is_visible(self) -> bool:
        return bool(self._text)

    def get_text(self) -> str | None:
        return self._text or None

    def get_position(self) -> tuple[BufferId, Position] | None:
        if self._anchor is None:
            return None
        return self._buffer_id, self._anchor

    def set_highlight(self, color: str) -> None:
        value = QColor(str(color or ""))
        self.color = value if value.isValid() else None
        self._editor.viewport().update()
