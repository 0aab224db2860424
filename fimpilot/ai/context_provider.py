from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePath

from fimpilot.ai.language_context import LanguageContext, LanguageContextCollector
from fimpilot.ai.prompt_builder import build_prompt, build_simple_prompt, comment_markers
from fimpilot.editor_bridge import BufferId, EditorBridge, LanguageContextSource, Position
from fimpilot.settings_schema import CompletionConfig

logger = logging.getLogger(__name__)

_INDENT_RE = re.compile(r"^\s*")


@dataclass(slots=True)
class FileMetadata:
    filepath: str
    filename: str
    filetype: str


@dataclass(slots=True)
class ContextSnapshot:
    prefix: str
    suffix: str
    metadata: FileMetadata
    language: LanguageContext = field(default_factory=LanguageContext)
    language_block: str = ""


class ContextProvider:
    def __init__(
        self,
        editor: EditorBridge,
        language_source: LanguageContextSource | None = None,
        *,
        collector: LanguageContextCollector | None = None,
    ) -> None:
        self._editor = editor
        self.language = collector or LanguageContextCollector(language_source)

    def get_prefix(self, buffer_id: BufferId, cursor: Position, cfg: CompletionConfig) -> str:
        start_line = max(1, cursor.line - cfg.max_prefix_lines + 1)
        lines = self._editor.get_lines(buffer_id, start_line - 1, cursor.line)
        if not lines:
            return ""
        lines = [line[: cfg.max_line_length] for line in lines]
        lines[-1] = lines[-1][: cursor.column]
        return "\n".join(lines)

    def get_suffix(self, buffer_id: BufferId, cursor: Position, cfg: CompletionConfig) -> str:
        end_line = min(self._editor.line_count(buffer_id), cursor.line + cfg.max_suffix_lines - 1)
        lines = self._editor.get_lines(buffer_id, cursor.line - 1, end_line)
        if not lines:
            return ""
        lines = [line[: cfg.max_line_length] for line in lines]
        lines[0] = lines[0][cursor.column :]
        return "\n".join(lines)

    def get_line(self, buffer_id: BufferId, line: int) -> str:
        lines = self._editor.get_lines(buffer_id, line - 1, line)
        return lines[0] if lines else ""

    def get_indentation(self, buffer_id: BufferId, line: int) -> str:
        match = _INDENT_RE.match(self.get_line(buffer_id, line))
        return match.group(0) if match else ""

    def get_metadata(self, buffer_id: BufferId) -> FileMetadata:
        filepath = str(self._editor.buffer_name(buffer_id) or "")
        return FileMetadata(
            filepath=filepath,
            filename=PurePath(filepath).name if filepath else "",
            filetype=str(self._editor.filetype(buffer_id) or ""),
        )

    def gather(self, buffer_id: BufferId, cursor: Position, cfg: CompletionConfig) -> ContextSnapshot:
        metadata = self.get_metadata(buffer_id)
        language = self.language.gather(buffer_id, cursor, cfg)
        comment = comment_markers(metadata.filetype, self._editor.commentstring(buffer_id))
        return ContextSnapshot(
            prefix=self.get_prefix(buffer_id, cursor, cfg),
            suffix=self.get_suffix(buffer_id, cursor, cfg),
            metadata=metadata,
            language=language,
            language_block=self.language.format_context(language, comment),
        )

    def get_prompt(self, buffer_id: BufferId, cursor: Position, cfg: CompletionConfig) -> tuple[str, ContextSnapshot]:
        snapshot = self.gather(buffer_id, cursor, cfg)
        commentstring = self._editor.commentstring(buffer_id)
        if not (cfg.fim_prefix or cfg.fim_suffix or cfg.fim_middle):
            # No FIM tokens configured: plain left-to-right continuation.
            prompt = build_simple_prompt(snapshot, commentstring)
        else:
            prompt = build_prompt(snapshot, cfg.fim, commentstring)
        logger.debug(
            "Built prompt for %s: prefix=%d chars, suffix=%d chars",
            snapshot.metadata.filename or "<unnamed>",
            len(snapshot.prefix),
            len(snapshot.suffix),
        )
        return prompt, snapshot
