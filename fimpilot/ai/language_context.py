"""Language-server context (diagnostics, hover, signature help) for prompts."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable

from fimpilot.editor_bridge import BufferId, Diagnostic, LanguageContextSource, Position
from fimpilot.settings_schema import CompletionConfig

logger = logging.getLogger(__name__)

# Diagnostics this many lines away from the cursor still count as "near".
NEARBY_DIAGNOSTIC_LINES = 3
CONTEXT_ITEM_MAX_CHARS = 200

_SEVERITY_NAMES = {1: "Error", 2: "Warning", 3: "Info", 4: "Hint"}
_FENCE_RE = re.compile(r"```[\w+-]*")


@dataclass(slots=True)
class LanguageContext:
    diagnostics: str = ""
    hover: str | None = None
    signature: str | None = None


@dataclass(slots=True)
class _CacheEntry:
    result: str | None
    stored_at_ms: float


def _truncate(text: str, max_len: int) -> str:
    return text if len(text) <= max_len else text[:max_len]


def _first_line(text: str) -> str:
    return text.split("\n", 1)[0] if text else text


class LanguageContextCollector:
    """Collects language context around a cursor, failing soft on every lookup.

    Hover and signature results are cached per buffer and exact position for
    ``lsp_cache_ttl_ms``; a cached ``None`` also counts as a hit.
    """

    def __init__(
        self,
        source: LanguageContextSource | None,
        *,
        clock_ms: Callable[[], float] | None = None,
    ) -> None:
        self._source = source
        self._clock_ms = clock_ms or (lambda: time.monotonic() * 1000.0)
        self._cache: dict[tuple[str, BufferId, int, int], _CacheEntry] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def gather(self, buffer_id: BufferId, cursor: Position, cfg: CompletionConfig) -> LanguageContext:
        if self._source is None or not cfg.lsp_enabled:
            return LanguageContext()

        context = LanguageContext()
        if cfg.lsp_diagnostics:
            context.diagnostics = self.format_diagnostics(self.get_diagnostics(buffer_id, cursor))
        if cfg.lsp_hover:
            context.hover = self.get_hover(buffer_id, cursor, cfg)
        if cfg.lsp_signature_help:
            context.signature = self.get_signature(buffer_id, cursor, cfg)
        return context

    def get_diagnostics(self, buffer_id: BufferId, cursor: Position) -> list[Diagnostic]:
        if self._source is None:
            return []
        try:
            all_diagnostics = list(self._source.diagnostics(buffer_id) or [])
        except Exception as exc:
            logger.debug("Diagnostics lookup failed: %s", exc)
            return []

        same_line = [d for d in all_diagnostics if d.line == cursor.line]
        if same_line:
            return same_line
        return [d for d in all_diagnostics if abs(d.line - cursor.line) <= NEARBY_DIAGNOSTIC_LINES]

    @staticmethod
    def format_diagnostics(diagnostics: list[Diagnostic]) -> str:
        lines: list[str] = []
        seen: set[str] = set()
        for diag in diagnostics:
            msg = " ".join(str(diag.message or "").replace("\n", " ").split())
            if msg in seen:
                continue
            seen.add(msg)
            severity = _SEVERITY_NAMES.get(int(diag.severity or 0), "Unknown")
            lines.append(f"[{severity}] {msg}")
        return "\n".join(lines)

    def get_hover(self, buffer_id: BufferId, cursor: Position, cfg: CompletionConfig) -> str | None:
        return self._cached_lookup(
            "hover",
            buffer_id,
            cursor,
            cfg,
            capability="hoverProvider",
            method="textDocument/hover",
            extract=self._extract_hover,
        )

    def get_signature(self, buffer_id: BufferId, cursor: Position, cfg: CompletionConfig) -> str | None:
        return self._cached_lookup(
            "signature",
            buffer_id,
            cursor,
            cfg,
            capability="signatureHelpProvider",
            method="textDocument/signatureHelp",
            extract=self._extract_signature,
        )

    def format_context(self, context: LanguageContext, comment: tuple[str, str]) -> str:
        parts: list[str] = []
        if context.hover:
            parts.append("Type: " + _truncate(_first_line(context.hover), CONTEXT_ITEM_MAX_CHARS))
        if context.signature:
            parts.append("Signature: " + _truncate(context.signature, CONTEXT_ITEM_MAX_CHARS))
        if context.diagnostics:
            # First diagnostic only, to keep the prompt small.
            parts.append("Diagnostic: " + _first_line(context.diagnostics))
        if not parts:
            return ""
        open_mark, close_mark = comment
        return "\n".join(f"{open_mark}{part}{close_mark}" for part in parts)

    def _cached_lookup(
        self,
        kind: str,
        buffer_id: BufferId,
        cursor: Position,
        cfg: CompletionConfig,
        *,
        capability: str,
        method: str,
        extract: Callable[[list[dict[str, Any]]], str | None],
    ) -> str | None:
        key = (kind, buffer_id, cursor.line, cursor.column)
        now = self._clock_ms()
        entry = self._cache.get(key)
        if entry is not None and (now - entry.stored_at_ms) < cfg.lsp_cache_ttl_ms:
            return entry.result
        self._prune(now, cfg.lsp_cache_ttl_ms)

        source = self._source
        if source is None:
            return None
        try:
            if not source.supports(buffer_id, capability):
                return None
            responses = source.request(buffer_id, method, cursor, cfg.lsp_timeout_ms)
            result = extract(responses) if responses else None
        except Exception as exc:
            logger.debug("%s lookup failed: %s", method, exc)
            return None

        self._cache[key] = _CacheEntry(result=result, stored_at_ms=now)
        return result

    def _prune(self, now: float, ttl_ms: int) -> None:
        expired = [k for k, e in self._cache.items() if (now - e.stored_at_ms) >= ttl_ms]
        for key in expired:
            self._cache.pop(key, None)

    @staticmethod
    def _extract_hover(responses: list[dict[str, Any]]) -> str | None:
        for response in responses:
            result = response.get("result") if isinstance(response, dict) else None
            if not isinstance(result, dict) or not result.get("contents"):
                continue
            contents = result["contents"]
            text = ""
            if isinstance(contents, str):
                text = contents
            elif isinstance(contents, dict):
                text = str(contents.get("value") or "")
            elif isinstance(contents, list):
                parts: list[str] = []
                for part in contents:
                    if isinstance(part, str):
                        parts.append(part)
                    elif isinstance(part, dict) and part.get("value"):
                        parts.append(str(part["value"]))
                text = "\n".join(parts)
            if text:
                text = _FENCE_RE.sub("", text).strip()
                if text:
                    return text
        return None

    @staticmethod
    def _extract_signature(responses: list[dict[str, Any]]) -> str | None:
        for response in responses:
            result = response.get("result") if isinstance(response, dict) else None
            if not isinstance(result, dict):
                continue
            signatures = result.get("signatures")
            if not isinstance(signatures, list) or not signatures:
                continue

            active = int(result.get("activeSignature") or 0)
            sig = signatures[active] if 0 <= active < len(signatures) else signatures[0]
            if not isinstance(sig, dict) or not sig.get("label"):
                continue

            text = str(sig["label"])
            params = sig.get("parameters")
            active_param = result.get("activeParameter")
            if isinstance(params, list) and active_param is not None and 0 <= int(active_param) < len(params):
                param = params[int(active_param)]
                doc = param.get("documentation") if isinstance(param, dict) else None
                if isinstance(doc, dict):
                    doc = doc.get("value") or ""
                if doc:
                    text = text + " -- " + str(doc).replace("\n", " ")
            return text
        return None
