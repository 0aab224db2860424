"""Fill-in-the-middle prompt assembly."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fimpilot.settings_schema import FimTokens

if TYPE_CHECKING:
    from fimpilot.ai.context_provider import ContextSnapshot

_HASH = ("# ", "")
_SLASH = ("// ", "")
_DASH = ("-- ", "")
_SEMI = (";; ", "")
_PERCENT = ("% ", "")

COMMENT_MARKERS: dict[str, tuple[str, str]] = {
    "lua": _DASH,
    "python": _HASH,
    "javascript": _SLASH,
    "typescript": _SLASH,
    "javascriptreact": _SLASH,
    "typescriptreact": _SLASH,
    "c": _SLASH,
    "cpp": _SLASH,
    "rust": _SLASH,
    "go": _SLASH,
    "java": _SLASH,
    "kotlin": _SLASH,
    "swift": _SLASH,
    "ruby": _HASH,
    "perl": _HASH,
    "bash": _HASH,
    "sh": _HASH,
    "zsh": _HASH,
    "fish": _HASH,
    "vim": ('" ', ""),
    "html": ("<!-- ", " -->"),
    "xml": ("<!-- ", " -->"),
    "css": ("/* ", " */"),
    "scss": _SLASH,
    "less": _SLASH,
    "sql": _DASH,
    "haskell": _DASH,
    "elm": _DASH,
    "ocaml": ("(* ", " *)"),
    "fsharp": _SLASH,
    "clojure": _SEMI,
    "lisp": _SEMI,
    "scheme": _SEMI,
    "erlang": _PERCENT,
    "elixir": _HASH,
    "r": _HASH,
    "matlab": _PERCENT,
    "julia": _HASH,
    "php": _SLASH,
    "yaml": _HASH,
    "toml": _HASH,
    "ini": ("; ", ""),
    "dockerfile": _HASH,
    "make": _HASH,
    "cmake": _HASH,
    "zig": _SLASH,
    "nim": _HASH,
    "v": _SLASH,
    "d": _SLASH,
    "crystal": _HASH,
    "nix": _HASH,
}


def comment_markers(filetype: str, fallback_commentstring: str = "") -> tuple[str, str]:
    """Return ``(open, close)`` line-comment markers for a filetype.

    Unknown filetypes use the editor's ``commentstring`` (``"# %s"`` form) when
    it has a ``%s`` placeholder, otherwise ``// ``.
    """
    markers = COMMENT_MARKERS.get(str(filetype or ""))
    if markers is not None:
        return markers

    template = str(fallback_commentstring or "")
    if "%s" in template:
        open_mark, close_mark = template.split("%s", 1)
        if open_mark and not open_mark.endswith(" "):
            open_mark += " "
        if close_mark and not close_mark.startswith(" "):
            close_mark = " " + close_mark
        return open_mark, close_mark

    return _SLASH


def build_header(snapshot: ContextSnapshot, fallback_commentstring: str = "") -> str:
    parts: list[str] = []
    filename = snapshot.metadata.filename
    if filename:
        open_mark, close_mark = comment_markers(snapshot.metadata.filetype, fallback_commentstring)
        parts.append(f"{open_mark}File: {filename}{close_mark}\n")
    if snapshot.language_block:
        parts.append(snapshot.language_block + "\n")
    return "".join(parts)


def build_prompt(snapshot: ContextSnapshot, fim: FimTokens, fallback_commentstring: str = "") -> str:
    """``<header><PRE>prefix<SUF>suffix<MID>`` where the header may be empty."""
    return "".join(
        (
            build_header(snapshot, fallback_commentstring),
            fim["prefix"],
            snapshot.prefix,
            fim["suffix"],
            snapshot.suffix,
            fim["middle"],
        )
    )


def build_simple_prompt(snapshot: ContextSnapshot, fallback_commentstring: str = "") -> str:
    return build_header(snapshot, fallback_commentstring) + snapshot.prefix
