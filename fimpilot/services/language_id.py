"""Filetype resolution helpers for editor buffers.

Pure utility functions that map filenames/extensions to the filetype tag used
for comment syntax and the enabled/disabled filetype lists.
"""

from __future__ import annotations

from pathlib import Path

_EXTENSION_FILETYPES: dict[str, str] = {
    ".py": "python",
    ".pyw": "python",
    ".pyi": "python",
    ".lua": "lua",
    ".rs": "rust",
    ".go": "go",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cxx": "cpp",
    ".cc": "cpp",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascriptreact",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".java": "java",
    ".kt": "kotlin",
    ".swift": "swift",
    ".rb": "ruby",
    ".pl": "perl",
    ".php": "php",
    ".sh": "sh",
    ".bash": "bash",
    ".zsh": "zsh",
    ".fish": "fish",
    ".vim": "vim",
    ".html": "html",
    ".htm": "html",
    ".xml": "xml",
    ".svg": "xml",
    ".css": "css",
    ".scss": "scss",
    ".less": "less",
    ".sql": "sql",
    ".hs": "haskell",
    ".elm": "elm",
    ".ml": "ocaml",
    ".fs": "fsharp",
    ".clj": "clojure",
    ".lisp": "lisp",
    ".scm": "scheme",
    ".erl": "erlang",
    ".ex": "elixir",
    ".exs": "elixir",
    ".r": "r",
    ".m": "matlab",
    ".jl": "julia",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".ini": "ini",
    ".cmake": "cmake",
    ".zig": "zig",
    ".nim": "nim",
    ".nix": "nix",
    ".cr": "crystal",
    ".d": "d",
    ".json": "json",
    ".md": "markdown",
}

_FILENAME_FILETYPES: dict[str, str] = {
    "makefile": "make",
    "dockerfile": "dockerfile",
    "cmakelists.txt": "cmake",
    ".bashrc": "bash",
    ".zshrc": "zsh",
}


def filetype_for_path(file_path: str | None, *, default: str = "") -> str:
    """Return the filetype tag for a file path, ``default`` when unknown."""
    path_text = str(file_path or "").strip()
    if not path_text:
        return default

    name = Path(path_text).name.lower()
    if name in _FILENAME_FILETYPES:
        return _FILENAME_FILETYPES[name]

    suffix = Path(path_text).suffix.lower()
    return _EXTENSION_FILETYPES.get(suffix, default)
