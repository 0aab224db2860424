from __future__ import annotations

from fimpilot.ai.context_provider import ContextProvider, ContextSnapshot, FileMetadata
from fimpilot.ai.prompt_builder import build_prompt, build_simple_prompt, comment_markers
from fimpilot.settings_schema import CompletionConfig

from conftest import FakeEditor

PRE_SUF_MID = {"prefix": "<PRE>", "suffix": "<SUF>", "middle": "<MID>"}


def _snapshot(prefix: str, suffix: str, *, filename: str = "", filetype: str = "", block: str = "") -> ContextSnapshot:
    return ContextSnapshot(
        prefix=prefix,
        suffix=suffix,
        metadata=FileMetadata(filepath=filename, filename=filename, filetype=filetype),
        language_block=block,
    )


class TestBuildPrompt:
    def test_bare_prompt_without_metadata(self):
        prompt = build_prompt(_snapshot("def add(a, b):\n    ", ""), PRE_SUF_MID)
        assert prompt == "<PRE>def add(a, b):\n    <SUF><MID>"

    def test_file_header_uses_language_comment(self):
        prompt = build_prompt(_snapshot("x = ", "\n", filename="main.py", filetype="python"), PRE_SUF_MID)
        assert prompt == "# File: main.py\n<PRE>x = <SUF>\n<MID>"

    def test_language_block_follows_header(self):
        snapshot = _snapshot("a", "b", filename="lib.rs", filetype="rust", block="// Type: fn foo() -> u8")
        prompt = build_prompt(snapshot, PRE_SUF_MID)
        assert prompt == "// File: lib.rs\n// Type: fn foo() -> u8\n<PRE>a<SUF>b<MID>"

    def test_stripping_tokens_and_header_restores_text(self):
        prefix = "class A:\n    def f(self):\n        return "
        suffix = "\n\nprint(A().f())"
        snapshot = _snapshot(prefix, suffix, filename="a.py", filetype="python", block="# Diagnostic: [Error] x")
        prompt = build_prompt(snapshot, PRE_SUF_MID)

        body = prompt.split("<PRE>", 1)[1]
        before_suffix, after = body.split("<SUF>", 1)
        assert after.endswith("<MID>")
        assert before_suffix + after[: -len("<MID>")] == prefix + suffix

    def test_simple_prompt_has_no_fim_tokens(self):
        prompt = build_simple_prompt(_snapshot("local x = ", "ignored", filename="init.lua", filetype="lua"))
        assert prompt == "-- File: init.lua\nlocal x = "


class TestCommentMarkers:
    def test_table_lookup(self):
        assert comment_markers("python") == ("# ", "")
        assert comment_markers("lua") == ("-- ", "")
        assert comment_markers("html") == ("<!-- ", " -->")

    def test_unknown_language_uses_commentstring(self):
        assert comment_markers("brainfuck", "# %s") == ("# ", "")
        assert comment_markers("weird", "/*%s*/") == ("/* ", " */")

    def test_unknown_language_without_commentstring(self):
        assert comment_markers("brainfuck") == ("// ", "")
        assert comment_markers("brainfuck", "no placeholder") == ("// ", "")


class TestProviderPrompt:
    def test_end_to_end_from_buffer(self):
        editor = FakeEditor(["def add(a, b):", "    "], cursor=(2, 4))
        editor.name = ""
        cfg = CompletionConfig.from_mapping({"fim": PRE_SUF_MID})

        prompt, snapshot = ContextProvider(editor).get_prompt(editor.buffer, editor.cursor(), cfg)

        assert snapshot.prefix == "def add(a, b):\n    "
        assert snapshot.suffix == ""
        assert prompt == "<PRE>def add(a, b):\n    <SUF><MID>"

    def test_empty_fim_tokens_use_simple_prompt(self):
        editor = FakeEditor(["x = 1", "y = "], cursor=(2, 4))
        cfg = CompletionConfig.from_mapping({"fim": {"prefix": "", "suffix": "", "middle": ""}})

        prompt, _snapshot = ContextProvider(editor).get_prompt(editor.buffer, editor.cursor(), cfg)

        assert prompt == "# File: demo.py\nx = 1\ny = "
