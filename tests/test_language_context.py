from __future__ import annotations

import pytest

from fimpilot.ai.language_context import LanguageContext, LanguageContextCollector
from fimpilot.editor_bridge import Diagnostic, Position
from fimpilot.settings_schema import CompletionConfig

HOVER = "textDocument/hover"
SIGNATURE = "textDocument/signatureHelp"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def collector(language_source, clock) -> LanguageContextCollector:
    return LanguageContextCollector(language_source, clock_ms=clock)


@pytest.fixture
def cfg() -> CompletionConfig:
    return CompletionConfig.from_mapping({"context": {"lsp": {"cache_ttl_ms": 500}}})


class TestDiagnostics:
    def test_same_line_wins(self, collector, language_source):
        language_source.items = [
            Diagnostic(line=9, message="far"),
            Diagnostic(line=10, message="here", severity=2),
            Diagnostic(line=11, message="near"),
        ]
        found = collector.get_diagnostics(1, Position(10, 0))
        assert [d.message for d in found] == ["here"]

    def test_nearby_window(self, collector, language_source):
        language_source.items = [
            Diagnostic(line=7, message="three above"),
            Diagnostic(line=14, message="four below"),
        ]
        found = collector.get_diagnostics(1, Position(10, 0))
        assert [d.message for d in found] == ["three above"]

    def test_format_dedupes_and_collapses_whitespace(self):
        text = LanguageContextCollector.format_diagnostics(
            [
                Diagnostic(line=1, message="unused\n   variable  'x'", severity=2),
                Diagnostic(line=1, message="unused variable 'x'", severity=1),
                Diagnostic(line=1, message="style", severity=4),
            ]
        )
        assert text == "[Warning] unused variable 'x'\n[Hint] style"

    def test_source_failure_yields_nothing(self, language_source, clock):
        class Broken:
            def diagnostics(self, buffer_id):
                raise RuntimeError("no server")

        assert LanguageContextCollector(Broken(), clock_ms=clock).get_diagnostics(1, Position(1, 0)) == []


class TestHover:
    def test_markup_content_with_fences(self, collector, language_source, cfg):
        language_source.responses[HOVER] = [
            {"result": None},
            {"result": {"contents": {"kind": "markdown", "value": "```python\ndef f(x: int) -> int\n```"}}},
        ]
        assert collector.get_hover(1, Position(3, 4), cfg) == "def f(x: int) -> int"

    def test_bare_fence_and_surrounding_blank_lines(self, collector, language_source, cfg):
        language_source.responses[HOVER] = [
            {"result": {"contents": {"kind": "markdown", "value": "\n```\nx: int\n```\n"}}},
        ]
        assert collector.get_hover(1, Position(3, 4), cfg) == "x: int"

    def test_fence_only_content_is_skipped(self, collector, language_source, cfg):
        language_source.responses[HOVER] = [
            {"result": {"contents": "```python\n```"}},
            {"result": {"contents": "```c++\nint x\n```"}},
        ]
        assert collector.get_hover(1, Position(3, 4), cfg) == "int x"

    def test_marked_string_list(self, collector, language_source, cfg):
        language_source.responses[HOVER] = [
            {"result": {"contents": ["plain", {"language": "python", "value": "int"}]}}
        ]
        assert collector.get_hover(1, Position(3, 4), cfg) == "plain\nint"

    def test_missing_capability(self, collector, language_source, cfg):
        language_source.capabilities = set()
        assert collector.get_hover(1, Position(1, 0), cfg) is None
        assert language_source.request_calls == []

    def test_request_error_fails_soft(self, collector, language_source, cfg):
        language_source.fail = True
        assert collector.get_hover(1, Position(1, 0), cfg) is None

    def test_timeout_fails_soft(self, collector, language_source, cfg):
        language_source.responses[HOVER] = None
        assert collector.get_hover(1, Position(1, 0), cfg) is None


class TestSignature:
    def test_active_parameter_doc_appended(self, collector, language_source, cfg):
        language_source.responses[SIGNATURE] = [
            {
                "result": {
                    "activeSignature": 1,
                    "activeParameter": 0,
                    "signatures": [
                        {"label": "other()"},
                        {
                            "label": "open(path, mode)",
                            "parameters": [{"label": "path", "documentation": {"kind": "plaintext", "value": "file\nto open"}}],
                        },
                    ],
                }
            }
        ]
        assert collector.get_signature(1, Position(2, 5), cfg) == "open(path, mode) -- file to open"

    def test_label_only(self, collector, language_source, cfg):
        language_source.responses[SIGNATURE] = [{"result": {"signatures": [{"label": "len(obj)"}]}}]
        assert collector.get_signature(1, Position(2, 5), cfg) == "len(obj)"


class TestCache:
    def test_hit_within_ttl_skips_request(self, collector, language_source, clock, cfg):
        language_source.responses[HOVER] = [{"result": {"contents": "int"}}]
        pos = Position(4, 2)

        assert collector.get_hover(1, pos, cfg) == "int"
        clock.now += 200
        assert collector.get_hover(1, pos, cfg) == "int"
        assert language_source.request_calls == [HOVER]

    def test_expired_entry_is_refreshed(self, collector, language_source, clock, cfg):
        language_source.responses[HOVER] = [{"result": {"contents": "int"}}]
        pos = Position(4, 2)
        collector.get_hover(1, pos, cfg)

        clock.now += 600
        language_source.responses[HOVER] = [{"result": {"contents": "str"}}]
        assert collector.get_hover(1, pos, cfg) == "str"
        assert language_source.request_calls == [HOVER, HOVER]

    def test_cache_is_per_position_and_clearable(self, collector, language_source, cfg):
        language_source.responses[HOVER] = [{"result": {"contents": "int"}}]
        collector.get_hover(1, Position(4, 2), cfg)
        collector.get_hover(1, Position(4, 3), cfg)
        collector.get_hover(2, Position(4, 2), cfg)
        assert len(language_source.request_calls) == 3

        collector.clear_cache()
        collector.get_hover(1, Position(4, 2), cfg)
        assert len(language_source.request_calls) == 4

    def test_empty_result_is_cached(self, collector, language_source, cfg):
        language_source.responses[HOVER] = [{"result": None}]
        collector.get_hover(1, Position(1, 1), cfg)
        collector.get_hover(1, Position(1, 1), cfg)
        assert language_source.request_calls == [HOVER]


class TestFormatContext:
    def test_items_are_truncated_and_commented(self, collector):
        context = LanguageContext(
            diagnostics="[Error] first\n[Warning] second",
            hover="x" * 300 + "\nsecond line",
            signature="f(a)",
        )
        block = collector.format_context(context, ("-- ", ""))
        lines = block.split("\n")
        assert lines[0] == "-- Type: " + "x" * 200
        assert lines[1] == "-- Signature: f(a)"
        assert lines[2] == "-- Diagnostic: [Error] first"

    def test_empty_context(self, collector):
        assert collector.format_context(LanguageContext(), ("# ", "")) == ""

    def test_gather_without_source(self, cfg):
        assert LanguageContextCollector(None).gather(1, Position(1, 0), cfg) == LanguageContext()
