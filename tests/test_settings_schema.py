from __future__ import annotations

import dataclasses

import pytest

from fimpilot.settings_schema import (
    FIM_PRESETS,
    CompletionConfig,
    ConfigError,
    default_completion_settings,
    merge_user_settings,
    normalize_completion_settings,
    preset_names,
    preset_tokens,
)


class TestDefaults:
    def test_default_config_values(self):
        cfg = CompletionConfig.from_mapping(default_completion_settings())
        assert cfg.enabled is True
        assert cfg.endpoint == "http://localhost:11434"
        assert cfg.model == "qwen2.5-coder:1.5b"
        assert cfg.fim == {"prefix": "<|fim_prefix|>", "suffix": "<|fim_suffix|>", "middle": "<|fim_middle|>"}
        assert cfg.debounce_ms == 300
        assert cfg.request_timeout_ms == 60000
        assert (cfg.max_prefix_lines, cfg.max_suffix_lines, cfg.max_line_length) == (50, 20, 500)
        assert cfg.lsp_timeout_ms == 100
        assert cfg.lsp_cache_ttl_ms == 500
        assert cfg.max_tokens == 128
        assert cfg.temperature == pytest.approx(0.2)
        assert cfg.stop == ("\n\n", "<|endoftext|>", "<|file_sep|>")
        assert (cfg.keymap_accept, cfg.keymap_dismiss, cfg.keymap_trigger) == ("Tab", "Ctrl+]", "Ctrl+Space")
        assert cfg.enabled_filetypes == ("*",)

    def test_config_is_frozen(self):
        cfg = CompletionConfig.from_mapping({})
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.model = "other"  # type: ignore[misc]

    def test_defaults_are_fresh_copies(self):
        first = default_completion_settings()
        first["generation"]["stop"].append("x")
        assert "x" not in default_completion_settings()["generation"]["stop"]


class TestNormalization:
    def test_out_of_range_values_are_clamped(self):
        data = normalize_completion_settings(
            {
                "debounce_ms": 99999,
                "request_timeout_ms": 5,
                "context": {"max_prefix_lines": 0, "lsp": {"timeout_ms": -3}},
                "generation": {"temperature": 7.5, "max_tokens": "12"},
            }
        )
        assert data["debounce_ms"] == 5000
        assert data["request_timeout_ms"] == 1000
        assert data["context"]["max_prefix_lines"] == 1
        assert data["context"]["lsp"]["timeout_ms"] == 1
        assert data["generation"]["temperature"] == 2.0
        assert data["generation"]["max_tokens"] == 12

    def test_garbage_falls_back_to_defaults(self):
        data = normalize_completion_settings(
            {"debounce_ms": "soon", "endpoint": "   ", "model": None, "generation": {"stop": "nope"}}
        )
        assert data["debounce_ms"] == 300
        assert data["endpoint"] == "http://localhost:11434"
        assert data["model"] == "qwen2.5-coder:1.5b"
        assert data["generation"]["stop"] == ["\n\n", "<|endoftext|>", "<|file_sep|>"]

    def test_non_mapping_input(self):
        assert normalize_completion_settings(None) == normalize_completion_settings({})

    def test_endpoint_trailing_slash_removed(self):
        cfg = CompletionConfig.from_mapping({"endpoint": "http://gpu-box:11434/"})
        assert cfg.endpoint == "http://gpu-box:11434"

    def test_empty_keymap_disables_binding(self):
        cfg = CompletionConfig.from_mapping({"keymaps": {"dismiss": ""}})
        assert cfg.keymap_dismiss == ""
        assert cfg.keymap_accept == "Tab"


class TestFiletypes:
    def test_disabled_list_wins_over_wildcard(self):
        cfg = CompletionConfig.from_mapping({})
        assert cfg.is_filetype_enabled("python") is True
        assert cfg.is_filetype_enabled("help") is False
        assert cfg.is_filetype_enabled("") is False

    def test_explicit_enabled_entries(self):
        cfg = CompletionConfig.from_mapping({"filetypes": {"enabled": ["rust", "go"], "disabled": ["go"]}})
        assert cfg.is_filetype_enabled("rust") is True
        assert cfg.is_filetype_enabled("go") is False
        assert cfg.is_filetype_enabled("python") is False


class TestPresets:
    def test_preset_names_sorted(self):
        assert preset_names() == sorted(FIM_PRESETS)
        assert "codellama" in preset_names()

    def test_preset_tokens_are_copies(self):
        tokens = preset_tokens("codellama")
        assert tokens == {"prefix": "<PRE>", "suffix": "<SUF>", "middle": "<MID>"}
        tokens["prefix"] = "changed"
        assert FIM_PRESETS["codellama"]["prefix"] == "<PRE>"
        assert preset_tokens("unknown") is None

    def test_setup_preset_overlays_fim(self):
        merged = merge_user_settings({"preset": "starcoder"})
        assert merged["fim"] == FIM_PRESETS["starcoder"]

    def test_explicit_fim_key_beats_preset(self):
        merged = merge_user_settings({"preset": "codellama", "fim": {"middle": "<FILL>"}})
        assert merged["fim"] == {"prefix": "<PRE>", "suffix": "<SUF>", "middle": "<FILL>"}

    def test_unknown_preset_at_setup_raises(self):
        with pytest.raises(ConfigError):
            merge_user_settings({"preset": "gpt-17"})

    def test_with_preset_returns_new_config(self):
        cfg = CompletionConfig.from_mapping({})
        updated = cfg.with_preset("deepseek")
        assert updated.preset == "deepseek"
        assert updated.fim == FIM_PRESETS["deepseek"]
        assert cfg.fim_prefix == "<|fim_prefix|>"
        with pytest.raises(ConfigError):
            cfg.with_preset("nope")
