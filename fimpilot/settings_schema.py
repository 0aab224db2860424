from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, replace
from typing import Any, TypedDict

from fimpilot.settings_store import deep_merge_defaults


class ConfigError(ValueError):
    """Raised when setup receives options that cannot be applied."""


class FimTokens(TypedDict):
    prefix: str
    suffix: str
    middle: str


class LanguageContextSettings(TypedDict, total=False):
    enabled: bool
    diagnostics: bool
    hover: bool
    signature_help: bool
    timeout_ms: int
    cache_ttl_ms: int


class ContextSettings(TypedDict, total=False):
    max_prefix_lines: int
    max_suffix_lines: int
    max_line_length: int
    lsp: LanguageContextSettings


class GenerationSettings(TypedDict, total=False):
    max_tokens: int
    temperature: float
    stop: list[str]


class KeymapSettings(TypedDict, total=False):
    accept: str
    dismiss: str
    trigger: str


class FiletypeSettings(TypedDict, total=False):
    enabled: list[str]
    disabled: list[str]


class CompletionSettings(TypedDict, total=False):
    enabled: bool
    endpoint: str
    model: str
    preset: str
    fim: FimTokens
    auto_trigger: bool
    debounce_ms: int
    request_timeout_ms: int
    context: ContextSettings
    generation: GenerationSettings
    keymaps: KeymapSettings
    highlight: str
    filetypes: FiletypeSettings


# FIM token triples for popular code models.
FIM_PRESETS: dict[str, FimTokens] = {
    "codellama": {"prefix": "<PRE>", "suffix": "<SUF>", "middle": "<MID>"},
    "deepseek": {"prefix": "<｜fim▁begin｜>", "suffix": "<｜fim▁hole｜>", "middle": "<｜fim▁end｜>"},
    "starcoder": {"prefix": "<fim_prefix>", "suffix": "<fim_suffix>", "middle": "<fim_middle>"},
    "starcoder2": {"prefix": "<fim_prefix>", "suffix": "<fim_suffix>", "middle": "<fim_middle>"},
    "qwen": {"prefix": "<|fim_prefix|>", "suffix": "<|fim_suffix|>", "middle": "<|fim_middle|>"},
    "qwen25coder": {"prefix": "<|fim_prefix|>", "suffix": "<|fim_suffix|>", "middle": "<|fim_middle|>"},
    "codegemma": {"prefix": "<|fim_prefix|>", "suffix": "<|fim_suffix|>", "middle": "<|fim_middle|>"},
    "codestral": {"prefix": "[PREFIX]", "suffix": "[SUFFIX]", "middle": "[MIDDLE]"},
}


def default_completion_settings() -> CompletionSettings:
    return {
        "enabled": True,
        "endpoint": "http://localhost:11434",
        "model": "qwen2.5-coder:1.5b",
        "preset": "",
        "fim": {
            "prefix": "<|fim_prefix|>",
            "suffix": "<|fim_suffix|>",
            "middle": "<|fim_middle|>",
        },
        "auto_trigger": True,
        "debounce_ms": 300,
        "request_timeout_ms": 60000,
        "context": {
            "max_prefix_lines": 50,
            "max_suffix_lines": 20,
            "max_line_length": 500,
            "lsp": {
                "enabled": True,
                "diagnostics": True,
                "hover": True,
                "signature_help": True,
                "timeout_ms": 100,
                "cache_ttl_ms": 500,
            },
        },
        "generation": {
            "max_tokens": 128,
            "temperature": 0.2,
            "stop": ["\n\n", "<|endoftext|>", "<|file_sep|>"],
        },
        "keymaps": {
            "accept": "Tab",
            "dismiss": "Ctrl+]",
            "trigger": "Ctrl+Space",
        },
        "highlight": "#808080",
        "filetypes": {
            "enabled": ["*"],
            "disabled": [
                "",
                "help",
                "markdown-preview",
                "TelescopePrompt",
                "neo-tree",
                "NvimTree",
                "dashboard",
                "lazy",
                "mason",
                "notify",
                "toggleterm",
                "noice",
            ],
        },
    }


def merge_user_settings(opts: Any) -> CompletionSettings:
    """Overlay user options on the defaults and resolve a named preset.

    Explicit ``fim`` keys win over the preset tokens, so a preset can be used
    as a base and tweaked.
    """
    user = dict(opts) if isinstance(opts, dict) else {}
    merged = deep_merge_defaults(user, default_completion_settings())
    preset_name = str(user.get("preset") or "").strip()
    if preset_name:
        preset = FIM_PRESETS.get(preset_name)
        if preset is None:
            raise ConfigError(f"Unknown preset: {preset_name}")
        explicit_fim = user.get("fim") if isinstance(user.get("fim"), dict) else {}
        merged["fim"] = deep_merge_defaults(dict(explicit_fim), dict(preset))
    return merged


def _clamp_int(value: Any, low: int, high: int, fallback: int) -> int:
    try:
        return max(low, min(high, int(value)))
    except Exception:
        return fallback


def _clamp_float(value: Any, low: float, high: float, fallback: float) -> float:
    try:
        return max(low, min(high, float(value)))
    except Exception:
        return fallback


def _str_list(value: Any, fallback: list[str]) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return list(fallback)
    return [str(item) for item in value if item is not None]


def normalize_completion_settings(raw: Any) -> CompletionSettings:
    defaults = default_completion_settings()
    data = deep_merge_defaults(dict(raw) if isinstance(raw, dict) else {}, defaults)

    fim_raw = data.get("fim") if isinstance(data.get("fim"), dict) else {}
    ctx_raw = data.get("context") if isinstance(data.get("context"), dict) else {}
    lsp_raw = ctx_raw.get("lsp") if isinstance(ctx_raw.get("lsp"), dict) else {}
    gen_raw = data.get("generation") if isinstance(data.get("generation"), dict) else {}
    keys_raw = data.get("keymaps") if isinstance(data.get("keymaps"), dict) else {}
    ft_raw = data.get("filetypes") if isinstance(data.get("filetypes"), dict) else {}

    d_ctx = defaults["context"]
    d_lsp = d_ctx["lsp"]
    d_gen = defaults["generation"]

    endpoint = str(data.get("endpoint") or "").strip().rstrip("/") or defaults["endpoint"]

    return {
        "enabled": bool(data.get("enabled", defaults["enabled"])),
        "endpoint": endpoint,
        "model": str(data.get("model") or "").strip() or defaults["model"],
        "preset": str(data.get("preset") or "").strip(),
        "fim": {
            "prefix": str(fim_raw.get("prefix", defaults["fim"]["prefix"]) or ""),
            "suffix": str(fim_raw.get("suffix", defaults["fim"]["suffix"]) or ""),
            "middle": str(fim_raw.get("middle", defaults["fim"]["middle"]) or ""),
        },
        "auto_trigger": bool(data.get("auto_trigger", defaults["auto_trigger"])),
        "debounce_ms": _clamp_int(data.get("debounce_ms"), 0, 5000, int(defaults["debounce_ms"])),
        "request_timeout_ms": _clamp_int(
            data.get("request_timeout_ms"), 1000, 600000, int(defaults["request_timeout_ms"])
        ),
        "context": {
            "max_prefix_lines": _clamp_int(ctx_raw.get("max_prefix_lines"), 1, 10000, int(d_ctx["max_prefix_lines"])),
            "max_suffix_lines": _clamp_int(ctx_raw.get("max_suffix_lines"), 1, 10000, int(d_ctx["max_suffix_lines"])),
            "max_line_length": _clamp_int(ctx_raw.get("max_line_length"), 1, 100000, int(d_ctx["max_line_length"])),
            "lsp": {
                "enabled": bool(lsp_raw.get("enabled", d_lsp["enabled"])),
                "diagnostics": bool(lsp_raw.get("diagnostics", d_lsp["diagnostics"])),
                "hover": bool(lsp_raw.get("hover", d_lsp["hover"])),
                "signature_help": bool(lsp_raw.get("signature_help", d_lsp["signature_help"])),
                "timeout_ms": _clamp_int(lsp_raw.get("timeout_ms"), 1, 10000, int(d_lsp["timeout_ms"])),
                "cache_ttl_ms": _clamp_int(lsp_raw.get("cache_ttl_ms"), 0, 600000, int(d_lsp["cache_ttl_ms"])),
            },
        },
        "generation": {
            "max_tokens": _clamp_int(gen_raw.get("max_tokens"), 1, 8192, int(d_gen["max_tokens"])),
            "temperature": _clamp_float(gen_raw.get("temperature"), 0.0, 2.0, float(d_gen["temperature"])),
            "stop": _str_list(gen_raw.get("stop"), d_gen["stop"]),
        },
        "keymaps": {
            "accept": str(keys_raw.get("accept") or ""),
            "dismiss": str(keys_raw.get("dismiss") or ""),
            "trigger": str(keys_raw.get("trigger") or ""),
        },
        "highlight": str(data.get("highlight") or "").strip() or defaults["highlight"],
        "filetypes": {
            "enabled": _str_list(ft_raw.get("enabled"), defaults["filetypes"]["enabled"]),
            "disabled": _str_list(ft_raw.get("disabled"), defaults["filetypes"]["disabled"]),
        },
    }


@dataclass(frozen=True, slots=True)
class CompletionConfig:
    enabled: bool
    endpoint: str
    model: str
    preset: str
    fim_prefix: str
    fim_suffix: str
    fim_middle: str
    auto_trigger: bool
    debounce_ms: int
    request_timeout_ms: int
    max_prefix_lines: int
    max_suffix_lines: int
    max_line_length: int
    lsp_enabled: bool
    lsp_diagnostics: bool
    lsp_hover: bool
    lsp_signature_help: bool
    lsp_timeout_ms: int
    lsp_cache_ttl_ms: int
    max_tokens: int
    temperature: float
    stop: tuple[str, ...]
    keymap_accept: str
    keymap_dismiss: str
    keymap_trigger: str
    highlight: str
    enabled_filetypes: tuple[str, ...]
    disabled_filetypes: tuple[str, ...]

    @classmethod
    def from_mapping(cls, data: Any) -> "CompletionConfig":
        n = normalize_completion_settings(data)
        ctx = n["context"]
        lsp = ctx["lsp"]
        gen = n["generation"]
        return cls(
            enabled=bool(n["enabled"]),
            endpoint=str(n["endpoint"]),
            model=str(n["model"]),
            preset=str(n["preset"]),
            fim_prefix=n["fim"]["prefix"],
            fim_suffix=n["fim"]["suffix"],
            fim_middle=n["fim"]["middle"],
            auto_trigger=bool(n["auto_trigger"]),
            debounce_ms=int(n["debounce_ms"]),
            request_timeout_ms=int(n["request_timeout_ms"]),
            max_prefix_lines=int(ctx["max_prefix_lines"]),
            max_suffix_lines=int(ctx["max_suffix_lines"]),
            max_line_length=int(ctx["max_line_length"]),
            lsp_enabled=bool(lsp["enabled"]),
            lsp_diagnostics=bool(lsp["diagnostics"]),
            lsp_hover=bool(lsp["hover"]),
            lsp_signature_help=bool(lsp["signature_help"]),
            lsp_timeout_ms=int(lsp["timeout_ms"]),
            lsp_cache_ttl_ms=int(lsp["cache_ttl_ms"]),
            max_tokens=int(gen["max_tokens"]),
            temperature=float(gen["temperature"]),
            stop=tuple(gen["stop"]),
            keymap_accept=n["keymaps"]["accept"],
            keymap_dismiss=n["keymaps"]["dismiss"],
            keymap_trigger=n["keymaps"]["trigger"],
            highlight=str(n["highlight"]),
            enabled_filetypes=tuple(n["filetypes"]["enabled"]),
            disabled_filetypes=tuple(n["filetypes"]["disabled"]),
        )

    @property
    def fim(self) -> FimTokens:
        return {"prefix": self.fim_prefix, "suffix": self.fim_suffix, "middle": self.fim_middle}

    def is_filetype_enabled(self, filetype: str) -> bool:
        value = str(filetype or "")
        if value in self.disabled_filetypes:
            return False
        if "*" in self.enabled_filetypes:
            return True
        return value in self.enabled_filetypes

    def with_preset(self, preset_name: str) -> "CompletionConfig":
        preset = FIM_PRESETS.get(str(preset_name or "").strip())
        if preset is None:
            raise ConfigError(f"Unknown preset: {preset_name}")
        return replace(
            self,
            preset=str(preset_name).strip(),
            fim_prefix=preset["prefix"],
            fim_suffix=preset["suffix"],
            fim_middle=preset["middle"],
        )


def preset_names() -> list[str]:
    return sorted(FIM_PRESETS)


def preset_tokens(preset_name: str) -> FimTokens | None:
    preset = FIM_PRESETS.get(str(preset_name or "").strip())
    return deepcopy(preset) if preset is not None else None
