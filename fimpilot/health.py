"""Setup diagnostics: configuration summary and model server checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

import PySide6
from PySide6.QtCore import qVersion

from fimpilot.ai.provider_base import CompletionTransport
from fimpilot.settings_schema import CompletionConfig

HealthLevel = Literal["ok", "warn", "error", "info"]

_LEVEL_LABELS = {"ok": "OK", "warn": "WARNING", "error": "ERROR", "info": "INFO"}


@dataclass(slots=True)
class HealthItem:
    level: HealthLevel
    message: str
    advice: list[str] = field(default_factory=list)


def _model_available(model: str, models: list[str]) -> bool:
    # "qwen2.5-coder" matches "qwen2.5-coder:1.5b"
    return any(name == model or name.startswith(model) for name in models)


def run_health_check(
    config: CompletionConfig,
    transport: CompletionTransport,
    is_setup: bool,
    *,
    timeout_s: float = 5.0,
) -> list[HealthItem]:
    items: list[HealthItem] = [
        HealthItem("ok", f"PySide6 {PySide6.__version__} (Qt {qVersion()}) is available"),
    ]

    if is_setup:
        items.append(HealthItem("ok", "Plugin is setup"))
    else:
        items.append(HealthItem("warn", "Plugin is not setup", ["Call FimPilot.setup() before editing"]))

    items.append(HealthItem("info", f"Endpoint: {config.endpoint}"))
    items.append(HealthItem("info", f"Model: {config.model}"))
    items.append(HealthItem("info", f"Auto-trigger: {str(config.auto_trigger).lower()}"))
    items.append(HealthItem("info", f"Debounce: {config.debounce_ms}ms"))

    health = transport.health_check(endpoint=config.endpoint, timeout_s=timeout_s)
    if not health.ok:
        items.append(
            HealthItem(
                "error",
                f"Cannot connect to Ollama: {health.status_text or 'unknown error'}",
                ["Check if Ollama is running", "Try: ollama serve", f"Check endpoint: {config.endpoint}"],
            )
        )
    else:
        items.append(HealthItem("ok", f"Ollama is accessible at {config.endpoint}"))
        listing = transport.list_models(endpoint=config.endpoint, timeout_s=timeout_s)
        models = list(listing.models) if listing.ok else []
        if models:
            items.append(HealthItem("ok", f"Found {len(models)} models"))
            if _model_available(config.model, models):
                items.append(HealthItem("ok", f"Configured model '{config.model}' is available"))
            else:
                items.append(
                    HealthItem(
                        "warn",
                        f"Configured model '{config.model}' not found",
                        [f"Available models: {', '.join(models)}", f"Run: ollama pull {config.model}"],
                    )
                )
        else:
            items.append(
                HealthItem(
                    "warn",
                    "No models found or failed to list models",
                    ["Pull a model: ollama pull qwen2.5-coder:1.5b"],
                )
            )

    items.append(HealthItem("info", "FIM tokens configured:"))
    items.append(HealthItem("info", f"  Prefix: {config.fim_prefix}"))
    items.append(HealthItem("info", f"  Suffix: {config.fim_suffix}"))
    items.append(HealthItem("info", f"  Middle: {config.fim_middle}"))

    for label, binding in (
        ("Accept", config.keymap_accept),
        ("Dismiss", config.keymap_dismiss),
        ("Trigger", config.keymap_trigger),
    ):
        if binding:
            items.append(HealthItem("info", f"{label} keymap: {binding}"))
    return items


def format_health_report(items: list[HealthItem]) -> str:
    lines = ["fimpilot health"]
    for item in items:
        lines.append(f"- {_LEVEL_LABELS.get(item.level, item.level.upper())} {item.message}")
        for advice in item.advice:
            lines.append(f"    - {advice}")
    return "\n".join(lines)
