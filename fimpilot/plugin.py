from __future__ import annotations

import logging
import re
from typing import Any

from PySide6.QtCore import QObject, Signal

from fimpilot.ai.completion_orchestrator import CompletionOrchestrator
from fimpilot.ai.context_provider import ContextProvider
from fimpilot.ai.ollama_client import OllamaClient
from fimpilot.ai.provider_base import CompletionTransport, ModelListResult, ProviderResult
from fimpilot.editor_bridge import EditorBridge, KeyBindings, LanguageContextSource, SuggestionRenderer
from fimpilot.health import format_health_report, run_health_check
from fimpilot.settings_schema import (
    CompletionConfig,
    ConfigError,
    FimTokens,
    default_completion_settings,
    merge_user_settings,
    preset_names,
    preset_tokens,
)

logger = logging.getLogger(__name__)

COMMANDS = ("enable", "disable", "toggle", "trigger", "dismiss", "status", "models", "preset", "health")

HELP_TEXT = """fimpilot commands:
  enable          - Enable completions
  disable         - Disable completions
  toggle          - Toggle completions
  trigger         - Trigger completion manually
  dismiss         - Dismiss current suggestion
  status          - Show current status
  models          - List available Ollama models
  preset [name]   - List or apply FIM presets
  health          - Run health check"""


class FimPilot(QObject):
    """Wires an editor, a renderer and a transport into one completion engine."""

    diagnosticMessage = Signal(str)

    def __init__(
        self,
        editor: EditorBridge,
        renderer: SuggestionRenderer,
        transport: CompletionTransport | None = None,
        language_source: LanguageContextSource | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._editor = editor
        self._renderer = renderer
        self._transport = transport or OllamaClient(parent=self)
        self._config = CompletionConfig.from_mapping(default_completion_settings())
        self._is_setup = False
        self.orchestrator = CompletionOrchestrator(
            editor=editor,
            renderer=renderer,
            transport=self._transport,
            context_provider=ContextProvider(editor, language_source),
            config=self._config,
            parent=self,
        )
        self.orchestrator.diagnosticMessage.connect(self.diagnosticMessage.emit)

    def setup(self, opts: Any = None) -> CompletionConfig:
        """Apply user options over the defaults; re-running replaces the config."""
        self._config = CompletionConfig.from_mapping(merge_user_settings(opts))
        self.orchestrator.update_settings(self._config)
        self._renderer.set_highlight(self._config.highlight)
        self._editor.attach_completion(
            self.orchestrator,
            KeyBindings(
                accept=self._config.keymap_accept,
                dismiss=self._config.keymap_dismiss,
                trigger=self._config.keymap_trigger,
            ),
        )
        self._is_setup = True
        logger.debug("Setup complete: endpoint=%s model=%s", self._config.endpoint, self._config.model)
        return self._config

    def is_setup(self) -> bool:
        return self._is_setup

    # --------- editor API ---------
    def trigger(self, manual: bool = True) -> bool:
        if not self._is_setup:
            self.diagnosticMessage.emit("Plugin not setup. Call setup() first.")
            return False
        return self.orchestrator.trigger(manual)

    def accept(self) -> bool:
        return self.orchestrator.accept()

    def dismiss(self) -> None:
        self.orchestrator.dismiss()

    def is_visible(self) -> bool:
        return self.orchestrator.is_visible()

    def get_suggestion(self) -> str | None:
        return self.orchestrator.get_suggestion()

    def enable(self) -> None:
        self.orchestrator.enable()

    def disable(self) -> None:
        self.orchestrator.disable()

    def toggle(self) -> None:
        self.orchestrator.toggle()

    def is_enabled(self) -> bool:
        return self.orchestrator.is_enabled()

    def get_state(self) -> dict[str, Any]:
        return self.orchestrator.get_state()

    # --------- config and server ---------
    def apply_preset(self, preset_name: str) -> CompletionConfig:
        self._config = self._config.with_preset(preset_name)
        self.orchestrator.update_settings(self._config)
        self.diagnosticMessage.emit(f"Applied preset: {self._config.preset}")
        return self._config

    def get_presets(self) -> dict[str, FimTokens]:
        return {name: preset_tokens(name) for name in preset_names()}

    def get_config(self) -> CompletionConfig:
        return self._config

    def list_models(self, *, force_refresh: bool = False) -> ModelListResult:
        return self._transport.list_models(endpoint=self._config.endpoint, force_refresh=force_refresh)

    def health_check(self) -> ProviderResult:
        return self._transport.health_check(endpoint=self._config.endpoint)

    def shutdown(self) -> None:
        self.orchestrator.shutdown()
        self._transport.shutdown()

    # --------- command surface ---------
    def run_command(self, line: str) -> str:
        args = str(line or "").split()
        cmd = args[0] if args else ""

        if cmd == "enable":
            self.enable()
            return "Completions enabled"
        if cmd == "disable":
            self.disable()
            return "Completions disabled"
        if cmd == "toggle":
            self.toggle()
            return "Completions enabled" if self.is_enabled() else "Completions disabled"
        if cmd == "trigger":
            return "Completion triggered" if self.trigger() else "Completion not triggered"
        if cmd == "dismiss":
            self.dismiss()
            return "Suggestion dismissed"
        if cmd == "status":
            state = self.get_state()
            return (
                f"enabled={str(state['enabled']).lower()} status={state['status']} "
                f"model={self._config.model}"
            )
        if cmd == "models":
            result = self.list_models()
            if not result.ok:
                return result.status_text
            if not result.models:
                return "No models found."
            return "Available models:\n" + "\n".join(result.models)
        if cmd == "preset":
            if len(args) < 2:
                return "Available presets: " + ", ".join(preset_names())
            try:
                self.apply_preset(args[1])
            except ConfigError as exc:
                return str(exc)
            return f"Applied preset: {args[1]}"
        if cmd == "health":
            items = run_health_check(self._config, self._transport, self._is_setup)
            return format_health_report(items)
        return HELP_TEXT

    def complete_command(self, arglead: str, cmdline: str) -> list[str]:
        """Candidates for the word being typed; ``cmdline`` excludes the command name."""
        args = re.split(r"\s+", str(cmdline or "").lstrip())
        lead = str(arglead or "")
        if len(args) == 1:
            return [cmd for cmd in COMMANDS if cmd.startswith(lead)]
        if len(args) == 2 and args[0] == "preset":
            return [name for name in preset_names() if name.startswith(lead)]
        return []
