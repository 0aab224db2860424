from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from PySide6.QtCore import QCoreApplication
from PySide6.QtGui import QAction, QKeySequence
from PySide6.QtWidgets import QApplication, QMainWindow

from fimpilot.ai.ollama_client import OllamaClient
from fimpilot.health import format_health_report, run_health_check
from fimpilot.plugin import FimPilot
from fimpilot.settings_schema import CompletionConfig, ConfigError, default_completion_settings, merge_user_settings
from fimpilot.settings_store import JsonSettingsStore, SettingsStoreError, default_settings_path
from fimpilot.ui.ghost_text_edit import GhostTextEdit

APP_NAME = "fimpilot"
DEBUG_ENV = "FIMPILOT_DEBUG"

logger = logging.getLogger("fimpilot")


def _configure_logging(debug: bool) -> None:
    enabled = debug or os.environ.get(DEBUG_ENV, "").strip() in {"1", "true", "yes"}
    logging.basicConfig(
        level=logging.DEBUG if enabled else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="Inline FIM code completion backed by Ollama.")
    parser.add_argument("--config", type=Path, default=None, help="settings JSON file")
    parser.add_argument("--debug", action="store_true", help=f"verbose logging (or set {DEBUG_ENV}=1)")
    sub = parser.add_subparsers(dest="command")

    edit = sub.add_parser("edit", help="open an editor window with inline completions")
    edit.add_argument("file", nargs="?", default=None)

    sub.add_parser("health", help="check configuration and the model server")
    sub.add_parser("models", help="list models available on the server")

    config = sub.add_parser("config", help="show or change a setting")
    config.add_argument("key", nargs="?", default=None)
    config.add_argument("value", nargs="?", default=None)
    return parser


def _load_store(path: Path | None) -> JsonSettingsStore:
    store = JsonSettingsStore(path or default_settings_path(), default_completion_settings())
    store.load()
    if store.last_error:
        logger.warning("%s", store.last_error)
    return store


def _parse_value(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def _cmd_config(store: JsonSettingsStore, key: str | None, value: str | None) -> int:
    if key is None:
        print(json.dumps(store.effective(), indent=2, sort_keys=True, ensure_ascii=False))
        return 0
    if value is None:
        print(json.dumps(store.get(key), indent=2, ensure_ascii=False))
        return 0

    store.set(key, _parse_value(value))
    try:
        merge_user_settings(store.data)
    except ConfigError as exc:
        print(f"{APP_NAME}: {exc}", file=sys.stderr)
        return 2
    try:
        store.save()
    except SettingsStoreError as exc:
        print(f"{APP_NAME}: {exc}", file=sys.stderr)
        return 1
    print(f"{key} = {json.dumps(store.get(key), ensure_ascii=False)}")
    return 0


def _cmd_health(store: JsonSettingsStore) -> int:
    _app = QCoreApplication.instance() or QCoreApplication([sys.argv[0]])
    client = OllamaClient()
    try:
        config = CompletionConfig.from_mapping(merge_user_settings(store.data))
        items = run_health_check(config, client, True)
    except ConfigError as exc:
        print(f"{APP_NAME}: {exc}", file=sys.stderr)
        return 2
    finally:
        client.shutdown()
    print(format_health_report(items))
    return 1 if any(item.level == "error" for item in items) else 0


def _cmd_models(store: JsonSettingsStore) -> int:
    _app = QCoreApplication.instance() or QCoreApplication([sys.argv[0]])
    client = OllamaClient()
    try:
        config = CompletionConfig.from_mapping(merge_user_settings(store.data))
        result = client.list_models(endpoint=config.endpoint)
    except ConfigError as exc:
        print(f"{APP_NAME}: {exc}", file=sys.stderr)
        return 2
    finally:
        client.shutdown()
    if not result.ok:
        print(f"{APP_NAME}: {result.status_text}", file=sys.stderr)
        return 1
    for name in result.models:
        print(name)
    return 0


class EditorWindow(QMainWindow):
    def __init__(self, store: JsonSettingsStore, file_path: str | None = None) -> None:
        super().__init__()
        self.editor = GhostTextEdit(self)
        self.setCentralWidget(self.editor)
        self.resize(960, 640)

        self.pilot = FimPilot(self.editor.bridge, self.editor.renderer, language_source=self.editor.bridge, parent=self)
        self.pilot.diagnosticMessage.connect(lambda text: self.statusBar().showMessage(text, 5000))
        self.pilot.setup(store.data)

        if file_path:
            self.editor.load_file(file_path)
        self._update_title()

        save_action = QAction("Save", self)
        save_action.setShortcut(QKeySequence.StandardKey.Save)
        save_action.triggered.connect(self._save)
        self.addAction(save_action)
        self.editor.document().modificationChanged.connect(lambda _changed: self._update_title())

    def _update_title(self) -> None:
        name = Path(self.editor.file_path()).name if self.editor.file_path() else "untitled"
        dirty = "*" if self.editor.document().isModified() else ""
        self.setWindowTitle(f"{name}{dirty} - {APP_NAME}")

    def _save(self) -> None:
        if not self.editor.file_path():
            self.statusBar().showMessage("No file to save to; start with: fimpilot edit FILE", 5000)
            return
        try:
            target = self.editor.save_file()
        except OSError as exc:
            self.statusBar().showMessage(f"Save failed: {exc}", 8000)
            return
        self.statusBar().showMessage(f"Saved {target}", 3000)
        self._update_title()

    def closeEvent(self, event):
        self.pilot.shutdown()
        super().closeEvent(event)


def _cmd_edit(store: JsonSettingsStore, file_path: str | None) -> int:
    app = QApplication([sys.argv[0]])
    app.setApplicationName(APP_NAME)
    try:
        window = EditorWindow(store, file_path)
    except ConfigError as exc:
        print(f"{APP_NAME}: {exc}", file=sys.stderr)
        return 2
    window.show()
    return app.exec()


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    _configure_logging(args.debug)
    store = _load_store(args.config)

    if args.command == "health":
        return _cmd_health(store)
    if args.command == "models":
        return _cmd_models(store)
    if args.command == "config":
        return _cmd_config(store, args.key, args.value)
    return _cmd_edit(store, getattr(args, "file", None))


if __name__ == "__main__":
    sys.exit(main())
