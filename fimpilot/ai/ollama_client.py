from __future__ import annotations

import concurrent.futures
import json
import logging
import queue
import socket
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any

from PySide6.QtCore import QObject, QTimer

from fimpilot.ai.ndjson import NdjsonStreamParser
from fimpilot.ai.provider_base import (
    ERROR_HTTP,
    ERROR_INVALID_CONFIG,
    ERROR_NETWORK,
    ERROR_PARSE,
    ERROR_SERVER,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
    CompletionTransport,
    GenerateRequest,
    ModelListResult,
    ProviderResult,
    StreamCallback,
    StreamEvent,
)

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 8192


class _StreamFailure(Exception):
    def __init__(self, error_kind: str, message: str) -> None:
        super().__init__(message)
        self.error_kind = error_kind


@dataclass(slots=True)
class _ActiveRequest:
    request_id: int
    cancel_flag: threading.Event
    future: concurrent.futures.Future | None = None
    response: Any = None
    lock: threading.Lock = field(default_factory=threading.Lock)


class OllamaClient(CompletionTransport):
    """Ollama HTTP client streaming ``/api/generate`` from a worker thread.

    Worker threads only touch the event queue; a 16 ms ``QTimer`` pump drains
    it on the GUI thread and invokes the callbacks there.
    """

    _MODEL_CACHE_TTL_S = 180.0

    def __init__(self, parent: QObject | None = None) -> None:
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="fimpilot-http")
        self._events: queue.Queue[tuple[int, StreamCallback | None, StreamEvent | None]] = queue.Queue()
        self._active: _ActiveRequest | None = None
        self._request_counter = 0
        self._model_cache: dict[str, tuple[float, list[str]]] = {}

        self._closed = False
        self._pump = QTimer(parent)
        self._pump.setInterval(16)
        self._pump.timeout.connect(self._drain_events)
        self._pump.start()

    # --------- streaming generation ---------
    def generate(self, request: GenerateRequest, on_event: StreamCallback) -> int:
        self.cancel()

        self._request_counter += 1
        request_id = self._request_counter
        active = _ActiveRequest(request_id=request_id, cancel_flag=threading.Event())
        self._active = active

        endpoint = str(request.endpoint or "").strip().rstrip("/")
        if not endpoint:
            self._events.put((request_id, on_event, StreamEvent(request_id, "error", "Endpoint is missing.", ERROR_INVALID_CONFIG)))
            self._events.put((request_id, None, None))
            return request_id

        logger.debug("Starting request %d to %s/api/generate with model %s", request_id, endpoint, request.model)
        try:
            active.future = self._executor.submit(self._run_stream, active, endpoint, request, on_event)
        except RuntimeError as exc:
            self._events.put((request_id, on_event, StreamEvent(request_id, "error", f"Could not start request: {exc}", ERROR_UNKNOWN)))
            self._events.put((request_id, None, None))
        return request_id

    def cancel(self) -> None:
        active = self._active
        self._active = None
        if active is None:
            return
        active.cancel_flag.set()
        with active.lock:
            response = active.response
            active.response = None
        if response is not None:
            try:
                response.close()
            except Exception:
                pass
        if active.future is not None:
            active.future.cancel()
        logger.debug("Cancelled request %d", active.request_id)

    def is_running(self) -> bool:
        return self._active is not None

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.cancel()
        self._pump.stop()
        self._pump.timeout.disconnect(self._drain_events)
        self._pump.deleteLater()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _run_stream(
        self,
        active: _ActiveRequest,
        endpoint: str,
        request: GenerateRequest,
        on_event: StreamCallback,
    ) -> None:
        request_id = active.request_id

        def emit(kind: str, text: str = "", error_kind: str = "") -> None:
            if not active.cancel_flag.is_set():
                self._events.put((request_id, on_event, StreamEvent(request_id, kind, text, error_kind)))

        try:
            self._stream_tokens(active, endpoint, request, emit)
        except _StreamFailure as exc:
            emit("error", str(exc), exc.error_kind)
        except Exception as exc:
            if not active.cancel_flag.is_set():
                kind, message = self._classify_exception(exc, endpoint)
                emit("error", message, kind)
        finally:
            with active.lock:
                active.response = None
            self._events.put((request_id, None, None))

    def _stream_tokens(self, active: _ActiveRequest, endpoint: str, request: GenerateRequest, emit) -> None:
        timeout_s = max(0.5, float(request.timeout_s))
        deadline = time.monotonic() + timeout_s
        body = json.dumps(request.to_payload(), ensure_ascii=False).encode("utf-8")
        req = urllib.request.Request(
            url=f"{endpoint}/api/generate",
            method="POST",
            data=body,
            headers={"Content-Type": "application/json", "Accept": "application/x-ndjson"},
        )

        parser = NdjsonStreamParser()
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            with active.lock:
                if active.cancel_flag.is_set():
                    return
                active.response = resp

            while not active.cancel_flag.is_set():
                if time.monotonic() > deadline:
                    raise _StreamFailure(ERROR_TIMEOUT, "Request timed out")
                chunk = resp.read1(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                for obj in parser.feed(chunk):
                    error = obj.get("error")
                    if error:
                        raise _StreamFailure(ERROR_SERVER, str(error))
                    text = obj.get("response")
                    if isinstance(text, str) and text:
                        emit("token", text)
                    if obj.get("done"):
                        emit("done")
                        return

        if active.cancel_flag.is_set():
            return
        if parser.pending.strip() or parser.malformed_lines:
            raise _StreamFailure(ERROR_PARSE, "Malformed response stream from model server.")
        raise _StreamFailure(ERROR_PARSE, "Stream ended before the model finished.")

    def _drain_events(self) -> None:
        while True:
            try:
                request_id, callback, event = self._events.get_nowait()
            except queue.Empty:
                return
            if event is None:
                if self._active is not None and self._active.request_id == request_id:
                    self._active = None
                continue
            if callback is None:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Stream callback failed for request %d", request_id)

    # --------- diagnostics ---------
    def health_check(self, *, endpoint: str, timeout_s: float = 5.0) -> ProviderResult:
        norm = str(endpoint or "").strip().rstrip("/")
        if not norm:
            return ProviderResult(ok=False, status_text="Endpoint is missing.", error_kind=ERROR_INVALID_CONFIG)
        result = self._request_json(url=f"{norm}/api/tags", timeout_s=timeout_s)
        if not result["ok"]:
            return ProviderResult(
                ok=False,
                status_text=str(result.get("status_text") or f"Could not connect to Ollama at {norm}"),
                http_status=result.get("http_status"),
                error_kind=str(result.get("error_kind") or ERROR_UNKNOWN),
            )
        return ProviderResult(ok=True, status_text=f"Ollama is accessible at {norm}")

    def list_models(self, *, endpoint: str, timeout_s: float = 5.0, force_refresh: bool = False) -> ModelListResult:
        norm = str(endpoint or "").strip().rstrip("/")
        if not norm:
            return ModelListResult(ok=False, status_text="Endpoint is missing.", error_kind=ERROR_INVALID_CONFIG)

        now = time.time()
        if not force_refresh:
            cached = self._model_cache.get(norm)
            if cached is not None and cached[0] > now:
                return ModelListResult(ok=True, status_text="Models loaded from cache.", models=list(cached[1]))

        result = self._request_json(url=f"{norm}/api/tags", timeout_s=timeout_s)
        if not result["ok"]:
            return ModelListResult(
                ok=False,
                status_text=str(result.get("status_text") or "Failed to list models"),
                http_status=result.get("http_status"),
                error_kind=str(result.get("error_kind") or ERROR_UNKNOWN),
            )

        obj = result.get("json")
        models = obj.get("models") if isinstance(obj, dict) else None
        if not isinstance(models, list):
            return ModelListResult(ok=False, status_text="Failed to parse model list", error_kind=ERROR_PARSE)

        names: list[str] = []
        for item in models:
            if not isinstance(item, dict):
                continue
            name = str(item.get("name") or "").strip()
            if name:
                names.append(name)

        self._model_cache[norm] = (now + self._MODEL_CACHE_TTL_S, names)
        return ModelListResult(ok=True, status_text=f"Found {len(names)} model(s).", models=names)

    def _request_json(self, *, url: str, timeout_s: float) -> dict[str, Any]:
        req = urllib.request.Request(url=url, method="GET", headers={"Accept": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=max(0.5, float(timeout_s))) as resp:
                text = resp.read().decode("utf-8", errors="replace")
                parsed = json.loads(text) if text.strip() else {}
                return {
                    "ok": True,
                    "http_status": int(getattr(resp, "status", 200) or 200),
                    "json": parsed,
                    "status_text": "OK",
                    "error_kind": "",
                }
        except json.JSONDecodeError:
            return {"ok": False, "http_status": None, "status_text": "Model server returned invalid JSON.", "error_kind": ERROR_PARSE}
        except Exception as exc:
            kind, message = self._classify_exception(exc, url)
            return {
                "ok": False,
                "http_status": int(exc.code) if isinstance(exc, urllib.error.HTTPError) else None,
                "status_text": message,
                "error_kind": kind,
            }

    def _classify_exception(self, exc: BaseException, target: str) -> tuple[str, str]:
        if isinstance(exc, urllib.error.HTTPError):
            body_text = ""
            try:
                body_text = exc.read().decode("utf-8", errors="replace")
            except Exception:
                body_text = ""
            return ERROR_HTTP, self._friendly_http_status_text(int(exc.code), body_text)
        if isinstance(exc, urllib.error.URLError):
            reason = getattr(exc, "reason", None)
            if isinstance(reason, (socket.timeout, TimeoutError)):
                return ERROR_TIMEOUT, "Request timed out"
            if isinstance(reason, ConnectionRefusedError):
                return ERROR_NETWORK, "Could not connect to Ollama. Is it running?"
            return ERROR_NETWORK, f"Could not reach model server ({target})."
        if isinstance(exc, (socket.timeout, TimeoutError)):
            return ERROR_TIMEOUT, "Request timed out"
        if isinstance(exc, ConnectionError):
            return ERROR_NETWORK, "Connection to model server was lost."
        logger.debug("Unexpected transport failure: %r", exc)
        return ERROR_UNKNOWN, "Unexpected response from model server."

    def _friendly_http_status_text(self, status: int, body_text: str = "") -> str:
        server_message = ""
        try:
            parsed = json.loads(body_text) if body_text.strip() else {}
            if isinstance(parsed, dict):
                server_message = str(parsed.get("error") or "").strip()
        except Exception:
            server_message = ""
        if server_message:
            return f"Model server error ({status}): {server_message}"
        if status == 404:
            return "Endpoint or model not found (404). Verify endpoint and model name."
        if 500 <= status <= 599:
            return f"Model server is unavailable ({status}). Try again later."
        return f"Model server request failed ({status})."
