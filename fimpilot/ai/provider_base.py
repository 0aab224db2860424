from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

StreamEventKind = Literal["token", "done", "error"]

# error_kind values carried by failed results and error events.
ERROR_NETWORK = "network"
ERROR_TIMEOUT = "timeout"
ERROR_HTTP = "http_error"
ERROR_PARSE = "parse_error"
ERROR_SERVER = "server_error"
ERROR_INVALID_CONFIG = "invalid_config"
ERROR_UNKNOWN = "unknown"


@dataclass(slots=True)
class ProviderResult:
    ok: bool
    status_text: str
    http_status: int | None = None
    error_kind: str = ""
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ModelListResult(ProviderResult):
    models: list[str] = field(default_factory=list)


@dataclass(slots=True)
class GenerateRequest:
    endpoint: str
    model: str
    prompt: str
    max_tokens: int
    temperature: float
    stop: list[str]
    timeout_s: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "prompt": self.prompt,
            "stream": True,
            "raw": True,
            "options": {
                "num_predict": int(self.max_tokens),
                "temperature": float(self.temperature),
                "stop": list(self.stop),
            },
        }


@dataclass(slots=True)
class StreamEvent:
    request_id: int
    kind: StreamEventKind
    text: str = ""
    error_kind: str = ""


StreamCallback = Callable[[StreamEvent], None]


class CompletionTransport(ABC):
    """Streaming generation backend.

    Callbacks passed to ``generate`` run on the caller's event-loop thread, in
    arrival order, and never synchronously from inside ``generate``.
    """

    @abstractmethod
    def generate(self, request: GenerateRequest, on_event: StreamCallback) -> int:
        """Start a request, implicitly cancelling any running one. Returns its id."""
        raise NotImplementedError

    @abstractmethod
    def cancel(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_running(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def health_check(self, *, endpoint: str, timeout_s: float = 5.0) -> ProviderResult:
        raise NotImplementedError

    @abstractmethod
    def list_models(self, *, endpoint: str, timeout_s: float = 5.0, force_refresh: bool = False) -> ModelListResult:
        raise NotImplementedError

    def shutdown(self) -> None:
        self.cancel()
