from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict, ValidationError

from wirecode.isolation import MESSAGE_TYPE, IsolationDocument, prepare

log = logging.getLogger(__name__)

try:
    SETTLE_DELAY_SECS = max(0.0, float(os.getenv("PREVIEW_SETTLE_MS", "500") or 500) / 1000.0)
except Exception:
    SETTLE_DELAY_SECS = 0.5

try:
    _raw_timeout = os.getenv("PREVIEW_LOAD_TIMEOUT_SECS", "").strip()
    LOAD_TIMEOUT_SECS: Optional[float] = float(_raw_timeout) if _raw_timeout else None
except Exception:
    LOAD_TIMEOUT_SECS = None

DEFAULT_CONTAINER_ID = "code-preview-container"
DEFAULT_HEIGHT = "500px"


class RenderStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class RenderState:
    status: RenderStatus
    message: Optional[str] = None

    @classmethod
    def loading(cls) -> "RenderState":
        return cls(RenderStatus.LOADING)

    @classmethod
    def ready(cls) -> "RenderState":
        return cls(RenderStatus.READY)

    @classmethod
    def error(cls, message: str) -> "RenderState":
        return cls(RenderStatus.ERROR, message)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    """Runs callbacks on daemon threading.Timer threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class FullscreenHost(Protocol):
    """The host environment's fullscreen API."""

    @property
    def fullscreen_element(self) -> Optional[str]: ...

    def request_fullscreen(self, element_id: str) -> None: ...

    def exit_fullscreen(self) -> None: ...


class PreviewErrorMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["code-preview-error"]
    message: str = ""
    generation: int


@dataclass(frozen=True)
class PreviewView:
    status: RenderStatus
    error: Optional[str]
    document: Optional[IsolationDocument]
    height: str
    fullscreen: bool
    container_id: str
    settle_delay: float
    wait_for_load: bool
    load_timeout: Optional[float]

    @property
    def busy(self) -> bool:
        return self.status is RenderStatus.LOADING

    @property
    def generation(self) -> Optional[int]:
        return self.document.generation if self.document is not None else None

    @property
    def showing_document(self) -> bool:
        # The host error panel takes the frame's place
        return self.document is not None and self.status is not RenderStatus.ERROR

    def host_config(self) -> Dict[str, Any]:
        return {
            "containerId": self.container_id,
            "generation": self.generation,
            "status": self.status.value,
            "height": self.height,
            "messageType": MESSAGE_TYPE,
            "settleMs": int(self.settle_delay * 1000),
            "waitForLoad": self.wait_for_load,
            "loadTimeoutMs": int(self.load_timeout * 1000) if self.load_timeout else None,
            "loadTimeoutMessage": _timeout_message(self.load_timeout) if self.load_timeout else None,
        }

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "busy": self.busy,
            "error": self.error,
            "height": self.height,
            "fullscreen": self.fullscreen,
            "generation": self.generation,
        }


def _timeout_message(seconds: float) -> str:
    return f"Preview did not finish loading within {seconds:g} seconds"


Listener = Callable[[PreviewView], None]


class PreviewController:
    """
    Host-side lifecycle of one preview surface.

    Every update() replaces the live document with a new generation. Timer
    callbacks and relayed error messages carry the generation they were
    issued for and are dropped once a newer document exists.
    """

    def __init__(
        self,
        scheduler: Optional[Scheduler] = None,
        *,
        settle_delay: Optional[float] = None,
        wait_for_load: bool = False,
        load_timeout: Optional[float] = None,
        height: str = DEFAULT_HEIGHT,
        container_id: str = DEFAULT_CONTAINER_ID,
        builder: Callable[..., IsolationDocument] = prepare,
    ) -> None:
        self._scheduler: Scheduler = scheduler or ThreadingScheduler()
        self._settle_delay = SETTLE_DELAY_SECS if settle_delay is None else settle_delay
        self._wait_for_load = wait_for_load
        self._load_timeout = load_timeout if load_timeout is not None else (LOAD_TIMEOUT_SECS if wait_for_load else None)
        self._height = height
        self._container_id = container_id
        self._builder = builder
        self._lock = threading.RLock()
        self._state = RenderState.loading()
        self._document: Optional[IsolationDocument] = None
        self._timers: List[TimerHandle] = []
        self._listeners: Dict[int, Listener] = {}
        self._next_listener = 0
        self._fullscreen = False
        self._disposed = False

    # --- state ---------------------------------------------------------

    @property
    def state(self) -> RenderState:
        return self._state

    @property
    def document(self) -> Optional[IsolationDocument]:
        return self._document

    @property
    def busy(self) -> bool:
        return self._state.status is RenderStatus.LOADING

    @property
    def fullscreen(self) -> bool:
        return self._fullscreen

    @property
    def container_id(self) -> str:
        return self._container_id

    @property
    def disposed(self) -> bool:
        return self._disposed

    def view(self) -> PreviewView:
        with self._lock:
            return self._view_locked()

    def _view_locked(self) -> PreviewView:
        return PreviewView(
            status=self._state.status,
            error=self._state.message if self._state.status is RenderStatus.ERROR else None,
            document=self._document,
            height=self._height,
            fullscreen=self._fullscreen,
            container_id=self._container_id,
            settle_delay=self._settle_delay,
            wait_for_load=self._wait_for_load,
            load_timeout=self._load_timeout,
        )

    # --- transitions ---------------------------------------------------

    def update(self, code: Optional[str], language: Optional[str] = None) -> IsolationDocument:
        """Replace the live document and restart the load cycle."""
        with self._lock:
            if self._disposed:
                raise RuntimeError("preview controller has been disposed")
            self._cancel_timers()
            document = self._builder(code, language)
            self._document = document
            self._state = RenderState.loading()
            gen = document.generation
            if not self._wait_for_load:
                self._schedule(self._settle_delay, lambda: self._settle(gen))
            elif self._load_timeout:
                self._schedule(self._load_timeout, lambda: self._expire(gen))
            view = self._view_locked()
        log.debug("preview.update generation=%d kind=%s", gen, document.kind.value)
        self._notify(view)
        return document

    def handle_load(self, generation: int) -> bool:
        """Load signal from the frame; only meaningful with wait_for_load."""
        with self._lock:
            if not self._wait_for_load or not self._is_current(generation):
                return False
            if self._state.status is not RenderStatus.LOADING:
                return False
            self._cancel_timers()
            self._state = RenderState.ready()
            view = self._view_locked()
        self._notify(view)
        return True

    def handle_message(self, data: Any) -> bool:
        """Apply a message relayed from the frame. Returns True when accepted."""
        if not isinstance(data, dict) or data.get("type") != MESSAGE_TYPE:
            return False
        try:
            msg = PreviewErrorMessage.model_validate(data)
        except ValidationError as e:
            log.debug("preview.message rejected: %s", e.errors())
            return False
        with self._lock:
            if not self._is_current(msg.generation):
                log.debug("preview.message stale generation=%s", msg.generation)
                return False
            self._cancel_timers()
            self._state = RenderState.error(msg.message or "Unknown preview error")
            view = self._view_locked()
        log.info("preview.error generation=%d message=%s", msg.generation, msg.message)
        self._notify(view)
        return True

    def toggle_fullscreen(self, host: FullscreenHost) -> None:
        """Ask the host to enter or leave fullscreen; the flag follows the change event."""
        try:
            if host.fullscreen_element != self._container_id:
                host.request_fullscreen(self._container_id)
            else:
                host.exit_fullscreen()
        except Exception as e:
            log.warning("preview.fullscreen request failed: %s", e)

    def handle_fullscreen_change(self, host: FullscreenHost) -> None:
        with self._lock:
            active = host.fullscreen_element == self._container_id
            if active == self._fullscreen or self._disposed:
                return
            self._fullscreen = active
            view = self._view_locked()
        self._notify(view)

    def dispose(self) -> None:
        with self._lock:
            self._cancel_timers()
            self._document = None
            self._listeners.clear()
            self._disposed = True

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            token = self._next_listener
            self._next_listener += 1
            self._listeners[token] = listener

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    # --- internals -----------------------------------------------------

    def _is_current(self, generation: Optional[int]) -> bool:
        return (
            not self._disposed
            and self._document is not None
            and generation is not None
            and self._document.generation == generation
        )

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        self._timers.append(self._scheduler.call_later(delay, callback))

    def _cancel_timers(self) -> None:
        timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()

    def _settle(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation) or self._state.status is not RenderStatus.LOADING:
                return
            self._state = RenderState.ready()
            view = self._view_locked()
        self._notify(view)

    def _expire(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation) or self._state.status is not RenderStatus.LOADING:
                return
            self._state = RenderState.error(_timeout_message(self._load_timeout or 0))
            view = self._view_locked()
        log.warning("preview.load_timeout generation=%d", generation)
        self._notify(view)

    def _notify(self, view: PreviewView) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(view)
            except Exception:
                log.exception("preview listener failed")
