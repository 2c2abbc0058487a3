"""
Live recognition: Idle -> Listening -> (Restarting -> Listening)* -> Idle.

Recognizers end on their own (silence, network blips). While the session is
still recording, an unexpected end schedules exactly one restart; further
ends that arrive before it runs are ignored. A recognizer that is still winding
down when the restart runs is retried a few times before the restart fails.
"""

import asyncio
import importlib.util
from typing import Callable, List, Optional

from errors import RecognitionError
from logger import log_debug
from states import LiveEvent, TranscriptMode, TranscriptState, TranscriptStatus, live_transition
from utils import threadsafe_callback
from .base import Recognizer, TranscriptionEngine
from .factory import register_engine


def _debug(msg: str):
    log_debug("live", msg)


@register_engine
class LiveRecognitionEngine(TranscriptionEngine):
    """Drives a ``Recognizer`` and keeps it alive for the whole session."""

    MODE = TranscriptMode.LIVE
    ENGINE_NAME = "Live recognition (faster-whisper)"
    MAX_RESTART_ATTEMPTS = 3

    def __init__(self, recognizer: Recognizer, on_error: Optional[Callable[[Exception], None]] = None,
                 end_timeout: float = 5.0, restart_delay: float = 0.1):
        super().__init__(on_error)
        self.recognizer = recognizer
        self.end_timeout = end_timeout
        self.restart_delay = restart_delay
        self.restarts = 0

        self._is_session_active: Callable[[], bool] = lambda: False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ended: Optional[asyncio.Event] = None
        self._committed = ""
        self._run_text = ""
        self._closed = True

    @classmethod
    def is_available(cls) -> bool:
        """Check that the local recognizer's dependencies are installed."""
        for module in ("faster_whisper", "webrtcvad", "sounddevice"):
            if importlib.util.find_spec(module) is None:
                return False
        return True

    @classmethod
    def get_install_hint(cls) -> str:
        return "pip install faster-whisper webrtcvad sounddevice"

    @property
    def is_active(self) -> bool:
        return self.state.status in (TranscriptStatus.LISTENING, TranscriptStatus.RESTARTING)

    def _apply(self, event: LiveEvent):
        old = self.state.status
        new = live_transition(old, event, self._is_session_active())
        if new is not old:
            _debug(f"{old.value} -> {new.value} on {event.value}")
        self.state.status = new

    async def start(self, is_session_active: Callable[[], bool]) -> None:
        if self.is_active:
            return
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._is_session_active = is_session_active
        self._ended = asyncio.Event()
        self.recognizer.on_result = threadsafe_callback(loop, self._handle_result)
        self.recognizer.on_end = threadsafe_callback(loop, self._handle_end)
        self.recognizer.on_error = threadsafe_callback(loop, self._handle_error)

        self.state = TranscriptState(mode=self.MODE)
        self._committed = ""
        self._run_text = ""
        self.restarts = 0
        self._closed = False

        try:
            self.recognizer.start()
        except RecognitionError as e:
            # The caller reports this one; on_error is for errors that arrive later
            self.state.status = TranscriptStatus.FAILED
            self.state.error = e.error
            self._closed = True
            self._notify()
            raise
        self._apply(LiveEvent.START)
        self._notify()

    # --- recognizer events (always on the loop thread) ---

    def _handle_result(self, segments: List[str]):
        if self._closed:
            return
        # Later results are authoritative: the run's text is replaced, never merged
        self._run_text = " ".join(s.strip() for s in segments if s and s.strip())
        self.state.text = " ".join(t for t in (self._committed, self._run_text) if t)
        self._notify()

    def _handle_end(self):
        if self._ended is not None:
            self._ended.set()
        previous = self.state.status
        self._apply(LiveEvent.END)
        if previous is TranscriptStatus.LISTENING and self.state.status is TranscriptStatus.RESTARTING:
            self._loop.call_soon(self._restart)
        if self.state.status is not previous:
            self._notify()

    def _handle_error(self, error: Exception):
        if not isinstance(error, RecognitionError):
            error = RecognitionError("audio-capture", str(error))
        if not error.fatal:
            # An end event follows; the restart guard handles it
            _debug(f"Recoverable recognition error: {error.error}")
            self.state.error = error.error
            return
        self._fail(error)

    def _fail(self, error: RecognitionError):
        if self.state.status in (TranscriptStatus.FAILED, TranscriptStatus.IDLE):
            return
        self._apply(LiveEvent.FATAL_ERROR)
        self.state.error = error.error
        _debug(f"Fatal recognition error: {error}")
        self._notify()
        if self.recognizer.running:
            self.recognizer.stop()
        if self.on_error:
            self.on_error(error)

    def _restart(self, attempt: int = 0):
        # Skipped if stopped, failed or already listening again
        if self.state.status is not TranscriptStatus.RESTARTING:
            return
        if not self._is_session_active():
            self._apply(LiveEvent.STOP)
            self._notify()
            return

        if attempt == 0:
            self._committed = self.state.text
            self._run_text = ""
        self._ended.clear()
        _debug(f"Restarting recognizer (restart #{self.restarts + 1}, attempt {attempt + 1})")
        try:
            self.recognizer.start()
        except RecognitionError as e:
            if e.fatal:
                self._fail(e)
                return
            # invalid-state: the old run announced its end but is still winding down
            if attempt + 1 < self.MAX_RESTART_ATTEMPTS:
                self._loop.call_later(self.restart_delay, self._restart, attempt + 1)
                return
            if not self.recognizer.running:
                self._fail(RecognitionError("audio-capture", f"Recognizer would not restart ({e.error})"))
                return
            _debug(f"Restart reported {e.error}; recognizer is running again")

        self.restarts += 1
        self.state.attempts = self.restarts
        self._apply(LiveEvent.RESTARTED)
        self._notify()

    async def stop(self) -> TranscriptState:
        """Stop listening and suppress further restarts."""
        was_active = self.is_active
        self._apply(LiveEvent.STOP)
        if was_active and self.recognizer.running:
            self.recognizer.stop()
            try:
                await asyncio.wait_for(self._ended.wait(), self.end_timeout)
            except asyncio.TimeoutError:
                _debug(f"Recognizer did not end within {self.end_timeout}s")
            # Let results queued from the recognizer thread land
            await asyncio.sleep(0)
        self._closed = True
        self._notify()
        return self.state.snapshot()
