"""
Session orchestration.

``SessionOrchestrator`` sequences acquisition, composition, recording, the
elapsed timer and transcription behind ``begin_session`` and
``end_session``. It is the one place typed errors from the components are
turned into reported errors: logged, kept on the session record and passed
to ``on_error``.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from engines.base import TranscriptionEngine
from errors import CaptureError
from logger import log_debug, log_error
from media.acquirer import MediaSourceAcquirer
from media.controller import FinalizedRecording, RecordingController, RecordingSession
from media.multiplexer import compose
from media.tracks import CaptureSource, CompositeStream
from states import SessionEvent, SessionState, SessionStatus, TranscriptState, session_transition
from timer import ElapsedTimer


def _debug(msg: str):
    log_debug("session", msg)


@dataclass
class SessionResult:
    """What one session produced."""
    recording: Optional[FinalizedRecording]
    transcript: TranscriptState
    elapsed_seconds: int = 0
    errors: List[Exception] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.recording is not None and self.recording.partial


class SessionOrchestrator:
    def __init__(self, acquirer: MediaSourceAcquirer, controller: RecordingController,
                 engine: TranscriptionEngine, timer: Optional[ElapsedTimer] = None,
                 request_screen: bool = True, request_camera: bool = True, want_audio: bool = True,
                 on_error: Optional[Callable[[Exception], None]] = None,
                 on_tick: Optional[Callable[[int], None]] = None):
        self.acquirer = acquirer
        self.controller = controller
        self.engine = engine
        self.timer = timer or ElapsedTimer()
        self.request_screen = request_screen
        self.request_camera = request_camera
        self.want_audio = want_audio
        self.on_error = on_error
        self.on_tick = on_tick

        self.state = SessionState()
        self.sources: List[CaptureSource] = []
        self.stream: Optional[CompositeStream] = None
        self._transcript_consumers: List[Callable[[TranscriptState], None]] = []

        self.timer.on_tick = self._on_tick
        self.controller.on_failure = self._on_device_lost
        self.engine.on_error = self._report

    # --- read side ---

    @property
    def transcript(self) -> TranscriptState:
        return self.engine.state.snapshot()

    @property
    def recording_session(self) -> Optional[RecordingSession]:
        return self.controller.session

    def is_session_active(self) -> bool:
        return self.state.is_active

    def add_transcript_consumer(self, consumer: Callable[[TranscriptState], None]):
        """Called with the final transcript at the end of every session."""
        self._transcript_consumers.append(consumer)

    # --- error reporting ---

    def _report(self, error: Exception):
        self.state.errors.append(error)
        code = getattr(error, "code", type(error).__name__)
        log_error(f"Session error [{code}]", error)
        _debug(f"Reported {code}: {error}")
        if self.on_error:
            self.on_error(error)

    def _on_tick(self, ticks: int):
        session = self.controller.session
        if session is not None:
            session.elapsed_seconds = ticks
        if self.on_tick:
            self.on_tick(ticks)

    def _on_device_lost(self, error: Exception):
        if self.state.status is not SessionStatus.RECORDING:
            return
        self.state.status = session_transition(self.state.status, SessionEvent.DEVICE_LOST)
        self.timer.stop()
        _debug("Device lost; session failed, partial recording kept")
        self._report(error)

    # --- lifecycle ---

    async def begin_session(self) -> bool:
        """
        Acquire sources and start recording, the timer and transcription.

        Returns False (after reporting why) when a session is already active
        or the session could not start. Nothing is left open on failure.
        """
        try:
            self.state.status = session_transition(self.state.status, SessionEvent.BEGIN)
        except CaptureError as e:
            self._report(e)
            return False

        self.state.errors = []
        self.state.started_at = datetime.now()
        self.state.ended_at = None
        _debug("Session starting")

        try:
            self.sources = await self.acquirer.acquire(self.request_screen, self.request_camera, self.want_audio)
            self.stream = compose(self.sources)
            self.controller.start(self.stream)
            self.timer.start()

            try:
                await self.engine.start(self.is_session_active)
            except Exception as e:
                # Transcription trouble never costs the user the recording
                self._report(e)
        except BaseException as e:
            rollback_errors = await self._roll_back()
            if not isinstance(e, Exception):
                raise
            _debug(f"Session failed to start: {e}")
            self._report(e)
            for error in rollback_errors:
                self._report(error)
            return False

        self.state.status = session_transition(self.state.status, SessionEvent.STARTED)
        _debug(f"Session recording ({len(self.stream)} tracks, {self.engine.MODE.value} transcription)")
        return True

    async def _roll_back(self) -> List[Exception]:
        """Undo a partial start: timer, engine, recorder, then sources. Returns the errors met on the way."""
        self.timer.stop()
        errors: List[Exception] = []
        if self.engine.is_active:
            try:
                await self.engine.stop()
            except Exception as e:
                errors.append(e)
        if self.controller.is_recording:
            try:
                await self.controller.stop()
            except Exception as e:
                errors.append(e)
        errors.extend(self.acquirer.release(self.sources))
        self.sources = []
        self.stream = None
        self.state.status = session_transition(self.state.status, SessionEvent.START_FAILED)
        return errors

    async def end_session(self) -> SessionResult:
        """
        Stop everything, even if some of it fails to stop.

        The timer is cancelled first; the recorder and the transcription
        engine are stopped concurrently, then the sources are released.
        Every failure along the way is collected and reported.

        Raises:
            NotRecording: the session is not recording (nothing is changed)
        """
        self.state.status = session_transition(self.state.status, SessionEvent.END)
        _debug("Session stopping")

        session = self.controller.session
        elapsed = session.elapsed_seconds if session is not None else self.timer.ticks
        self.timer.stop()

        results = await asyncio.gather(
            self.controller.stop(),
            self.engine.stop(),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]

        errors.extend(self.acquirer.release(self.sources))
        self.sources = []
        self.stream = None

        self.state.status = session_transition(self.state.status, SessionEvent.ENDED)
        self.state.ended_at = datetime.now()
        for error in errors:
            self._report(error)

        transcript = self.engine.state.snapshot()
        for consumer in list(self._transcript_consumers):
            try:
                consumer(transcript)
            except Exception as e:
                self._report(e)

        _debug(f"Session ended after {elapsed}s with {len(self.state.errors)} error(s)")
        return SessionResult(
            recording=self.controller.recording,
            transcript=transcript,
            elapsed_seconds=elapsed,
            errors=list(self.state.errors),
        )

    def save_recording(self, recording: Optional[FinalizedRecording] = None):
        """Offer the recording as a download; returns the written path or None."""
        return self.controller.save(recording)

    async def retry_transcription(self) -> TranscriptState:
        """Re-send the last clip (clip-upload engines only)."""
        retry = getattr(self.engine, "retry_upload", None)
        if retry is None:
            raise CaptureError("Only clip-upload transcription can be re-sent")
        try:
            return await retry()
        except CaptureError as e:
            self._report(e)
            raise
