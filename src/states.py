"""
State records and transition functions.

Recorder, recognizer and upload callbacks are turned into named events and
fed through the pure functions here, so the restart guard and the cleanup
rules can be checked without any devices.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from errors import AlreadyRecording, NotRecording


class SessionStatus(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RECORDING = "recording"
    STOPPING = "stopping"
    FAILED = "failed"


class SessionEvent(Enum):
    BEGIN = "begin"
    STARTED = "started"
    START_FAILED = "start_failed"
    DEVICE_LOST = "device_lost"
    END = "end"
    ENDED = "ended"


class RecordingState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    SAVED = "saved"
    FAILED = "failed"


class TranscriptMode(Enum):
    LIVE = "live"
    CLIP_UPLOAD = "clip_upload"


class TranscriptStatus(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    RESTARTING = "restarting"
    CAPTURING = "capturing"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    FAILED = "failed"


class LiveEvent(Enum):
    START = "start"
    RESULT = "result"
    END = "end"
    RESTARTED = "restarted"
    ERROR = "error"
    FATAL_ERROR = "fatal_error"
    STOP = "stop"


class ClipEvent(Enum):
    START = "start"
    CAPTURED = "captured"
    UPLOAD_OK = "upload_ok"
    UPLOAD_FAILED = "upload_failed"
    RETRY = "retry"
    CAPTURE_FAILED = "capture_failed"


@dataclass
class TranscriptState:
    """Current best transcript. Written only by the active engine."""
    mode: TranscriptMode
    status: TranscriptStatus = TranscriptStatus.IDLE
    text: str = ""
    attempts: int = 0
    error: Optional[str] = None

    @property
    def visible_text(self) -> Optional[str]:
        """The transcript as shown to the user; unavailable while uploading."""
        if self.status is TranscriptStatus.UPLOADING:
            return None
        return self.text

    def snapshot(self) -> "TranscriptState":
        return copy.copy(self)


@dataclass
class SessionState:
    """The one record every component reads to know whether a session is live."""
    status: SessionStatus = SessionStatus.IDLE
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    errors: List[Exception] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in (SessionStatus.STARTING, SessionStatus.RECORDING)


_SESSION_TABLE = {
    (SessionStatus.IDLE, SessionEvent.BEGIN): SessionStatus.STARTING,
    (SessionStatus.STARTING, SessionEvent.STARTED): SessionStatus.RECORDING,
    (SessionStatus.STARTING, SessionEvent.START_FAILED): SessionStatus.IDLE,
    (SessionStatus.RECORDING, SessionEvent.DEVICE_LOST): SessionStatus.FAILED,
    (SessionStatus.RECORDING, SessionEvent.END): SessionStatus.STOPPING,
    (SessionStatus.FAILED, SessionEvent.END): SessionStatus.STOPPING,
    (SessionStatus.STOPPING, SessionEvent.ENDED): SessionStatus.IDLE,
}


def session_transition(status: SessionStatus, event: SessionEvent) -> SessionStatus:
    """
    Apply a session event.

    Raises:
        AlreadyRecording: BEGIN while a session exists
        NotRecording: END before the session reached RECORDING
        ValueError: any other event that does not apply to ``status``
    """
    new_status = _SESSION_TABLE.get((status, event))
    if new_status is not None:
        return new_status
    if event is SessionEvent.BEGIN:
        raise AlreadyRecording()
    if event is SessionEvent.END:
        raise NotRecording()
    raise ValueError(f"Session event {event.value} does not apply in state {status.value}")


def live_transition(status: TranscriptStatus, event: LiveEvent,
                    session_recording: bool) -> TranscriptStatus:
    """Apply a live-recognition event. Events that don't apply leave the status unchanged."""
    if event is LiveEvent.START:
        return TranscriptStatus.LISTENING

    if event is LiveEvent.STOP:
        # A fatal error stays visible after stop
        if status is TranscriptStatus.FAILED:
            return status
        return TranscriptStatus.IDLE

    if event is LiveEvent.FATAL_ERROR:
        if status is TranscriptStatus.IDLE:
            return status
        return TranscriptStatus.FAILED

    if event is LiveEvent.END:
        if status is TranscriptStatus.LISTENING:
            return TranscriptStatus.RESTARTING if session_recording else TranscriptStatus.IDLE
        # RESTARTING: one restart is already in flight
        return status

    if event is LiveEvent.RESTARTED:
        if status is TranscriptStatus.RESTARTING:
            return TranscriptStatus.LISTENING if session_recording else TranscriptStatus.IDLE
        return status

    # RESULT and recoverable ERROR don't move the state; an END follows an error
    return status


_CLIP_TABLE = {
    ClipEvent.START: {
        TranscriptStatus.IDLE: TranscriptStatus.CAPTURING,
        TranscriptStatus.COMPLETE: TranscriptStatus.CAPTURING,
        TranscriptStatus.FAILED: TranscriptStatus.CAPTURING,
    },
    ClipEvent.CAPTURED: {TranscriptStatus.CAPTURING: TranscriptStatus.UPLOADING},
    ClipEvent.CAPTURE_FAILED: {TranscriptStatus.CAPTURING: TranscriptStatus.FAILED},
    ClipEvent.UPLOAD_OK: {TranscriptStatus.UPLOADING: TranscriptStatus.COMPLETE},
    ClipEvent.UPLOAD_FAILED: {TranscriptStatus.UPLOADING: TranscriptStatus.FAILED},
    ClipEvent.RETRY: {
        TranscriptStatus.FAILED: TranscriptStatus.UPLOADING,
        TranscriptStatus.COMPLETE: TranscriptStatus.UPLOADING,
    },
}


def clip_transition(status: TranscriptStatus, event: ClipEvent) -> TranscriptStatus:
    """Apply a clip-upload event. Events that don't apply leave the status unchanged."""
    return _CLIP_TABLE.get(event, {}).get(status, status)
