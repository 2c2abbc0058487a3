"""
Recording lifecycle: Idle -> Recording -> Finalizing -> Idle (or Saved).

The controller owns the one active ``MediaRecorder`` and the chunk buffer
it fills. Recorder callbacks are bound to the session they were created
for, so a late chunk from an old recorder can never land in a new session.
"""

import asyncio
import functools
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from compat import get_downloads_dir
from errors import AlreadyRecording, CaptureError, ConfigurationError, DeviceDisconnected, NotRecording
from logger import log_debug
from media.recorder import DataCallback, ErrorCallback, MediaRecorder
from media.tracks import CompositeStream
from states import RecordingState
from utils import threadsafe_callback

RecorderFactory = Callable[[CompositeStream, DataCallback, ErrorCallback], MediaRecorder]


def _debug(msg: str):
    log_debug("recorder", msg)


@dataclass
class RecordingSession:
    state: RecordingState = RecordingState.RECORDING
    chunks: List[bytes] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    elapsed_seconds: int = 0
    error: Optional[Exception] = None

    @property
    def size(self) -> int:
        return sum(len(c) for c in self.chunks)


@dataclass(frozen=True)
class FinalizedRecording:
    """The materialized payload of one session."""
    data: bytes
    mime_type: str
    filename: str = "recording.webm"
    partial: bool = False

    def __len__(self):
        return len(self.data)


class RecordingController:
    def __init__(self, recorder_factory: RecorderFactory, mime_type: str = "video/webm",
                 timeslice: Optional[float] = 1.0, downloads_dir=None,
                 filename: str = "recording.webm",
                 on_failure: Optional[Callable[[Exception], None]] = None):
        self.recorder_factory = recorder_factory
        self.mime_type = mime_type
        self.timeslice = timeslice
        self.downloads_dir = downloads_dir
        self.filename = filename
        self.on_failure = on_failure

        self.session: Optional[RecordingSession] = None
        self.recording: Optional[FinalizedRecording] = None
        self._recorder: Optional[MediaRecorder] = None

    @property
    def is_recording(self) -> bool:
        return self._recorder is not None

    @staticmethod
    def _bind(fn):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return fn
        return threadsafe_callback(loop, fn)

    def start(self, stream: CompositeStream) -> RecordingSession:
        """
        Start recording ``stream`` into a fresh session.

        The previous session's chunks are dropped.

        Raises:
            AlreadyRecording: a recorder is running (nothing is changed)
            ConfigurationError: the stream has no tracks
        """
        if self._recorder is not None:
            raise AlreadyRecording()
        if not len(stream):
            raise ConfigurationError("Cannot record an empty stream")

        session = RecordingSession()
        recorder = self.recorder_factory(
            stream,
            self._bind(functools.partial(self._on_data, session)),
            self._bind(functools.partial(self._on_error, session)),
        )
        recorder.start(self.timeslice)

        self.session = session
        self.recording = None
        self._recorder = recorder
        _debug(f"Recording started ({len(stream)} tracks, timeslice={self.timeslice})")
        return session

    def _on_data(self, session: RecordingSession, chunk: bytes):
        if not chunk:
            return
        if session.state in (RecordingState.RECORDING, RecordingState.FINALIZING, RecordingState.FAILED):
            session.chunks.append(bytes(chunk))

    def _on_error(self, session: RecordingSession, error: Exception):
        if session.state is not RecordingState.RECORDING:
            return
        if not isinstance(error, CaptureError):
            error = DeviceDisconnected("capture", str(error))
        session.state = RecordingState.FAILED
        session.error = error
        _debug(f"Recording failed mid-session: {error} ({len(session.chunks)} chunks kept)")
        if self.on_failure:
            self.on_failure(error)

    async def stop(self, session: Optional[RecordingSession] = None) -> FinalizedRecording:
        """
        Stop the recorder and materialize the payload.

        A session that failed mid-recording is still stopped once, and its
        partial chunks become the payload.

        Raises:
            NotRecording: nothing is recording, or ``session`` is not the active one
        """
        if session is None:
            session = self.session
        if self._recorder is None or session is None or session is not self.session:
            raise NotRecording()

        partial = session.state is RecordingState.FAILED
        session.state = RecordingState.FINALIZING
        recorder, self._recorder = self._recorder, None

        try:
            await recorder.stop()
        except Exception as e:
            _debug(f"Recorder stop failed: {e}")
            session.state = RecordingState.FAILED
            session.error = session.error or e
            self.recording = self._materialize(session, partial=True)
            raise

        session.state = RecordingState.FAILED if partial else RecordingState.IDLE
        self.recording = self._materialize(session, partial=partial)
        _debug(f"Recording finalized: {len(self.recording)} bytes in {len(session.chunks)} chunks")
        return self.recording

    def _materialize(self, session: RecordingSession, partial: bool) -> FinalizedRecording:
        return FinalizedRecording(
            data=b"".join(session.chunks),
            mime_type=self.mime_type,
            filename=self.filename,
            partial=partial,
        )

    def salvage(self) -> Optional[FinalizedRecording]:
        """Whatever has been captured so far, without stopping anything."""
        if self.session is None:
            return None
        return self._materialize(self.session, partial=True)

    def save(self, recording: Optional[FinalizedRecording] = None) -> Optional[Path]:
        """
        Write the payload to the downloads folder.

        Repeated saves never overwrite: the second copy becomes
        ``recording (1).webm`` and so on. Returns None when there is nothing
        to save.
        """
        if recording is None:
            recording = self.recording
        if recording is None or not recording.data:
            _debug("Nothing to save")
            return None

        folder = Path(self.downloads_dir) if self.downloads_dir else get_downloads_dir()
        folder.mkdir(parents=True, exist_ok=True)
        path = self._unique_path(folder, recording.filename)
        path.write_bytes(recording.data)

        if self.session is not None and self.session.state is RecordingState.IDLE:
            self.session.state = RecordingState.SAVED
        _debug(f"Saved {len(recording)} bytes to {path}")
        return path

    @staticmethod
    def _unique_path(folder: Path, filename: str) -> Path:
        path = folder / filename
        stem, suffix = path.stem, path.suffix
        n = 1
        while path.exists():
            path = folder / f"{stem} ({n}){suffix}"
            n += 1
        return path

    def clear(self):
        """Drop the session and its chunks."""
        if self._recorder is not None:
            raise AlreadyRecording("Stop the recording before clearing it")
        self.session = None
        self.recording = None
