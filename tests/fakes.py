"""
In-memory stand-ins for devices, the encoder, the recognizer and HTTP clients.
"""

import time
from typing import List, Optional

from errors import PermissionDenied, RecognitionError
from engines.base import Recognizer
from media.acquirer import DeviceProvider
from media.clip_recorder import AudioClip, ClipRecorder
from media.recorder import MediaRecorder
from media.tracks import AUDIO, CAMERA, SCREEN, VIDEO, MediaTrack


class FakeTrack(MediaTrack):
    def __init__(self, kind=VIDEO, label="fake", source_kind=SCREEN, fail_stop=False):
        super().__init__(kind, label, source_kind)
        self.fail_stop = fail_stop
        self.closed = False

    def read(self):
        return None

    def _close(self):
        self.closed = True
        if self.fail_stop:
            raise OSError(f"{self.label} would not stop")

    def disconnect(self):
        self._end("device-disconnected")


class FakeProvider(DeviceProvider):
    """Hands out fake tracks; ``deny`` names the prompt the user declines."""

    def __init__(self, deny: Optional[str] = None):
        self.deny = deny
        self.opened: List[FakeTrack] = []
        self.calls: List[str] = []

    def open_screen(self):
        self.calls.append(SCREEN)
        if self.deny == SCREEN:
            raise PermissionDenied(SCREEN)
        track = FakeTrack(VIDEO, "Screen 1", SCREEN)
        self.opened.append(track)
        return [track]

    def open_user_media(self, video, audio):
        self.calls.append(CAMERA)
        if self.deny == CAMERA:
            raise PermissionDenied(CAMERA)
        tracks = []
        if video:
            tracks.append(FakeTrack(VIDEO, "Camera 0", CAMERA))
        if audio:
            tracks.append(FakeTrack(AUDIO, "Microphone", CAMERA))
        self.opened.extend(tracks)
        return tracks


class FakeRecorder(MediaRecorder):
    """Records calls; tests push chunks and errors through the callbacks."""

    instances: List["FakeRecorder"] = []

    def __init__(self, stream, on_data, on_error, fail_start=False, fail_stop=False,
                 final_chunk: bytes = b""):
        super().__init__(stream, on_data, on_error)
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.final_chunk = final_chunk
        self.started = False
        self.stopped = False
        self.timeslice = None
        FakeRecorder.instances.append(self)

    def start(self, timeslice=None):
        if self.fail_start:
            raise OSError("encoder refused to start")
        self.started = True
        self.timeslice = timeslice

    async def stop(self):
        self.stopped = True
        if self.final_chunk:
            self.on_data(self.final_chunk)
        if self.fail_stop:
            raise RuntimeError("encoder crashed while flushing")

    def emit(self, chunk: bytes):
        self.on_data(chunk)

    def fail(self, error: Exception):
        self.on_error(error)


class FakeRecognizer(Recognizer):
    """A recognizer whose events are fired by the test."""

    def __init__(self, start_error: Optional[RecognitionError] = None):
        super().__init__()
        self.start_error = start_error
        self.start_count = 0
        self.stop_count = 0
        self._running = False

    @property
    def running(self):
        return self._running

    def start(self):
        if self.start_error is not None:
            raise self.start_error
        if self._running:
            raise RecognitionError("invalid-state")
        self._running = True
        self.start_count += 1

    def stop(self):
        self.stop_count += 1
        if self._running:
            self.end()

    def result(self, *segments):
        self._emit_result(list(segments))

    def end(self, still_running=False):
        """``still_running`` fires the end event before the run has wound down."""
        if not still_running:
            self._running = False
        self._emit_end()

    def error(self, code: str):
        self._emit_error(RecognitionError(code))


class FakeClipRecorder(ClipRecorder):
    def __init__(self, data: bytes = b"ID3fake-mp3", fail_start: Optional[Exception] = None,
                 start_delay: float = 0.0):
        self.data = data
        self.fail_start = fail_start
        self.start_delay = start_delay
        self.started = False
        self.stopped = False

    def start(self):
        if self.start_delay:
            # Blocks like a slow microphone open
            time.sleep(self.start_delay)
        if self.fail_start is not None:
            raise self.fail_start
        self.started = True
        self.stopped = False

    def stop(self):
        self.stopped = True
        return AudioClip(data=self.data, duration=1.0)


class FakeClient:
    """Transcription client returning queued ``(text, success)`` answers."""

    def __init__(self, *responses):
        self.responses = list(responses) or [("", True)]
        self.uploads = []

    def transcribe_clip(self, clip, language="en"):
        self.uploads.append((clip, language))
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def recorder_factory(**options):
    """A factory the RecordingController can call like a recorder class."""
    def factory(stream, on_data, on_error):
        return FakeRecorder(stream, on_data, on_error, **options)
    return factory
