"""
Clip upload: Idle -> Capturing -> Uploading -> (Complete | Failed).

Audio is captured on its own recorder for the length of the session, then
sent as one clip. The server's answer replaces the transcript in a single
write. A failed upload is never retried automatically; ``retry_upload``
re-sends the retained clip on request.
"""

import asyncio
import importlib.util
from typing import Callable, Optional

from errors import CaptureError, UploadFailed
from logger import log_debug
from media.clip_recorder import AudioClip, ClipRecorder
from states import ClipEvent, TranscriptMode, TranscriptState, TranscriptStatus, clip_transition
from .base import TranscriptionEngine
from .factory import register_engine


def _debug(msg: str):
    log_debug("clip", msg)


@register_engine
class ClipUploadEngine(TranscriptionEngine):
    MODE = TranscriptMode.CLIP_UPLOAD
    ENGINE_NAME = "Clip upload (transcription server)"

    def __init__(self, clip_recorder: ClipRecorder, client, language: str = "en",
                 on_error: Optional[Callable[[Exception], None]] = None):
        super().__init__(on_error)
        self.clip_recorder = clip_recorder
        self.client = client
        self.language = language
        self.clip: Optional[AudioClip] = None

    @classmethod
    def is_available(cls) -> bool:
        for module in ("sounddevice", "soundfile"):
            if importlib.util.find_spec(module) is None:
                return False
        return True

    @classmethod
    def get_install_hint(cls) -> str:
        return "pip install sounddevice soundfile requests"

    @property
    def is_active(self) -> bool:
        return self.state.status in (TranscriptStatus.CAPTURING, TranscriptStatus.UPLOADING)

    def _apply(self, event: ClipEvent):
        old = self.state.status
        self.state.status = clip_transition(old, event)
        if self.state.status is not old:
            _debug(f"{old.value} -> {self.state.status.value} on {event.value}")
        self._notify()

    async def start(self, is_session_active: Optional[Callable[[], bool]] = None) -> None:
        """Begin capturing the clip. The previous transcript is kept until the new one arrives."""
        if self.is_active:
            return
        self.clip = None
        self.state.error = None
        self.state.attempts = 0
        self._apply(ClipEvent.START)
        starting = asyncio.ensure_future(asyncio.to_thread(self.clip_recorder.start))
        try:
            await asyncio.shield(starting)
        except CaptureError as e:
            self.state.error = str(e)
            self._apply(ClipEvent.CAPTURE_FAILED)
            raise
        except asyncio.CancelledError:
            self.state.error = "Clip capture cancelled while starting"
            self._apply(ClipEvent.CAPTURE_FAILED)
            # The microphone may still open after the cancel; close it once it does
            starting.add_done_callback(self._discard_late_start)
            raise

    def _discard_late_start(self, starting: asyncio.Future):
        if starting.cancelled() or starting.exception() is not None:
            return
        try:
            self.clip_recorder.stop()
        except CaptureError as e:
            _debug(f"Could not close cancelled clip capture: {e}")
        else:
            _debug("Closed clip capture that opened after cancel")

    async def stop(self) -> TranscriptState:
        """
        Stop capturing and upload the clip.

        Raises:
            UploadFailed: the service answered with an error or could not be reached
            CaptureError: the clip could not be captured
        """
        if self.state.status is not TranscriptStatus.CAPTURING:
            return self.state.snapshot()

        try:
            clip = await asyncio.to_thread(self.clip_recorder.stop)
        except CaptureError as e:
            self.state.error = str(e)
            self._apply(ClipEvent.CAPTURE_FAILED)
            raise

        self.clip = clip
        _debug(f"Captured clip: {len(clip)} bytes, {clip.duration:.1f}s")
        self._apply(ClipEvent.CAPTURED)
        await self._upload()
        return self.state.snapshot()

    async def retry_upload(self) -> TranscriptState:
        """
        Re-send the last clip after a failed (or completed) upload.

        Raises:
            UploadFailed: nothing to re-send, or the upload failed again
        """
        if self.clip is None:
            raise UploadFailed("There is no captured clip to re-send")
        if self.state.status not in (TranscriptStatus.FAILED, TranscriptStatus.COMPLETE):
            raise UploadFailed(f"Cannot re-send while {self.state.status.value}")
        self._apply(ClipEvent.RETRY)
        await self._upload()
        return self.state.snapshot()

    async def _upload(self):
        self.state.attempts += 1
        _debug(f"Uploading clip (attempt {self.state.attempts})")
        text, success = await asyncio.to_thread(self.client.transcribe_clip, self.clip, self.language)

        if success:
            self.state.text = text
            self.state.error = None
            self._apply(ClipEvent.UPLOAD_OK)
            return

        # Text keeps its prior value
        self.state.error = text
        self._apply(ClipEvent.UPLOAD_FAILED)
        raise UploadFailed(text)
