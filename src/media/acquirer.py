"""
Acquires capture sources one prompt at a time.

The screen prompt and the camera/microphone prompt are separate dialogs, so
they are requested sequentially. If the second one fails, everything the
first one opened is released before the error surfaces.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import List

from errors import CaptureError, DeviceUnavailable
from logger import log_debug
from media.tracks import CAMERA, SCREEN, CaptureSource, MediaTrack


def _debug(msg: str):
    log_debug("acquirer", msg)


class DeviceProvider(ABC):
    """Opens device tracks. Blocking; called off the event loop."""

    @abstractmethod
    def open_screen(self) -> List[MediaTrack]:
        """
        Open the screen as one or more video tracks.

        Raises:
            PermissionDenied: the user declined
            DeviceUnavailable: no display to capture
        """

    @abstractmethod
    def open_user_media(self, video: bool, audio: bool) -> List[MediaTrack]:
        """
        Open the camera and/or microphone.

        Raises:
            PermissionDenied: the user declined
            DeviceUnavailable: hardware missing or already claimed
        """


class MediaSourceAcquirer:
    """Requests and holds screen and camera/microphone capture sources."""

    def __init__(self, provider: DeviceProvider):
        self.provider = provider

    async def acquire(self, request_screen: bool, request_camera: bool,
                      want_audio: bool) -> List[CaptureSource]:
        """
        Open the requested sources, screen first.

        The caller owns the returned sources and must ``release`` them.
        """
        sources: List[CaptureSource] = []
        try:
            if request_screen:
                _debug("Requesting screen")
                tracks = await asyncio.to_thread(self.provider.open_screen)
                sources.append(self._make_source(SCREEN, tracks))

            if request_camera or want_audio:
                _debug(f"Requesting user media (video={request_camera}, audio={want_audio})")
                tracks = await asyncio.to_thread(self.provider.open_user_media, request_camera, want_audio)
                sources.append(self._make_source(CAMERA, tracks))
        except BaseException as e:
            # No partial leaks: give back whatever the earlier prompt opened
            _debug(f"Acquisition failed ({e!r}), releasing {len(sources)} source(s)")
            self.release(sources)
            if isinstance(e, CaptureError) or not isinstance(e, Exception):
                raise
            raise DeviceUnavailable("capture", f"Device acquisition failed: {e}") from e

        _debug(f"Acquired {sum(len(s.tracks) for s in sources)} track(s)")
        return sources

    @staticmethod
    def _make_source(kind: str, tracks: List[MediaTrack]) -> CaptureSource:
        if not tracks:
            raise DeviceUnavailable(kind)
        return CaptureSource(kind=kind, tracks=list(tracks), permission_state="granted")

    @staticmethod
    def release(sources: List[CaptureSource]) -> List[Exception]:
        """Stop every track of every source; returns the errors instead of raising."""
        errors: List[Exception] = []
        for source in sources:
            errors.extend(source.release())
        return errors
