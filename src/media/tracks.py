"""
Media tracks, capture sources and the composite stream handed to the recorder.
"""

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

SCREEN = "screen"
CAMERA = "camera"

VIDEO = "video"
AUDIO = "audio"


class MediaTrack:
    """
    A live handle on one device feed.

    Subclasses open the device in ``__init__``, return the latest data from
    ``read`` and release the device in ``_close``. A track that loses its
    device calls ``_end`` so ended-listeners hear about it.
    """

    def __init__(self, kind: str, label: str, source_kind: str):
        self.kind = kind
        self.label = label
        self.source_kind = source_kind
        self.ready_state = "live"
        self.end_reason: Optional[str] = None
        self._ended_listeners: List[Callable[["MediaTrack"], None]] = []
        self._lock = threading.Lock()

    @property
    def is_live(self) -> bool:
        return self.ready_state == "live"

    def add_ended_listener(self, callback: Callable[["MediaTrack"], None]):
        self._ended_listeners.append(callback)

    def read(self):
        """Latest frame (video) or the audio captured since the last read."""
        raise NotImplementedError

    def stop(self):
        """End the track and release the device. Safe to call more than once."""
        with self._lock:
            if self.ready_state == "ended":
                return
            self.ready_state = "ended"
            self.end_reason = "stopped"
        self._close()

    def _end(self, reason: str):
        """Mark the track ended because the device went away."""
        with self._lock:
            if self.ready_state == "ended":
                return
            self.ready_state = "ended"
            self.end_reason = reason
        try:
            self._close()
        finally:
            for listener in list(self._ended_listeners):
                listener(self)

    def _close(self):
        pass

    def __repr__(self):
        return f"<{type(self).__name__} {self.kind} '{self.label}' {self.ready_state}>"


@dataclass
class CaptureSource:
    """Tracks opened by one permission prompt (the screen, or camera plus mic)."""
    kind: str
    tracks: List[MediaTrack] = field(default_factory=list)
    permission_state: str = "prompt"

    def release(self):
        """Stop every track, even if one of them fails to stop."""
        errors = []
        for track in self.tracks:
            try:
                track.stop()
            except Exception as e:
                errors.append(e)
        return errors


@dataclass(frozen=True)
class CompositeStream:
    """
    Ordered union of tracks from one or more capture sources.

    The stream borrows its tracks; it never stops them.
    """
    tracks: Tuple[MediaTrack, ...]

    @property
    def video_tracks(self) -> List[MediaTrack]:
        return [t for t in self.tracks if t.kind == VIDEO]

    @property
    def audio_tracks(self) -> List[MediaTrack]:
        return [t for t in self.tracks if t.kind == AUDIO]

    @property
    def primary_video(self) -> Optional[MediaTrack]:
        """Video track 0: the screen whenever the screen was captured."""
        videos = self.video_tracks
        return videos[0] if videos else None

    @property
    def preview_track(self) -> Optional[MediaTrack]:
        """The webcam track shown as the self-view."""
        for track in self.video_tracks:
            if track.source_kind == CAMERA:
                return track
        return None

    def __len__(self):
        return len(self.tracks)
