"""Merges capture sources into the one stream the recorder sees."""

from typing import Sequence

from errors import ConfigurationError
from media.tracks import SCREEN, CaptureSource, CompositeStream


def compose(sources: Sequence[CaptureSource]) -> CompositeStream:
    """
    Concatenate source tracks in acquisition order.

    Screen tracks come first, so video track 0 is the screen and the webcam
    preview is always found after it.

    Raises:
        ConfigurationError: no sources, or sources without tracks
    """
    if not sources:
        raise ConfigurationError("Cannot compose a stream from no capture sources")

    # Stable: keeps acquisition order within each group
    ordered = sorted(sources, key=lambda s: 0 if s.kind == SCREEN else 1)
    tracks = tuple(track for source in ordered for track in source.tracks)
    if not tracks:
        raise ConfigurationError("Capture sources contain no tracks")
    return CompositeStream(tracks)
