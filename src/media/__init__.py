"""
Capture and recording

Device tracks, source acquisition, stream composition, the WebM encoder and
the recording controller. Device-backed classes import their libraries
lazily, so importing this package needs neither a display nor PortAudio.
"""

# Lazy imports to avoid loading device libraries when only the coordination code is needed
def __getattr__(name):
    if name in ("MediaTrack", "CaptureSource", "CompositeStream"):
        from . import tracks
        return getattr(tracks, name)
    elif name in ("DeviceProvider", "MediaSourceAcquirer"):
        from . import acquirer
        return getattr(acquirer, name)
    elif name == "LocalDeviceProvider":
        from .devices import LocalDeviceProvider
        return LocalDeviceProvider
    elif name == "compose":
        from .multiplexer import compose
        return compose
    elif name in ("MediaRecorder", "FfmpegRecorder"):
        from . import recorder
        return getattr(recorder, name)
    elif name in ("RecordingController", "RecordingSession", "FinalizedRecording"):
        from . import controller
        return getattr(controller, name)
    elif name in ("ClipRecorder", "MicrophoneClipRecorder", "AudioClip"):
        from . import clip_recorder
        return getattr(clip_recorder, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    "MediaTrack",
    "CaptureSource",
    "CompositeStream",
    "DeviceProvider",
    "MediaSourceAcquirer",
    "LocalDeviceProvider",
    "compose",
    "MediaRecorder",
    "FfmpegRecorder",
    "RecordingController",
    "RecordingSession",
    "FinalizedRecording",
    "ClipRecorder",
    "MicrophoneClipRecorder",
    "AudioClip",
]
