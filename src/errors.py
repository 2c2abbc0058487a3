"""
Error taxonomy for capture, recording and transcription.

Every error carries a stable ``code`` so front ends can map it to a message
without matching on exception text.
"""

from typing import Optional


class CaptureError(Exception):
    """Base class for all Screenscribe errors."""
    code = "capture-error"


class PermissionDenied(CaptureError):
    """The user declined a device prompt."""
    code = "permission-denied"

    def __init__(self, kind: str, message: Optional[str] = None):
        self.kind = kind
        super().__init__(message or f"Permission to capture {kind} was denied")


class DeviceUnavailable(CaptureError):
    """Hardware not present, already claimed, or the encoder is missing."""
    code = "device-unavailable"

    def __init__(self, kind: str, message: Optional[str] = None):
        self.kind = kind
        super().__init__(message or f"No {kind} device is available")


class DeviceDisconnected(CaptureError):
    """A device went away while a session was recording."""
    code = "device-disconnected"

    def __init__(self, kind: str, message: Optional[str] = None):
        self.kind = kind
        super().__init__(message or f"The {kind} device was disconnected")


class AlreadyRecording(CaptureError):
    code = "already-recording"

    def __init__(self, message: str = "A recording session is already active"):
        super().__init__(message)


class NotRecording(CaptureError):
    code = "not-recording"

    def __init__(self, message: str = "No recording session is active"):
        super().__init__(message)


class ConfigurationError(CaptureError):
    code = "configuration-error"


class EngineUnsupported(CaptureError):
    """Raised when a transcription engine can't run here (missing dependencies)."""
    code = "engine-unsupported"

    def __init__(self, engine_id: str, install_hint: str):
        self.engine_id = engine_id
        self.install_hint = install_hint
        super().__init__(f"Engine '{engine_id}' not available. {install_hint}")


class UploadFailed(CaptureError):
    """The speech-to-text service could not be reached or returned an error."""
    code = "upload-failed"


class RecognitionError(CaptureError):
    """
    An error reported by a live recognizer.

    ``error`` uses the browser speech API vocabulary (``no-speech``,
    ``audio-capture``, ``not-allowed``...). Fatal errors end transcription
    for the session.
    """
    code = "recognition-error"

    FATAL_ERRORS = frozenset({
        "not-allowed",
        "service-not-allowed",
        "audio-capture",
        "language-not-supported",
        "engine-unsupported",
    })

    def __init__(self, error: str, message: Optional[str] = None):
        self.error = error
        super().__init__(message or f"Speech recognition error: {error}")

    @property
    def fatal(self) -> bool:
        return self.error in self.FATAL_ERRORS
