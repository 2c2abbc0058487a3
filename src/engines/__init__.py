"""
Screenscribe Transcription Engines

Two interchangeable strategies behind one interface:
- Live recognition (faster-whisper + webrtcvad on this machine), auto-restarted
- Clip upload (record the session's audio, send it to the transcription server)
"""

from .base import (
    Recognizer,
    TranscriptionEngine,
    TranscriptionResult,
    TranscriptionSegment,
)
from .factory import (
    create_engine,
    detect_capability,
    engine_from_config,
    get_available_engines,
    get_engine_class,
    is_engine_available,
    register_engine,
)
from .live_engine import LiveRecognitionEngine
from .clip_engine import ClipUploadEngine

__all__ = [
    # Base classes
    "Recognizer",
    "TranscriptionEngine",
    "TranscriptionResult",
    "TranscriptionSegment",
    # Engines
    "LiveRecognitionEngine",
    "ClipUploadEngine",
    # Factory functions
    "create_engine",
    "detect_capability",
    "engine_from_config",
    "get_available_engines",
    "get_engine_class",
    "is_engine_available",
    "register_engine",
]
