"""
Base classes for transcription engines.

Provides the one interface the session orchestrator is written against,
whichever strategy (live recognition or clip upload) is behind it, plus the
recognizer contract the live strategy drives.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from errors import RecognitionError
from states import TranscriptMode, TranscriptState

TranscriptListener = Callable[[TranscriptState], None]


@dataclass
class TranscriptionSegment:
    """A single segment of transcribed audio with timing information."""
    text: str
    start: float  # Start time in seconds
    end: float    # End time in seconds


@dataclass
class TranscriptionResult:
    """Result of a transcription operation."""
    text: str
    segments: List[TranscriptionSegment] = field(default_factory=list)
    duration_seconds: float = 0.0


class Recognizer(ABC):
    """
    Continuous speech recognizer with browser-style callbacks.

    ``on_result`` receives every segment recognised in the current run
    (the last one may be interim). ``on_end`` fires whenever the recognizer
    stops, whether it was asked to or not. ``on_error`` receives a
    ``RecognitionError``; an ``on_end`` follows it. Callbacks may fire on
    any thread.
    """

    def __init__(self):
        self.on_result: Optional[Callable[[List[str]], None]] = None
        self.on_end: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[RecognitionError], None]] = None

    @property
    @abstractmethod
    def running(self) -> bool:
        pass

    @abstractmethod
    def start(self) -> None:
        """
        Begin recognising. Returns without waiting for audio.

        Raises:
            RecognitionError: ``invalid-state`` when already running,
                ``engine-unsupported`` when the backend can't run here
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Ask the recognizer to finish; ``on_end`` fires once it has."""
        pass

    def _emit_result(self, segments: List[str]):
        if self.on_result:
            self.on_result(list(segments))

    def _emit_error(self, error: RecognitionError):
        if self.on_error:
            self.on_error(error)

    def _emit_end(self):
        if self.on_end:
            self.on_end()


class TranscriptionEngine(ABC):
    """
    Abstract base class for transcription strategies.

    The engine is the only writer of its ``TranscriptState``. Listeners get
    a snapshot after every change.
    """

    # Class attributes to be overridden by subclasses
    MODE: TranscriptMode = TranscriptMode.LIVE
    ENGINE_NAME: str = "Base Engine"

    def __init__(self, on_error: Optional[Callable[[Exception], None]] = None):
        self.state = TranscriptState(mode=self.MODE)
        self.on_error = on_error
        self._listeners: List[TranscriptListener] = []

    @property
    def text(self) -> str:
        return self.state.text

    @property
    def is_active(self) -> bool:
        """True between start and stop."""
        return False

    def add_listener(self, listener: TranscriptListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        snapshot = self.state.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    @abstractmethod
    async def start(self, is_session_active: Callable[[], bool]) -> None:
        """
        Begin transcribing for the current session.

        Args:
            is_session_active: read by the engine whenever it needs to know
                whether the session is still recording
        """
        pass

    @abstractmethod
    async def stop(self) -> TranscriptState:
        """
        Finish transcribing and return the final transcript state.

        Raises:
            UploadFailed: the clip could not be transcribed (clip upload)
        """
        pass

    @classmethod
    def is_available(cls) -> bool:
        """
        Check if this engine is available (dependencies installed).

        Override in subclasses to check for specific dependencies.
        """
        return True

    @classmethod
    def get_install_hint(cls) -> str:
        """
        Get installation instructions for this engine.

        Override in subclasses to provide specific instructions.
        """
        return "Install required dependencies."
