"""
Audio-only recorder for clip-upload transcription.

Runs next to the main recording with its own microphone stream and hands
back one compressed clip when stopped.
"""

import io
import queue
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from errors import DeviceDisconnected, DeviceUnavailable
from logger import log_debug


def _debug(msg: str):
    log_debug("clip", msg)


@dataclass(frozen=True)
class AudioClip:
    data: bytes
    filename: str = "audio.mp3"
    mime_type: str = "audio/mpeg"
    duration: float = 0.0

    def __len__(self):
        return len(self.data)


class ClipRecorder(ABC):
    """Blocking interface; the clip engine calls it off the event loop."""

    @abstractmethod
    def start(self) -> None:
        """Open the microphone and begin buffering."""

    @abstractmethod
    def stop(self) -> AudioClip:
        """Close the microphone and return the encoded clip."""


class MicrophoneClipRecorder(ClipRecorder):
    """Buffers microphone audio with sounddevice and encodes it to MP3 with soundfile."""

    def __init__(self, sample_rate: int = 44100, device=None):
        self.sample_rate = sample_rate
        self.device = device
        self._queue: queue.Queue = queue.Queue()
        self._stream = None
        self._lost = False

    def _callback(self, indata, frames, time_info, status):
        if status:
            _debug(f"Mic callback status: {status}")
        self._queue.put(indata.flatten().copy())

    def _finished(self):
        if self._stream is not None and self._stream.active:
            self._lost = True

    def start(self) -> None:
        if self._stream is not None:
            return
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise DeviceUnavailable("microphone", f"Audio capture needs sounddevice/PortAudio: {e}")

        self._lost = False
        try:
            self._stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                dtype='float32',
                callback=self._callback,
                finished_callback=self._finished,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            self._stream = None
            raise DeviceUnavailable("microphone", f"Microphone could not be opened: {e}")
        _debug(f"Clip capture started at {self.sample_rate}Hz")

    def _drain(self) -> np.ndarray:
        chunks = []
        while True:
            try:
                chunks.append(self._queue.get_nowait())
            except queue.Empty:
                break
        if not chunks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(chunks)

    def stop(self) -> AudioClip:
        if self._stream is None:
            raise DeviceUnavailable("microphone", "Clip capture was never started")
        stream, self._stream = self._stream, None
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            _debug(f"Error closing clip stream: {e}")

        audio = self._drain()
        duration = len(audio) / self.sample_rate
        _debug(f"Clip capture stopped: {duration:.1f}s")
        if self._lost and not len(audio):
            raise DeviceDisconnected("microphone", "Microphone disconnected before any audio was captured")
        return AudioClip(data=encode_mp3(audio, self.sample_rate), duration=duration)


def encode_mp3(audio: np.ndarray, sample_rate: int) -> bytes:
    """Encode mono float samples as MP3 bytes (libsndfile 1.1+)."""
    import soundfile as sf

    buffer = io.BytesIO()
    try:
        sf.write(buffer, audio, sample_rate, format='MP3')
    except (sf.LibsndfileError, TypeError, ValueError) as e:
        raise DeviceUnavailable("encoder", f"MP3 encoding failed: {e}")
    return buffer.getvalue()
