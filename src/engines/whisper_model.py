"""
Shared faster-whisper model wrapper.

Used by the live recognizer on this machine and by the transcription
server. faster-whisper is a CTranslate2 implementation that's significantly
faster than the original OpenAI implementation with the same accuracy.
"""

from typing import BinaryIO, List, Optional, Union
import numpy as np

from logger import log_error
from .base import TranscriptionResult, TranscriptionSegment

WHISPER_SAMPLE_RATE = 16000

# English-only variants are faster for English speech
WHISPER_MODELS = [
    "tiny", "tiny.en",
    "base", "base.en",
    "small", "small.en",
    "medium", "medium.en",
    "large-v1", "large-v2", "large-v3", "large",
]


def resample(audio: np.ndarray, sample_rate: int, target_rate: int = WHISPER_SAMPLE_RATE) -> np.ndarray:
    """Linear resample; good enough for speech going into Whisper."""
    if sample_rate == target_rate or len(audio) == 0:
        return audio
    duration = len(audio) / sample_rate
    target_len = int(duration * target_rate)
    source_x = np.linspace(0.0, duration, num=len(audio), endpoint=False)
    target_x = np.linspace(0.0, duration, num=target_len, endpoint=False)
    return np.interp(target_x, source_x, audio).astype(np.float32)


def to_float32(audio: np.ndarray) -> np.ndarray:
    """int16 PCM -> float32 in [-1, 1]."""
    if audio.dtype == np.float32:
        return audio
    if audio.dtype == np.int16:
        return audio.astype(np.float32) / 32768.0
    return audio.astype(np.float32)


class WhisperTranscriber:
    """Loads one faster-whisper model and transcribes with it."""

    def __init__(self):
        self._model = None
        self._model_name: Optional[str] = None
        self._device: Optional[str] = None
        self._compute_type: Optional[str] = None

    @property
    def model_name(self) -> Optional[str]:
        return self._model_name

    @property
    def device(self) -> Optional[str]:
        return self._device

    @classmethod
    def is_available(cls) -> bool:
        """Check if faster-whisper is installed."""
        try:
            import faster_whisper  # noqa: F401
            return True
        except ImportError:
            return False

    @classmethod
    def get_install_hint(cls) -> str:
        return "pip install faster-whisper"

    def load(self, model_name: str, device: str = "auto", compute_type: str = "int8") -> bool:
        """Load a Whisper model. Returns False (and logs) on failure."""
        try:
            from faster_whisper import WhisperModel

            if device == "auto":
                import ctranslate2
                device = "cuda" if ctranslate2.get_cuda_device_count() > 0 else "cpu"

            # int8 requires CPU
            if compute_type == "int8":
                device = "cpu"

            print(f"[Whisper] Loading model '{model_name}' on {device} ({compute_type})...")

            try:
                self._model = WhisperModel(model_name, device=device, compute_type=compute_type)
                self._device = device
            except Exception as e:
                if device == "cpu":
                    raise
                print(f"[Whisper] GPU load failed ({e}), falling back to CPU...")
                self._model = WhisperModel(model_name, device="cpu", compute_type="int8")
                self._device = "cpu"

            self._model_name = model_name
            self._compute_type = compute_type
            print(f"[Whisper] Model loaded successfully on {self._device}")
            return True

        except Exception as e:
            log_error(f"Failed to load Whisper model '{model_name}'", e)
            self._model = None
            return False

    def transcribe(
        self,
        audio: Union[np.ndarray, str, BinaryIO],
        sample_rate: int = WHISPER_SAMPLE_RATE,
        language: Optional[str] = None,
        vad_filter: bool = True,
    ) -> TranscriptionResult:
        """
        Transcribe PCM samples, or a file path / file object in any format
        faster-whisper can decode.
        """
        if self._model is None:
            raise RuntimeError("Model not loaded. Call load() first.")

        if isinstance(audio, np.ndarray):
            audio = resample(to_float32(audio), sample_rate)

        segments_iter, info = self._model.transcribe(
            audio,
            language=language,
            vad_filter=vad_filter,
            condition_on_previous_text=False,
        )

        segments: List[TranscriptionSegment] = []
        for segment in segments_iter:
            segments.append(TranscriptionSegment(text=segment.text, start=segment.start, end=segment.end))

        return TranscriptionResult(
            text="".join(s.text for s in segments).strip(),
            segments=segments,
            duration_seconds=getattr(info, "duration", 0.0),
        )

    def unload(self) -> None:
        """Unload the model and free memory."""
        self._model = None
        self._model_name = None
        self._device = None
        self._compute_type = None
        import gc
        gc.collect()
