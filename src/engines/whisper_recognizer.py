"""
Local continuous recognizer: sounddevice -> webrtcvad -> faster-whisper.

Microphone audio is cut into 30ms frames for the VAD. Speech is gathered
into utterances; each utterance is transcribed when a pause closes it, and
the utterance in progress is transcribed every ``partial_interval`` seconds
as an interim result. After ``silence_timeout`` seconds without speech the
recognizer reports ``no-speech`` and ends itself, which is what a browser
recognizer does too.
"""

import queue
import threading
import time
from typing import List, Optional

import numpy as np

from errors import RecognitionError
from logger import log_debug, log_error
from .base import Recognizer
from .whisper_model import WHISPER_SAMPLE_RATE, WhisperTranscriber

FRAME_MS = 30
FRAME_SIZE = int(WHISPER_SAMPLE_RATE * FRAME_MS / 1000)

# Models are expensive to load; restarts reuse them
_model_cache = {}
_model_lock = threading.Lock()


def _debug(msg: str):
    log_debug("live", msg)


def get_shared_model(model_name: str, device: str, compute_type: str) -> Optional[WhisperTranscriber]:
    """Load (once) and return the model for this configuration, or None if loading failed."""
    key = (model_name, device, compute_type)
    with _model_lock:
        model = _model_cache.get(key)
        if model is None:
            model = WhisperTranscriber()
            if not model.load(model_name, device, compute_type):
                return None
            _model_cache[key] = model
        return model


class WhisperRecognizer(Recognizer):
    def __init__(self, model_name: str = "base.en", device: str = "cpu", compute_type: str = "int8",
                 language: Optional[str] = "en", silence_timeout: float = 8.0,
                 vad_aggressiveness: int = 2, pause_ms: int = 600, partial_interval: float = 2.0,
                 input_device=None, model: Optional[WhisperTranscriber] = None):
        super().__init__()
        self.model_name = model_name
        self.device = device
        self.compute_type = compute_type
        self.language = language
        self.silence_timeout = silence_timeout
        self.vad_aggressiveness = vad_aggressiveness
        self.pause_frames = max(1, pause_ms // FRAME_MS)
        self.partial_interval = partial_interval
        self.input_device = input_device
        self._model = model

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._finished = threading.Event()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        # A run that has announced its end is over even while its thread unwinds
        return self._thread is not None and self._thread.is_alive() and not self._finished.is_set()

    def start(self) -> None:
        with self._lock:
            if self.running:
                raise RecognitionError("invalid-state", "Recognizer is already running")
            try:
                import sounddevice  # noqa: F401
                import webrtcvad  # noqa: F401
            except (ImportError, OSError) as e:
                raise RecognitionError("engine-unsupported", f"Live recognition is unavailable: {e}")
            if not WhisperTranscriber.is_available():
                raise RecognitionError("engine-unsupported", WhisperTranscriber.get_install_hint())

            if self._thread is not None:
                # The previous run is past its end event; let it release the microphone
                self._thread.join(timeout=1.0)

            self._stop_event = threading.Event()
            self._finished = threading.Event()
            self._thread = threading.Thread(target=self._run, args=(self._finished,),
                                            name="whisper-recognizer", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    # --- worker thread ---

    def _transcribe(self, audio: np.ndarray) -> str:
        try:
            result = self._model.transcribe(audio, WHISPER_SAMPLE_RATE, self.language, vad_filter=False)
        except Exception as e:
            log_error("Live transcription failed", e)
            return ""
        return result.text

    def _run(self, finished: threading.Event):
        try:
            self._listen()
        except RecognitionError as e:
            self._emit_error(e)
        except Exception as e:
            log_error("Recognizer crashed", e)
            self._emit_error(RecognitionError("audio-capture", str(e)))
        finally:
            _debug("Recognizer ended")
            finished.set()
            self._emit_end()

    def _listen(self):
        import sounddevice as sd
        import webrtcvad

        if self._model is None:
            self._model = get_shared_model(self.model_name, self.device, self.compute_type)
            if self._model is None:
                raise RecognitionError("engine-unsupported", f"Could not load Whisper model '{self.model_name}'")

        vad = webrtcvad.Vad(self.vad_aggressiveness)
        frames: queue.Queue = queue.Queue()

        def audio_callback(indata, frame_count, time_info, status):
            if status:
                _debug(f"Audio callback status: {status}")
            frames.put(indata[:, 0].copy())

        segments: List[str] = []
        utterance: List[np.ndarray] = []
        silent_frames = 0
        last_voice = time.monotonic()
        last_partial = last_voice

        def close_utterance():
            text = self._transcribe(np.concatenate(utterance)).strip()
            utterance.clear()
            if text:
                segments.append(text)
                self._emit_result(list(segments))

        try:
            stream = sd.InputStream(samplerate=WHISPER_SAMPLE_RATE, channels=1, dtype='int16',
                                    blocksize=FRAME_SIZE, device=self.input_device,
                                    callback=audio_callback)
        except sd.PortAudioError as e:
            raise RecognitionError("audio-capture", f"Microphone could not be opened: {e}")

        _debug("Recognizer listening")
        with stream:
            while not self._stop_event.is_set():
                if not stream.active:
                    raise RecognitionError("audio-capture", "Microphone stream stopped")
                try:
                    frame = frames.get(timeout=0.1)
                except queue.Empty:
                    continue
                if len(frame) != FRAME_SIZE:
                    continue

                now = time.monotonic()
                if vad.is_speech(frame.tobytes(), WHISPER_SAMPLE_RATE):
                    utterance.append(frame)
                    silent_frames = 0
                    last_voice = now
                elif utterance:
                    utterance.append(frame)
                    silent_frames += 1
                    if silent_frames >= self.pause_frames:
                        close_utterance()
                        last_partial = now

                if utterance and now - last_partial >= self.partial_interval:
                    interim = self._transcribe(np.concatenate(utterance)).strip()
                    last_partial = now
                    if interim:
                        self._emit_result(segments + [interim])

                if not utterance and now - last_voice >= self.silence_timeout:
                    _debug(f"No speech for {self.silence_timeout}s")
                    self._emit_error(RecognitionError("no-speech"))
                    return

        # Asked to stop: keep what was said up to now
        if utterance:
            close_utterance()
