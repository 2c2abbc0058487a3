"""
Desktop capture devices.

Screen: mss. Camera: OpenCV. Microphone: sounddevice.
Device libraries are imported lazily so the coordination code (and its tests)
doesn't need PortAudio or a display.
"""

import queue
import threading
import time
from typing import Callable, List, Optional

import numpy as np

from errors import DeviceUnavailable, PermissionDenied
from logger import log_debug
from media.acquirer import DeviceProvider
from media.tracks import AUDIO, CAMERA, SCREEN, VIDEO, MediaTrack


def _debug(msg: str):
    log_debug("devices", msg)


class ScreenTrack(MediaTrack):
    """Grabs one monitor with mss on every read."""

    def __init__(self, monitor: int = 1):
        try:
            import mss
        except ImportError as e:
            raise DeviceUnavailable(SCREEN, f"Screen capture needs mss: {e}")

        self._mss = mss
        # mss handles are per-thread on Windows and X11
        self._local = threading.local()
        with mss.mss() as sct:
            if monitor >= len(sct.monitors):
                raise DeviceUnavailable(SCREEN, f"Monitor {monitor} not found ({len(sct.monitors) - 1} available)")
            self.geometry = dict(sct.monitors[monitor])
        self.monitor = monitor
        super().__init__(VIDEO, f"Screen {monitor}", SCREEN)

    @property
    def size(self):
        return self.geometry["width"], self.geometry["height"]

    def read(self) -> Optional[np.ndarray]:
        if not self.is_live:
            return None
        sct = getattr(self._local, "sct", None)
        if sct is None:
            sct = self._mss.mss()
            self._local.sct = sct
        try:
            shot = sct.grab(self.geometry)
        except self._mss.ScreenShotError as e:
            _debug(f"Screen grab failed: {e}")
            self._end("device-disconnected")
            return None
        # BGRA -> BGR
        return np.asarray(shot)[:, :, :3]


class CameraTrack(MediaTrack):
    """Keeps the latest webcam frame, read on a background thread."""

    MAX_FAILED_READS = 30

    def __init__(self, index: int = 0):
        try:
            import cv2
        except ImportError as e:
            raise DeviceUnavailable(CAMERA, f"Camera capture needs opencv-python: {e}")

        cap = cv2.VideoCapture(index)
        if cap is None or not cap.isOpened():
            raise DeviceUnavailable(CAMERA, f"Camera {index} could not be opened")

        ok, frame = cap.read()
        if not ok:
            cap.release()
            raise DeviceUnavailable(CAMERA, f"Camera {index} returned no frames")

        self._cap = cap
        self._frame = frame
        self._frame_lock = threading.Lock()
        self._stop_event = threading.Event()
        super().__init__(VIDEO, f"Camera {index}", CAMERA)

        self._thread = threading.Thread(target=self._reader, name=f"camera-{index}", daemon=True)
        self._thread.start()

    def _reader(self):
        failed = 0
        while not self._stop_event.is_set():
            ok, frame = self._cap.read()
            if not ok:
                failed += 1
                if failed >= self.MAX_FAILED_READS:
                    _debug(f"{self.label}: {failed} failed reads, treating as disconnected")
                    self._end("device-disconnected")
                    return
                time.sleep(0.01)
                continue
            failed = 0
            with self._frame_lock:
                self._frame = frame

    def read(self) -> Optional[np.ndarray]:
        if not self.is_live:
            return None
        with self._frame_lock:
            return self._frame

    def _close(self):
        self._stop_event.set()
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=1.0)
        self._cap.release()


class MicrophoneTrack(MediaTrack):
    """Microphone audio queued from a sounddevice callback."""

    def __init__(self, sample_rate: int = 48000, device=None):
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise DeviceUnavailable("microphone", f"Audio capture needs sounddevice/PortAudio: {e}")

        self.sample_rate = sample_rate
        self.channels = 1
        self.queue: queue.Queue = queue.Queue()
        try:
            info = sd.query_devices(device, kind='input')
        except Exception as e:
            raise DeviceUnavailable("microphone", f"No microphone found: {e}")

        super().__init__(AUDIO, info['name'], CAMERA)
        try:
            self._stream = sd.InputStream(
                device=device,
                samplerate=sample_rate,
                channels=self.channels,
                dtype='int16',
                callback=self._callback,
                finished_callback=self._finished,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            raise DeviceUnavailable("microphone", f"Microphone could not be opened: {e}")

    def _callback(self, indata, frames, time_info, status):
        if status:
            _debug(f"{self.label}: callback status {status}")
        if self.is_live:
            self.queue.put(indata.flatten().copy())

    def _finished(self):
        # Fires on our own stop too; only a live track means the device went away
        if self.is_live:
            self._end("device-disconnected")

    def read(self) -> Optional[np.ndarray]:
        """Drain queued audio without blocking."""
        chunks = []
        while True:
            try:
                chunks.append(self.queue.get_nowait())
            except queue.Empty:
                break
        if chunks:
            return np.concatenate(chunks)
        return None

    def _close(self):
        try:
            self._stream.stop()
            self._stream.close()
        except Exception as e:
            _debug(f"{self.label}: error closing stream: {e}")


class LocalDeviceProvider(DeviceProvider):
    """
    Opens this machine's screen, webcam and microphone.

    ``confirm`` plays the part of a permission prompt: it receives "screen"
    or "camera" and returns False to decline.
    """

    def __init__(self, screen_monitor: int = 1, camera_index: int = 0, sample_rate: int = 48000,
                 confirm: Optional[Callable[[str], bool]] = None):
        self.screen_monitor = screen_monitor
        self.camera_index = camera_index
        self.sample_rate = sample_rate
        self.confirm = confirm

    def _ask(self, kind: str):
        if self.confirm is not None and not self.confirm(kind):
            raise PermissionDenied(kind)

    def open_screen(self) -> List[MediaTrack]:
        self._ask(SCREEN)
        return [ScreenTrack(self.screen_monitor)]

    def open_user_media(self, video: bool, audio: bool) -> List[MediaTrack]:
        self._ask(CAMERA)
        tracks: List[MediaTrack] = []
        try:
            if video:
                tracks.append(CameraTrack(self.camera_index))
            if audio:
                tracks.append(MicrophoneTrack(self.sample_rate))
        except Exception:
            for track in tracks:
                track.stop()
            raise
        return tracks
