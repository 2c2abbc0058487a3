"""
Platform encoder wrapper.

``MediaRecorder`` is the small contract the recording controller relies on:
start it, receive ordered chunks through ``on_data``, hear about device loss
through ``on_error``, and await ``stop`` for the final flush.
``FfmpegRecorder`` implements it by piping raw frames and PCM into ffmpeg
and reading WebM from its stdout.
"""

import asyncio
import os
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Optional

import numpy as np

from compat import SUPPORTS_EXTRA_PIPES, find_ffmpeg
from errors import ConfigurationError, DeviceDisconnected, DeviceUnavailable
from logger import log_debug
from media.tracks import AUDIO, CompositeStream

DataCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


def _debug(msg: str):
    log_debug("recorder", msg)


class MediaRecorder(ABC):
    """Encodes a composite stream into a sequence of binary chunks."""

    mime_type = "video/webm"

    def __init__(self, stream: CompositeStream, on_data: DataCallback, on_error: ErrorCallback):
        self.stream = stream
        self.on_data = on_data
        self.on_error = on_error

    @abstractmethod
    def start(self, timeslice: Optional[float] = None) -> None:
        """Begin encoding. ``timeslice`` is the target seconds between chunks."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop encoding. Returns once the final chunk has been passed to ``on_data``."""


def overlay_picture_in_picture(canvas: np.ndarray, inset: np.ndarray,
                               scale: float = 0.25, margin: int = 16) -> np.ndarray:
    """Paste ``inset`` into the bottom-right corner of ``canvas`` (in place)."""
    import cv2

    height, width = canvas.shape[:2]
    inset_w = max(2, int(width * scale))
    inset_h = max(2, int(inset.shape[0] * inset_w / inset.shape[1]))
    inset_h = min(inset_h, height - 2 * margin)
    if inset_h <= 0 or inset_w >= width - 2 * margin:
        return canvas

    resized = cv2.resize(inset, (inset_w, inset_h), interpolation=cv2.INTER_AREA)
    top = height - inset_h - margin
    left = width - inset_w - margin
    canvas[top:top + inset_h, left:left + inset_w] = resized[:, :, :3]
    return canvas


class FfmpegRecorder(MediaRecorder):
    """
    WebM encoder backed by an ffmpeg subprocess.

    Video track 0 is the canvas; the webcam is composited on top when
    picture-in-picture is on. The first audio track is muxed in when the
    platform lets ffmpeg read a second pipe.
    """

    def __init__(self, stream: CompositeStream, on_data: DataCallback, on_error: ErrorCallback,
                 frame_rate: int = 15, picture_in_picture: bool = True,
                 overlay_scale: float = 0.25, sample_rate: int = 48000,
                 video_bitrate: str = "2M", ffmpeg_path: Optional[str] = None):
        super().__init__(stream, on_data, on_error)
        self.frame_rate = frame_rate
        self.picture_in_picture = picture_in_picture
        self.overlay_scale = overlay_scale
        self.sample_rate = sample_rate
        self.video_bitrate = video_bitrate
        self.ffmpeg_path = ffmpeg_path

        self._process: Optional[subprocess.Popen] = None
        self._audio_pipe = None
        self._threads = []
        self._reader: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._stderr_tail = deque(maxlen=20)
        self._failed = False
        self._frame_size = None

    # --- setup ---

    def _build_command(self, ffmpeg: str, video: bool, audio_source: Optional[str],
                       timeslice: float) -> list:
        cmd = [ffmpeg, "-hide_banner", "-loglevel", "error"]
        if video:
            width, height = self._frame_size
            cmd += [
                "-use_wallclock_as_timestamps", "1",
                "-f", "rawvideo", "-pix_fmt", "bgr24",
                "-s", f"{width}x{height}", "-framerate", str(self.frame_rate),
                "-i", "pipe:0",
            ]
        if audio_source:
            cmd += [
                "-use_wallclock_as_timestamps", "1",
                "-f", "s16le", "-ar", str(self.sample_rate), "-ac", "1",
                "-i", audio_source,
            ]
        if video:
            cmd += ["-c:v", "libvpx", "-deadline", "realtime", "-cpu-used", "8",
                    "-b:v", self.video_bitrate, "-pix_fmt", "yuv420p"]
        if audio_source:
            cmd += ["-c:a", "libopus"]
        cmd += [
            "-f", "webm",
            "-cluster_time_limit", str(int(timeslice * 1000)),
            "-flush_packets", "1",
            "pipe:1",
        ]
        return cmd

    def start(self, timeslice: Optional[float] = None) -> None:
        if self._process is not None:
            raise RuntimeError("Recorder already started")

        try:
            ffmpeg = self.ffmpeg_path or find_ffmpeg()
        except RuntimeError as e:
            raise DeviceUnavailable("encoder", str(e))

        primary = self.stream.primary_video
        audio_track = self.stream.audio_tracks[0] if self.stream.audio_tracks else None
        if primary is None and audio_track is None:
            raise ConfigurationError("Nothing to record: the stream has no video or audio track")

        if primary is not None:
            first = primary.read()
            if first is None:
                raise DeviceUnavailable(primary.source_kind, f"{primary.label} produced no frame")
            height, width = first.shape[:2]
            # yuv420p needs even dimensions
            self._frame_size = (width - width % 2, height - height % 2)

        audio_r = audio_w = None
        pass_fds = ()
        if primary is not None and audio_track is not None:
            if SUPPORTS_EXTRA_PIPES:
                audio_r, audio_w = os.pipe()
                pass_fds = (audio_r,)
            else:
                _debug("Platform can't pass an audio pipe; recording video only")
                audio_track = None

        if audio_r is not None:
            audio_source = f"pipe:{audio_r}"
        elif primary is None:
            audio_source = "pipe:0"
        else:
            audio_source = None
        cmd = self._build_command(ffmpeg, primary is not None, audio_source, timeslice or 1.0)
        _debug(f"Starting encoder: {' '.join(cmd)}")
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                pass_fds=pass_fds,
            )
        except OSError as e:
            if audio_r is not None:
                os.close(audio_r)
                os.close(audio_w)
            raise DeviceUnavailable("encoder", f"Could not start ffmpeg: {e}")

        if audio_r is not None:
            os.close(audio_r)
            self._audio_pipe = os.fdopen(audio_w, "wb", buffering=0)

        self._reader = threading.Thread(target=self._read_output, name="encoder-output", daemon=True)
        self._reader.start()
        self._spawn(self._drain_stderr, "encoder-stderr")

        if primary is not None:
            self._spawn(self._feed_video, "encoder-video")
            if audio_track is not None:
                self._spawn(lambda: self._feed_audio(audio_track, self._audio_pipe), "encoder-audio")
        else:
            self._spawn(lambda: self._feed_audio(audio_track, self._process.stdin), "encoder-audio")

        # Any track going away mid-recording fails the recording, the inset included
        for track in self.stream.tracks:
            track.add_ended_listener(self._on_track_ended)

    def _on_track_ended(self, track):
        kind = "microphone" if track.kind == AUDIO else track.source_kind
        self._fail(DeviceDisconnected(kind, f"{track.label} ended ({track.end_reason})"))

    def _spawn(self, target, name):
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    # --- worker threads ---

    def _fail(self, error: Exception):
        if self._failed or self._stopping.is_set():
            return
        self._failed = True
        _debug(f"Recorder failure: {error}")
        self.on_error(error)

    def _feed_video(self):
        primary = self.stream.primary_video
        inset = self.stream.preview_track if self.picture_in_picture else None
        if inset is primary:
            inset = None
        width, height = self._frame_size
        interval = 1.0 / self.frame_rate
        last = None
        next_at = time.monotonic()

        while not self._stopping.is_set():
            if not primary.is_live:
                self._fail(DeviceDisconnected(primary.source_kind, f"{primary.label} ended"))
                return
            frame = primary.read()
            if frame is None:
                frame = last
            if frame is None:
                time.sleep(interval)
                continue
            last = frame

            canvas = np.ascontiguousarray(frame[:height, :width, :3])
            if canvas.shape[0] != height or canvas.shape[1] != width:
                import cv2
                canvas = cv2.resize(frame[:, :, :3], (width, height))
            if inset is not None and inset.is_live:
                inset_frame = inset.read()
                if inset_frame is not None:
                    canvas = overlay_picture_in_picture(canvas.copy(), inset_frame, self.overlay_scale)

            try:
                self._process.stdin.write(canvas.tobytes())
            except (BrokenPipeError, ValueError, OSError) as e:
                self._fail(DeviceUnavailable("encoder", f"Encoder stopped accepting frames: {e}"))
                return

            next_at += interval
            delay = next_at - time.monotonic()
            if delay > 0:
                time.sleep(delay)
            else:
                next_at = time.monotonic()

    def _feed_audio(self, track, pipe):
        while not self._stopping.is_set():
            if not track.is_live:
                self._fail(DeviceDisconnected("microphone", f"{track.label} ended"))
                return
            samples = track.read()
            if samples is not None and len(samples):
                try:
                    pipe.write(samples.astype(np.int16).tobytes())
                except (BrokenPipeError, ValueError, OSError) as e:
                    self._fail(DeviceUnavailable("encoder", f"Encoder stopped accepting audio: {e}"))
                    return
            time.sleep(0.02)

    def _read_output(self):
        stdout = self._process.stdout
        while True:
            chunk = stdout.read1(64 * 1024)
            if not chunk:
                break
            self.on_data(chunk)
        _debug("Encoder output closed")

    def _drain_stderr(self):
        for line in self._process.stderr:
            self._stderr_tail.append(line.decode("utf-8", errors="replace").rstrip())

    # --- shutdown ---

    def _close_inputs(self):
        for pipe in (self._process.stdin, self._audio_pipe):
            if pipe is None:
                continue
            try:
                pipe.close()
            except OSError:
                pass

    def _finish(self, timeout: float) -> int:
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._close_inputs()
        if self._reader is not None:
            self._reader.join(timeout=timeout)
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._process.kill()
            return self._process.wait()

    async def stop(self, timeout: float = 10.0) -> None:
        if self._process is None:
            return
        self._stopping.set()
        returncode = await asyncio.to_thread(self._finish, timeout)
        _debug(f"Encoder exited with {returncode}")
        if returncode != 0:
            detail = "; ".join(self._stderr_tail) or f"exit code {returncode}"
            raise DeviceUnavailable("encoder", f"ffmpeg failed: {detail}")
