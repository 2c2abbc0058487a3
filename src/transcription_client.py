"""
Transcription Client

Uploads recorded audio clips to the Screenscribe transcription server
(or any service speaking the same ``POST /transcribe/`` protocol).

For a remote server, set the SCREENSCRIBE_SERVER_URL environment variable:
    export SCREENSCRIBE_SERVER_URL=http://100.x.x.x:8000
"""

import mimetypes
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import requests

from logger import LOGS_DIR, log_debug
from media.clip_recorder import AudioClip


def _debug(msg: str):
    log_debug("client", msg)


# Support remote server via environment variable
DEFAULT_SERVER_URL = os.environ.get("SCREENSCRIBE_SERVER_URL", "http://127.0.0.1:8000")

# API token for authentication (optional - if not set, no auth sent)
DEFAULT_API_TOKEN = os.environ.get("SCREENSCRIBE_API_TOKEN")


def _validate_server_url(url: str) -> str:
    """Validate server URL has valid scheme and netloc.

    Args:
        url: The server URL to validate

    Returns:
        The validated URL (stripped of trailing slash)

    Raises:
        ValueError: If URL is malformed
    """
    from urllib.parse import urlparse
    parsed = urlparse(url)

    if parsed.scheme not in ("http", "https"):
        raise ValueError(
            f"Invalid server URL: must start with http:// or https:// (got '{url}')"
        )

    if not parsed.netloc or not parsed.hostname:
        raise ValueError(
            f"Invalid server URL: missing host (got '{url}')"
        )

    return url.rstrip("/")


def _error_detail(response: requests.Response) -> str:
    """The server's own error message, as close to verbatim as possible."""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or response.reason or ""
    if isinstance(data, dict) and "detail" in data:
        return str(data["detail"])
    return str(data)


class TranscriptionClient:
    """Client for the speech-to-text upload endpoint."""

    def __init__(self, server_url: Optional[str] = None, timeout: float = 120.0,
                 api_token: Optional[str] = DEFAULT_API_TOKEN):
        self.server_url = _validate_server_url(server_url or DEFAULT_SERVER_URL)
        self.timeout = timeout  # Read timeout
        self.connect_timeout = 5.0  # Connection timeout (fail fast if server unreachable)
        self.api_token = api_token

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for requests, including API token if configured."""
        headers = {}
        if self.api_token:
            headers["X-API-Token"] = self.api_token
        return headers

    def _save_failed_clip(self, clip: AudioClip, reason: str) -> Optional[Path]:
        """Keep the clip in the logs folder when the upload fails, so it can be re-sent by hand."""
        try:
            LOGS_DIR.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            path = LOGS_DIR / f"failed_audio_{reason}_{timestamp}{Path(clip.filename).suffix}"
            path.write_bytes(clip.data)
            _debug(f"  SAVED failed clip to {path} ({len(clip)} bytes)")
            return path
        except OSError as e:
            _debug(f"  Failed to save clip: {e}")
            return None

    def is_server_available(self) -> bool:
        """Check if the transcription server is running and ready."""
        return bool(self.get_status().get("ready", False))

    def get_status(self) -> dict:
        """Get server status."""
        try:
            response = requests.get(
                f"{self.server_url}/status",
                timeout=2.0,
                headers=self._get_headers()
            )
            if response.status_code == 200:
                return response.json()
        except requests.RequestException:
            pass
        return {"status": "unavailable", "ready": False}

    def transcribe_clip(self, clip: AudioClip, language: Optional[str] = "en") -> Tuple[str, bool]:
        """
        Upload one clip and return the server's transcript.

        Sent as multipart form data: the audio in a ``file`` field plus a
        ``language`` field. Any non-2xx answer is a failure; the server's
        message comes back as the text.

        Returns:
            Tuple of (transcription text or error message, success boolean)
        """
        url = f"{self.server_url}/transcribe/"
        files = {"file": (clip.filename, clip.data, clip.mime_type)}
        data = {"language": language or "en"}

        _debug(f"POST {url} ({len(clip)} bytes, language={data['language']})")
        started = time.monotonic()
        try:
            response = requests.post(
                url,
                files=files,
                data=data,
                timeout=(self.connect_timeout, self.timeout),  # (connect, read) timeouts
                headers=self._get_headers()
            )
        except requests.Timeout:
            _debug("  TIMEOUT")
            self._save_failed_clip(clip, "timeout")
            return "Transcription timed out", False
        except requests.RequestException as e:
            _debug(f"  REQUEST ERROR: {e}")
            self._save_failed_clip(clip, "connection_error")
            return f"Connection error: {e}", False

        _debug(f"  Response received: status={response.status_code} in {time.monotonic() - started:.1f}s")
        if not 200 <= response.status_code < 300:
            self._save_failed_clip(clip, f"http_{response.status_code}")
            return f"Server error {response.status_code}: {_error_detail(response)}", False

        try:
            text = response.json().get("transcription", "")
        except (ValueError, AttributeError):
            return "Server returned an invalid response", False
        _debug(f"  Success: {len(text)} chars")
        return text, True

    def transcribe_file(self, path, language: Optional[str] = "en") -> Tuple[str, bool]:
        """Upload an audio file from disk (e.g. a clip kept after a failed upload)."""
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            return f"Failed to read audio: {e}", False
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return self.transcribe_clip(AudioClip(data=data, filename=path.name, mime_type=mime_type), language)

    def get_failed_audio_files(self, max_age_minutes: int = 60) -> List[Path]:
        """Clips kept after failed uploads, newest first."""
        if not LOGS_DIR.exists():
            return []
        cutoff = time.time() - max_age_minutes * 60
        files = [p for p in LOGS_DIR.glob("failed_audio_*") if p.stat().st_mtime >= cutoff]
        return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)
