"""
Pytest fixtures for Screenscribe tests.
"""

import os
import sys
import tempfile
from pathlib import Path
import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
# ...and this directory, for the shared fakes
sys.path.insert(0, str(Path(__file__).parent))

# Keep test runs out of the real logs folder
os.environ.setdefault("SCREENSCRIBE_LOG_DIR", tempfile.mkdtemp(prefix="screenscribe-logs-"))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_config():
    """Mock configuration for testing."""
    return {
        "capture_options": {
            "request_screen": True,
            "request_camera": True,
            "want_audio": True,
            "screen_monitor": 1,
            "camera_index": 0,
            "frame_rate": 15,
            "sample_rate": 48000,
            "ask_permission": False
        },
        "recording_options": {
            "mime_type": "video/webm",
            "filename": "recording.webm",
            "timeslice": 1.0,
            "downloads_folder": None,
            "picture_in_picture": True,
            "overlay_scale": 0.25
        },
        "transcription_options": {
            "mode": "clip_upload",
            "language": "en",
            "server_url": "http://127.0.0.1:8000",
            "upload_timeout": 120.0,
            "clip_sample_rate": 44100,
            "live": {
                "model": "base.en",
                "device": "cpu",
                "compute_type": "int8",
                "silence_timeout": 8.0,
                "vad_aggressiveness": 2
            }
        },
        "summary_options": {
            "server_url": "http://127.0.0.1:8000",
            "task": None,
            "timeout": 120.0
        },
        "misc": {
            "print_to_terminal": False,
            "copy_to_clipboard": False
        }
    }
