"""
Platform-specific utilities for cross-platform compatibility.

Provides abstractions for Windows/macOS/Linux differences:
- CUDA DLL setup (Windows-only)
- ffmpeg discovery
- Where downloads go
- Clipboard fallback (clip.exe vs pbcopy)
- Whether the encoder can take audio on an extra pipe
"""

import sys
import os
import shutil
import subprocess
from pathlib import Path

IS_WINDOWS = sys.platform == 'win32'
IS_MACOS = sys.platform == 'darwin'
IS_LINUX = sys.platform.startswith('linux')

# ffmpeg can read extra inputs from inherited descriptors (pipe:N) only on POSIX
SUPPORTS_EXTRA_PIPES = not IS_WINDOWS


def setup_cuda_dlls():
    """Add cuDNN and cuBLAS DLL directories to PATH. Windows-only, no-op elsewhere."""
    if not IS_WINDOWS:
        return
    try:
        import site
        paths_to_add = []
        for sp in [site.getusersitepackages()] + site.getsitepackages():
            cudnn_bin = os.path.join(sp, "nvidia", "cudnn", "bin")
            cublas_bin = os.path.join(sp, "nvidia", "cublas", "bin")
            if os.path.exists(cudnn_bin):
                paths_to_add.append(cudnn_bin)
            if os.path.exists(cublas_bin):
                paths_to_add.append(cublas_bin)
        if paths_to_add:
            os.environ['PATH'] = os.pathsep.join(paths_to_add) + os.pathsep + os.environ.get('PATH', '')
    except Exception:
        pass


def find_ffmpeg():
    """Find ffmpeg executable on the system."""
    on_path = shutil.which("ffmpeg")
    if on_path:
        return on_path
    # Windows: check winget install location
    if IS_WINDOWS:
        local_app_data = os.environ.get('LOCALAPPDATA', '')
        if local_app_data:
            winget_glob = Path(local_app_data) / "Microsoft" / "WinGet" / "Packages"
            if winget_glob.exists():
                for ffmpeg_bin in winget_glob.rglob("ffmpeg.exe"):
                    return str(ffmpeg_bin)
    # macOS: check Homebrew
    if IS_MACOS:
        for brew_path in ["/opt/homebrew/bin/ffmpeg", "/usr/local/bin/ffmpeg"]:
            if os.path.exists(brew_path):
                return brew_path
    raise RuntimeError(
        "ffmpeg not found. Install with: "
        + ("brew install ffmpeg" if IS_MACOS else "winget install ffmpeg" if IS_WINDOWS else "apt install ffmpeg")
    )


def get_downloads_dir() -> Path:
    """The user's Downloads folder, falling back to the home directory."""
    downloads = Path.home() / "Downloads"
    if downloads.is_dir():
        return downloads
    return Path.home()


def clipboard_copy_fallback(text):
    """Platform-specific clipboard fallback when pyperclip fails."""
    if IS_WINDOWS:
        command = ['clip']
        payload = text.encode('utf-16le')
    elif IS_MACOS:
        command = ['pbcopy']
        payload = text.encode('utf-8')
    else:
        return False
    try:
        process = subprocess.Popen(command, stdin=subprocess.PIPE)
        process.communicate(payload)
        return process.returncode == 0
    except OSError:
        return False
