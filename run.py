"""
Screenscribe - Record your screen and webcam with a transcript.

Entry point that loads .env and runs the command-line front end.
"""

import os
import sys
import subprocess
from pathlib import Path
from dotenv import load_dotenv


def run_screenscribe(argv):
    """Run the Screenscribe front end from the repository root."""
    load_dotenv(Path(__file__).parent / ".env")
    result = subprocess.run([sys.executable, os.path.join('src', 'main.py')] + argv,
                            cwd=Path(__file__).parent)
    return result.returncode


def run_server(argv):
    """Run the bundled transcription server."""
    load_dotenv(Path(__file__).parent / ".env")
    result = subprocess.run([sys.executable, os.path.join('src', 'server.py')] + argv,
                            cwd=Path(__file__).parent)
    return result.returncode


if __name__ == '__main__':
    # `python run.py server [--port N]` starts the transcription server instead
    if len(sys.argv) > 1 and sys.argv[1] == 'server':
        sys.exit(run_server(sys.argv[2:]))
    sys.exit(run_screenscribe(sys.argv[1:]))
