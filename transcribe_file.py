#!/usr/bin/env python3
"""
Screenscribe Audio File Transcriber
Uploads an audio file to the transcription server, the same way a recorded
clip is uploaded. Handy for re-sending a clip kept after a failed upload.

Usage:
    python transcribe_file.py <audio_file> [--language en]
    python transcribe_file.py logs/failed_audio_timeout_20250101_120000.mp3
    python transcribe_file.py --failed     # list clips kept after failed uploads

Requires:
    - Screenscribe server running (127.0.0.1:8000 or set SCREENSCRIBE_SERVER_URL)
"""

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")
sys.path.insert(0, str(Path(__file__).parent / "src"))

from transcription_client import TranscriptionClient


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Transcribe an audio file with the Screenscribe server")
    parser.add_argument("audio_file", nargs="?", help="Audio file (.mp3, .wav, .ogg, .webm, ...)")
    parser.add_argument("--language", default="en", help="Spoken language code")
    parser.add_argument("--server", help="Server URL (default: SCREENSCRIBE_SERVER_URL)")
    parser.add_argument("--failed", action="store_true", help="List clips kept after failed uploads")
    args = parser.parse_args(argv)

    try:
        client = TranscriptionClient(server_url=args.server)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.failed:
        for path in client.get_failed_audio_files(max_age_minutes=7 * 24 * 60):
            print(path)
        return 0

    if not args.audio_file:
        parser.print_usage()
        return 1
    if not Path(args.audio_file).exists():
        print(f"Error: File not found: {args.audio_file}", file=sys.stderr)
        return 1

    text, success = client.transcribe_file(args.audio_file, args.language)
    if not success:
        print(f"Error: {text}", file=sys.stderr)
        return 1
    print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
