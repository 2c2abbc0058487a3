"""
Screenscribe command-line front end.

Records the screen and webcam, transcribes what is said, and saves the
recording on Enter. Run with ``python run.py`` or ``screenscribe``.
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Environment first: the HTTP clients read their defaults on import
load_dotenv(Path(__file__).parent.parent / ".env")

from compat import setup_cuda_dlls

# Must run before anything loads CUDA
setup_cuda_dlls()

import argparse
import asyncio
import functools
import threading
from typing import Optional

import pyperclip

from compat import clipboard_copy_fallback
from engines.factory import engine_from_config
from errors import CaptureError, UploadFailed
from logger import log_exception
from media.acquirer import MediaSourceAcquirer
from media.controller import RecordingController
from media.devices import LocalDeviceProvider
from media.recorder import FfmpegRecorder
from session import SessionOrchestrator, SessionResult
from states import TranscriptState, TranscriptStatus
from summary_client import TASKS, SummaryClient
from utils import ConfigManager, format_elapsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record your screen and webcam with a transcript")
    parser.add_argument("--mode", choices=["auto", "live", "clip_upload"],
                        help="Transcription strategy (default: from config)")
    parser.add_argument("--no-screen", action="store_true", help="Don't capture the screen")
    parser.add_argument("--no-camera", action="store_true", help="Don't capture the webcam")
    parser.add_argument("--no-audio", action="store_true", help="Don't capture the microphone")
    parser.add_argument("--language", help="Spoken language code, e.g. 'en'")
    parser.add_argument("--output-dir", help="Where to save the recording (default: Downloads)")
    parser.add_argument("--task", choices=TASKS, help="Run a summarization task on the transcript")
    parser.add_argument("--copy", action="store_true", help="Copy the transcript to the clipboard")
    parser.add_argument("--remember", action="store_true",
                        help="Save --mode and --language to src/config.yaml as the new defaults")
    return parser


def remember_choices(args):
    """Persist the transcription choices given on the command line."""
    if args.mode:
        ConfigManager.set_config_value(args.mode, 'transcription_options', 'mode')
    if args.language:
        ConfigManager.set_config_value(args.language, 'transcription_options', 'language')
    ConfigManager.save_config()


def ask_permission(kind: str) -> bool:
    """Terminal stand-in for the browser's device prompt."""
    answer = input(f"Allow Screenscribe to capture your {kind}? [Y/n] ").strip().lower()
    return answer in ("", "y", "yes")


def copy_to_clipboard(text: str) -> bool:
    try:
        pyperclip.copy(text)
        return True
    except pyperclip.PyperclipException:
        return clipboard_copy_fallback(text)


def print_error(error: Exception):
    code = getattr(error, "code", type(error).__name__)
    print(f"\n[Screenscribe] {code}: {error}", file=sys.stderr)


class TranscriptPrinter:
    """Prints the transcript whenever it changes."""

    def __init__(self):
        self._last = None

    def __call__(self, state: TranscriptState):
        if state.status is TranscriptStatus.UPLOADING:
            ConfigManager.console_print("\nTranscribing...")
            return
        text = state.visible_text
        if text and text != self._last:
            self._last = text
            ConfigManager.console_print(f"\n> {text}")


def build_orchestrator(args) -> SessionOrchestrator:
    capture = ConfigManager.get_config_section('capture_options')
    recording = ConfigManager.get_config_section('recording_options')
    transcription = dict(ConfigManager.get_config_section('transcription_options'))
    if args.mode:
        transcription['mode'] = args.mode
    if args.language:
        transcription['language'] = args.language

    provider = LocalDeviceProvider(
        screen_monitor=capture.get('screen_monitor', 1),
        camera_index=capture.get('camera_index', 0),
        sample_rate=capture.get('sample_rate', 48000),
        confirm=ask_permission if capture.get('ask_permission') else None,
    )
    recorder_factory = functools.partial(
        FfmpegRecorder,
        frame_rate=capture.get('frame_rate', 15),
        picture_in_picture=recording.get('picture_in_picture', True),
        overlay_scale=recording.get('overlay_scale', 0.25),
        sample_rate=capture.get('sample_rate', 48000),
    )
    controller = RecordingController(
        recorder_factory,
        mime_type=recording.get('mime_type', 'video/webm'),
        timeslice=recording.get('timeslice', 1.0),
        downloads_dir=args.output_dir or recording.get('downloads_folder'),
        filename=recording.get('filename', 'recording.webm'),
    )
    engine = engine_from_config(
        transcription,
        api_token=os.environ.get("SCREENSCRIBE_API_TOKEN"),
        server_url=os.environ.get("SCREENSCRIBE_SERVER_URL"),
    )
    engine.add_listener(TranscriptPrinter())

    def show_elapsed(ticks: int):
        print(f"\r[{format_elapsed(ticks)}] recording", end="", flush=True)

    return SessionOrchestrator(
        MediaSourceAcquirer(provider),
        controller,
        engine,
        request_screen=capture.get('request_screen', True) and not args.no_screen,
        request_camera=capture.get('request_camera', True) and not args.no_camera,
        want_audio=capture.get('want_audio', True) and not args.no_audio,
        on_error=print_error,
        on_tick=show_elapsed,
    )


def wait_for_enter(loop: asyncio.AbstractEventLoop) -> asyncio.Future:
    """
    Resolve once a line (or EOF) arrives on stdin.

    The read runs on a daemon thread so an interrupted wait doesn't keep
    the process alive until someone presses Enter.
    """
    entered = loop.create_future()

    def resolve():
        if not entered.done():
            entered.set_result(None)

    def read():
        try:
            sys.stdin.readline()
        except (EOFError, OSError, ValueError):
            pass
        try:
            loop.call_soon_threadsafe(resolve)
        except RuntimeError:
            # Loop already closed after an interrupt
            pass

    threading.Thread(target=read, name="stdin-wait", daemon=True).start()
    return entered


def save_recording(orchestrator: SessionOrchestrator, result: SessionResult):
    print(f"Recorded {format_elapsed(result.elapsed_seconds)}"
          + (" (partial: a device was lost)" if result.partial else ""))
    path = orchestrator.save_recording(result.recording)
    if path:
        print(f"Saved {path}")
    else:
        print("Nothing to save.")


async def run_session(orchestrator: SessionOrchestrator) -> Optional[SessionResult]:
    if not await orchestrator.begin_session():
        return None

    print(f"Recording with {orchestrator.engine.MODE.value} transcription. Press Enter to stop.")
    try:
        await wait_for_enter(asyncio.get_running_loop())
    except asyncio.CancelledError:
        # Ctrl+C still finalizes and saves what was recorded
        print("\nStopping...")
        save_recording(orchestrator, await orchestrator.end_session())
        raise
    print()
    result = await orchestrator.end_session()

    if result.transcript.status is TranscriptStatus.FAILED and hasattr(orchestrator.engine, "retry_upload"):
        answer = await asyncio.to_thread(input, "Transcription failed. Try the upload again? [y/N] ")
        if answer.strip().lower() in ("y", "yes"):
            try:
                result.transcript = await orchestrator.retry_transcription()
            except UploadFailed:
                pass
    return result


def summarize(text: str, task: str):
    options = ConfigManager.get_config_section('summary_options')
    client = SummaryClient(
        server_url=os.environ.get("SCREENSCRIBE_AI_URL") or options.get('server_url'),
        timeout=options.get('timeout', 120.0),
        api_token=os.environ.get("SCREENSCRIBE_API_TOKEN"),
    )
    print(f"\nRunning '{task}'...")
    result, success = client.run_task(text, task)
    if success:
        print(result)
    else:
        print(f"[Screenscribe] {task} failed: {result}", file=sys.stderr)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    ConfigManager.initialize()
    if args.remember:
        try:
            remember_choices(args)
        except (OSError, RuntimeError) as e:
            print(f"[Screenscribe] Could not save config: {e}", file=sys.stderr)

    try:
        orchestrator = build_orchestrator(args)
    except CaptureError as e:
        print_error(e)
        return 1

    try:
        result = asyncio.run(run_session(orchestrator))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except Exception as e:
        log_exception(e, "in main")
        print_error(e)
        return 1

    if result is None:
        return 1

    save_recording(orchestrator, result)

    text = result.transcript.text
    if text:
        print(f"\nTranscript:\n{text}")
        misc = ConfigManager.get_config_section('misc')
        if args.copy or misc.get('copy_to_clipboard'):
            if copy_to_clipboard(text):
                print("(copied to clipboard)")
        task = args.task or ConfigManager.get_config_value('summary_options', 'task')
        if task:
            summarize(text, task)
    else:
        print("\nNo transcript.")

    return 0 if not result.errors else 2


if __name__ == '__main__':
    sys.exit(main())
