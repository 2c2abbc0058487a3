"""
Tests for the command-line session loop.
"""

import asyncio

import pytest

import main
from engines.clip_engine import ClipUploadEngine
from fakes import FakeClient, FakeClipRecorder, FakeProvider, recorder_factory
from media.acquirer import MediaSourceAcquirer
from media.controller import RecordingController
from session import SessionOrchestrator
from states import SessionStatus
from timer import ElapsedTimer


def make_orchestrator(temp_dir):
    controller = RecordingController(recorder_factory(), downloads_dir=temp_dir)
    engine = ClipUploadEngine(FakeClipRecorder(), FakeClient(("hello", True)))
    return SessionOrchestrator(
        MediaSourceAcquirer(FakeProvider()),
        controller,
        engine,
        timer=ElapsedTimer(interval=60.0),
        on_error=lambda e: None,
    )


class TestRunSession:
    def test_interrupt_while_waiting_saves_recording(self, temp_dir, monkeypatch):
        """Ctrl+C at the 'Press Enter' prompt ends the session and keeps the recording."""
        monkeypatch.setattr(main, "wait_for_enter", lambda loop: loop.create_future())
        orchestrator = make_orchestrator(temp_dir)

        async def scenario():
            task = asyncio.ensure_future(main.run_session(orchestrator))
            await asyncio.sleep(0.05)
            orchestrator.controller._recorder.emit(b"said-before-ctrl-c")
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert orchestrator.state.status is SessionStatus.IDLE
        assert not orchestrator.timer.running
        assert (temp_dir / "recording.webm").read_bytes() == b"said-before-ctrl-c"

    def test_enter_ends_session(self, temp_dir, monkeypatch):
        async def pressed(loop):
            return None

        monkeypatch.setattr(main, "wait_for_enter", lambda loop: pressed(loop))
        orchestrator = make_orchestrator(temp_dir)

        result = asyncio.run(main.run_session(orchestrator))

        assert result.transcript.text == "hello"
        assert orchestrator.state.status is SessionStatus.IDLE
