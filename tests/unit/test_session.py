"""
Tests for the session orchestrator: begin/end sequencing and cleanup.
"""

import asyncio

import pytest

from engines.clip_engine import ClipUploadEngine
from errors import AlreadyRecording, DeviceUnavailable, NotRecording, PermissionDenied
from fakes import FakeClient, FakeClipRecorder, FakeProvider, recorder_factory
from media.acquirer import MediaSourceAcquirer
from media.controller import RecordingController
from media.tracks import CAMERA
from session import SessionOrchestrator
from states import RecordingState, SessionStatus, TranscriptStatus
from timer import ElapsedTimer


def make_orchestrator(temp_dir, provider=None, clip_recorder=None, client=None, **recorder_options):
    reported = []
    provider = provider or FakeProvider()
    controller = RecordingController(recorder_factory(**recorder_options), downloads_dir=temp_dir)
    engine = ClipUploadEngine(clip_recorder or FakeClipRecorder(), client or FakeClient(("hello", True)))
    orchestrator = SessionOrchestrator(
        MediaSourceAcquirer(provider),
        controller,
        engine,
        timer=ElapsedTimer(interval=60.0),
        on_error=reported.append,
    )
    return orchestrator, provider, reported


class TestBegin:
    def test_begin_starts_everything(self, temp_dir):
        orchestrator, provider, reported = make_orchestrator(temp_dir)

        async def scenario():
            started = await orchestrator.begin_session()
            snapshot = (orchestrator.state.status, orchestrator.timer.running,
                        orchestrator.controller.is_recording, orchestrator.transcript.status)
            await orchestrator.end_session()
            return started, snapshot

        started, (status, timer_running, recording, transcript_status) = asyncio.run(scenario())

        assert started is True
        assert status is SessionStatus.RECORDING
        assert timer_running
        assert recording
        assert transcript_status is TranscriptStatus.CAPTURING
        assert reported == []
        # Screen, then camera and microphone
        assert len(provider.opened) == 3

    def test_second_begin_is_rejected(self, temp_dir):
        """A second begin while recording is refused and the first session is untouched."""
        orchestrator, _, reported = make_orchestrator(temp_dir)

        async def scenario():
            await orchestrator.begin_session()
            again = await orchestrator.begin_session()
            status = orchestrator.state.status
            await orchestrator.end_session()
            return again, status

        again, status = asyncio.run(scenario())

        assert again is False
        assert status is SessionStatus.RECORDING
        assert isinstance(reported[0], AlreadyRecording)

    def test_permission_denied_releases_sources(self, temp_dir):
        """Declining the camera prompt gives back the screen already granted."""
        orchestrator, provider, reported = make_orchestrator(temp_dir, provider=FakeProvider(deny=CAMERA))

        started = asyncio.run(orchestrator.begin_session())

        assert started is False
        assert orchestrator.state.status is SessionStatus.IDLE
        assert len(provider.opened) == 1
        assert provider.opened[0].closed
        assert isinstance(reported[0], PermissionDenied)
        assert not orchestrator.timer.running
        assert orchestrator.sources == []

    def test_recorder_start_failure_rolls_back(self, temp_dir):
        orchestrator, provider, reported = make_orchestrator(temp_dir, fail_start=True)

        started = asyncio.run(orchestrator.begin_session())

        assert started is False
        assert orchestrator.state.status is SessionStatus.IDLE
        assert all(track.closed for track in provider.opened)
        assert not orchestrator.controller.is_recording
        assert len(reported) == 1

    def test_transcription_failure_still_records(self, temp_dir):
        """A microphone the transcriber can't open doesn't stop the recording."""
        clip_recorder = FakeClipRecorder(fail_start=DeviceUnavailable("microphone"))
        orchestrator, _, reported = make_orchestrator(temp_dir, clip_recorder=clip_recorder)

        async def scenario():
            started = await orchestrator.begin_session()
            status = orchestrator.state.status
            result = await orchestrator.end_session()
            return started, status, result

        started, status, result = asyncio.run(scenario())

        assert started is True
        assert status is SessionStatus.RECORDING
        assert isinstance(reported[0], DeviceUnavailable)
        assert result.transcript.status is TranscriptStatus.FAILED

    def test_cancel_while_starting_rolls_back(self, temp_dir):
        """Cancelling begin while the microphone opens leaves nothing running and allows a new session."""
        clip_recorder = FakeClipRecorder(start_delay=0.3)
        orchestrator, provider, _ = make_orchestrator(temp_dir, clip_recorder=clip_recorder)

        async def scenario():
            task = asyncio.ensure_future(orchestrator.begin_session())
            await asyncio.sleep(0.1)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            snapshot = (orchestrator.state.status, orchestrator.timer.running,
                        orchestrator.controller.is_recording, orchestrator.transcript.status,
                        [track.closed for track in provider.opened])

            # Let the late microphone open finish and be closed again
            await asyncio.sleep(0.4)
            late_stopped = clip_recorder.stopped

            clip_recorder.start_delay = 0.0
            again = await orchestrator.begin_session()
            await orchestrator.end_session()
            return snapshot, late_stopped, again

        snapshot, late_stopped, again = asyncio.run(scenario())
        status, timer_running, recording, transcript_status, closed = snapshot

        assert status is SessionStatus.IDLE
        assert not timer_running
        assert not recording
        assert transcript_status is TranscriptStatus.FAILED
        assert closed and all(closed)
        assert late_stopped
        assert again is True


class TestEnd:
    def test_end_returns_recording_and_transcript(self, temp_dir):
        orchestrator, _, reported = make_orchestrator(temp_dir)

        async def scenario():
            await orchestrator.begin_session()
            orchestrator.controller._recorder.emit(b"chunk-1")
            orchestrator.controller._recorder.emit(b"chunk-2")
            return await orchestrator.end_session()

        result = asyncio.run(scenario())

        assert orchestrator.recording_session.state is RecordingState.IDLE
        assert len(orchestrator.recording_session.chunks) == 2
        assert result.recording.data == b"chunk-1chunk-2"
        assert not result.partial
        assert result.transcript.text == "hello"
        assert result.transcript.status is TranscriptStatus.COMPLETE
        assert result.errors == []
        assert orchestrator.state.status is SessionStatus.IDLE

    def test_end_releases_every_source(self, temp_dir):
        orchestrator, provider, _ = make_orchestrator(temp_dir)

        async def scenario():
            await orchestrator.begin_session()
            await orchestrator.end_session()

        asyncio.run(scenario())

        assert provider.opened
        assert all(track.closed for track in provider.opened)
        assert orchestrator.sources == []

    def test_end_before_begin(self, temp_dir):
        orchestrator, _, _ = make_orchestrator(temp_dir)

        with pytest.raises(NotRecording):
            asyncio.run(orchestrator.end_session())

        assert orchestrator.state.status is SessionStatus.IDLE

    def test_recorder_stop_failure_still_stops_the_rest(self, temp_dir):
        """If the recorder fails to stop, the timer and transcription are stopped anyway."""
        orchestrator, provider, reported = make_orchestrator(temp_dir, fail_stop=True)

        async def scenario():
            await orchestrator.begin_session()
            orchestrator.controller._recorder.emit(b"partial")
            return await orchestrator.end_session()

        result = asyncio.run(scenario())

        assert not orchestrator.timer.running
        assert result.transcript.status is TranscriptStatus.COMPLETE
        assert all(track.closed for track in provider.opened)
        assert any(isinstance(e, RuntimeError) for e in result.errors)
        assert result.recording.partial
        assert result.recording.data == b"partial"
        assert orchestrator.state.status is SessionStatus.IDLE

    def test_transcript_consumers_called(self, temp_dir):
        orchestrator, _, _ = make_orchestrator(temp_dir)
        received = []
        orchestrator.add_transcript_consumer(lambda state: received.append(state.text))

        async def scenario():
            await orchestrator.begin_session()
            await orchestrator.end_session()

        asyncio.run(scenario())

        assert received == ["hello"]

    def test_failing_consumer_is_reported(self, temp_dir):
        orchestrator, _, reported = make_orchestrator(temp_dir)

        def broken(state):
            raise RuntimeError("consumer broke")

        orchestrator.add_transcript_consumer(broken)

        async def scenario():
            await orchestrator.begin_session()
            return await orchestrator.end_session()

        result = asyncio.run(scenario())

        assert str(reported[-1]) == "consumer broke"
        assert result.recording is not None


class TestDeviceLoss:
    def test_device_loss_fails_session_and_keeps_partial(self, temp_dir):
        """Losing a device mid-session fails it; ending salvages what was captured."""
        orchestrator, _, reported = make_orchestrator(temp_dir)

        async def scenario():
            await orchestrator.begin_session()
            recorder = orchestrator.controller._recorder
            recorder.emit(b"before-unplug")
            recorder.fail(OSError("camera unplugged"))
            status = orchestrator.state.status
            timer_running = orchestrator.timer.running
            result = await orchestrator.end_session()
            return status, timer_running, result

        status, timer_running, result = asyncio.run(scenario())

        assert status is SessionStatus.FAILED
        assert not timer_running
        assert result.partial
        assert result.recording.data == b"before-unplug"
        assert reported[0].code == "device-disconnected"
        assert orchestrator.state.status is SessionStatus.IDLE

    def test_partial_recording_can_be_saved(self, temp_dir):
        orchestrator, _, _ = make_orchestrator(temp_dir)

        async def scenario():
            await orchestrator.begin_session()
            orchestrator.controller._recorder.emit(b"saved-bytes")
            orchestrator.controller._recorder.fail(OSError("gone"))
            return await orchestrator.end_session()

        result = asyncio.run(scenario())
        path = orchestrator.save_recording(result.recording)

        assert path.name == "recording.webm"
        assert path.read_bytes() == b"saved-bytes"


class TestRetry:
    def test_retry_after_failed_upload(self, temp_dir):
        client = FakeClient(("Connection error", False), ("recovered", True))
        orchestrator, _, reported = make_orchestrator(temp_dir, client=client)

        async def scenario():
            await orchestrator.begin_session()
            result = await orchestrator.end_session()
            retried = await orchestrator.retry_transcription()
            return result, retried

        result, retried = asyncio.run(scenario())

        assert result.transcript.status is TranscriptStatus.FAILED
        assert reported[0].code == "upload-failed"
        assert retried.text == "recovered"
        assert retried.status is TranscriptStatus.COMPLETE
