"""
Tests for the recording lifecycle and the chunk buffer.
"""

import asyncio

import pytest

from errors import AlreadyRecording, ConfigurationError, DeviceDisconnected, NotRecording
from fakes import FakeTrack, recorder_factory
from media.controller import RecordingController
from media.tracks import CompositeStream
from states import RecordingState


def make_stream():
    return CompositeStream((FakeTrack(),))


def make_controller(temp_dir=None, **recorder_options):
    return RecordingController(recorder_factory(**recorder_options), downloads_dir=temp_dir)


class TestStartStop:
    def test_start_twice_rejected(self):
        """A second start fails and leaves the running session untouched."""
        controller = make_controller()
        session = controller.start(make_stream())
        controller._recorder.emit(b"abc")

        with pytest.raises(AlreadyRecording):
            controller.start(make_stream())

        assert controller.session is session
        assert session.state is RecordingState.RECORDING
        assert session.chunks == [b"abc"]

    def test_stop_before_start_rejected(self):
        with pytest.raises(NotRecording):
            asyncio.run(make_controller().stop())

    def test_stop_twice_rejected(self):
        async def scenario():
            controller = make_controller()
            controller.start(make_stream())
            await controller.stop()
            with pytest.raises(NotRecording):
                await controller.stop()

        asyncio.run(scenario())

    def test_empty_stream_rejected(self):
        with pytest.raises(ConfigurationError):
            make_controller().start(CompositeStream(()))

    def test_recorder_start_failure_leaves_controller_idle(self):
        controller = make_controller(fail_start=True)
        with pytest.raises(OSError):
            controller.start(make_stream())
        assert not controller.is_recording
        assert controller.session is None

    def test_chunks_in_order_and_empty_ignored(self):
        """Zero-length chunks are dropped; the final flush is included."""
        async def scenario():
            controller = make_controller(final_chunk=b"!")
            controller.start(make_stream())
            recorder = controller._recorder
            recorder.emit(b"he")
            recorder.emit(b"")
            recorder.emit(b"llo")
            recording = await controller.stop()
            return controller, recording

        controller, recording = asyncio.run(scenario())
        assert recording.data == b"hello!"
        assert recording.mime_type == "video/webm"
        assert not recording.partial
        assert controller.session.state is RecordingState.IDLE

    def test_new_session_drops_old_chunks(self):
        async def scenario():
            controller = make_controller()
            controller.start(make_stream())
            old_recorder = controller._recorder
            old_recorder.emit(b"old")
            await controller.stop()

            controller.start(make_stream())
            # A late chunk from the previous recorder must not leak in
            old_recorder.emit(b"late")
            controller._recorder.emit(b"new")
            return await controller.stop()

        assert asyncio.run(scenario()).data == b"new"


class TestFailureAndSalvage:
    def test_device_loss_marks_failed_and_salvages(self):
        """Mid-recording device loss keeps the partial buffer for saving."""
        failures = []

        async def scenario():
            controller = make_controller()
            controller.on_failure = failures.append
            session = controller.start(make_stream())
            controller._recorder.emit(b"part")
            controller._recorder.fail(RuntimeError("camera unplugged"))

            assert session.state is RecordingState.FAILED
            assert controller.salvage().data == b"part"
            recording = await controller.stop()
            return session, recording

        session, recording = asyncio.run(scenario())
        assert recording.partial
        assert recording.data == b"part"
        assert session.state is RecordingState.FAILED
        assert len(failures) == 1
        assert isinstance(failures[0], DeviceDisconnected)

    def test_recorder_stop_failure_still_materializes(self):
        async def scenario():
            controller = make_controller(fail_stop=True)
            controller.start(make_stream())
            controller._recorder.emit(b"data")
            with pytest.raises(RuntimeError):
                await controller.stop()
            return controller

        controller = asyncio.run(scenario())
        assert controller.recording.data == b"data"
        assert controller.recording.partial
        assert not controller.is_recording


class TestSave:
    def _recorded(self, temp_dir, data=b"webm-bytes"):
        async def scenario():
            controller = make_controller(temp_dir)
            controller.start(make_stream())
            if data:
                controller._recorder.emit(data)
            await controller.stop()
            return controller

        return asyncio.run(scenario())

    def test_save_twice_gives_identical_downloads(self, temp_dir):
        """Two saves produce two files with byte-identical payloads."""
        controller = self._recorded(temp_dir)

        first = controller.save()
        second = controller.save()

        assert first.name == "recording.webm"
        assert second.name == "recording (1).webm"
        assert first.read_bytes() == second.read_bytes() == b"webm-bytes"
        assert controller.session.state is RecordingState.SAVED

    def test_save_with_nothing_recorded(self, temp_dir):
        """An empty buffer saves nothing."""
        controller = self._recorded(temp_dir, data=b"")
        assert controller.save() is None
        assert list(temp_dir.iterdir()) == []

    def test_save_before_any_recording(self, temp_dir):
        assert make_controller(temp_dir).save() is None

    def test_clear_while_recording_rejected(self):
        controller = make_controller()
        controller.start(make_stream())
        with pytest.raises(AlreadyRecording):
            controller.clear()

    def test_clear_drops_session(self, temp_dir):
        controller = self._recorded(temp_dir)
        controller.clear()
        assert controller.session is None
        assert controller.save() is None
