"""
Tests for the session and transcript transition functions.
"""

import pytest

from errors import AlreadyRecording, NotRecording
from states import (
    ClipEvent,
    LiveEvent,
    SessionEvent,
    SessionState,
    SessionStatus,
    TranscriptMode,
    TranscriptState,
    TranscriptStatus,
    clip_transition,
    live_transition,
    session_transition,
)


class TestSessionTransition:
    def test_happy_path(self):
        """Idle -> Starting -> Recording -> Stopping -> Idle."""
        status = SessionStatus.IDLE
        for event, expected in [
            (SessionEvent.BEGIN, SessionStatus.STARTING),
            (SessionEvent.STARTED, SessionStatus.RECORDING),
            (SessionEvent.END, SessionStatus.STOPPING),
            (SessionEvent.ENDED, SessionStatus.IDLE),
        ]:
            status = session_transition(status, event)
            assert status is expected

    @pytest.mark.parametrize("status", [SessionStatus.STARTING, SessionStatus.RECORDING,
                                        SessionStatus.STOPPING, SessionStatus.FAILED])
    def test_begin_while_active_rejected(self, status):
        """A second session is rejected, not queued."""
        with pytest.raises(AlreadyRecording):
            session_transition(status, SessionEvent.BEGIN)

    @pytest.mark.parametrize("status", [SessionStatus.IDLE, SessionStatus.STARTING, SessionStatus.STOPPING])
    def test_end_before_recording_rejected(self, status):
        """Stop is only valid once the session is recording."""
        with pytest.raises(NotRecording):
            session_transition(status, SessionEvent.END)

    def test_device_lost_then_end(self):
        """A failed session can still be ended (to salvage its output)."""
        status = session_transition(SessionStatus.RECORDING, SessionEvent.DEVICE_LOST)
        assert status is SessionStatus.FAILED
        assert session_transition(status, SessionEvent.END) is SessionStatus.STOPPING

    def test_unrelated_event_is_an_error(self):
        with pytest.raises(ValueError):
            session_transition(SessionStatus.IDLE, SessionEvent.ENDED)

    def test_is_active(self):
        """Only Starting and Recording count as an active session."""
        assert SessionState(status=SessionStatus.STARTING).is_active
        assert SessionState(status=SessionStatus.RECORDING).is_active
        assert not SessionState(status=SessionStatus.FAILED).is_active
        assert not SessionState().is_active


class TestLiveTransition:
    def test_end_while_recording_restarts(self):
        """An unexpected end during a recording session moves to Restarting."""
        assert live_transition(TranscriptStatus.LISTENING, LiveEvent.END, True) is TranscriptStatus.RESTARTING

    def test_end_after_session_goes_idle(self):
        assert live_transition(TranscriptStatus.LISTENING, LiveEvent.END, False) is TranscriptStatus.IDLE

    def test_second_end_while_restarting_ignored(self):
        """Only one restart can be in flight."""
        assert live_transition(TranscriptStatus.RESTARTING, LiveEvent.END, True) is TranscriptStatus.RESTARTING

    def test_restarted_returns_to_listening(self):
        assert live_transition(TranscriptStatus.RESTARTING, LiveEvent.RESTARTED, True) is TranscriptStatus.LISTENING
        assert live_transition(TranscriptStatus.IDLE, LiveEvent.RESTARTED, True) is TranscriptStatus.IDLE

    def test_fatal_error_is_sticky(self):
        """Failed survives later ends and an explicit stop."""
        status = live_transition(TranscriptStatus.LISTENING, LiveEvent.FATAL_ERROR, True)
        assert status is TranscriptStatus.FAILED
        assert live_transition(status, LiveEvent.END, True) is TranscriptStatus.FAILED
        assert live_transition(status, LiveEvent.STOP, False) is TranscriptStatus.FAILED

    def test_stop_goes_idle(self):
        assert live_transition(TranscriptStatus.RESTARTING, LiveEvent.STOP, True) is TranscriptStatus.IDLE


class TestClipTransition:
    def test_happy_path(self):
        status = TranscriptStatus.IDLE
        for event, expected in [
            (ClipEvent.START, TranscriptStatus.CAPTURING),
            (ClipEvent.CAPTURED, TranscriptStatus.UPLOADING),
            (ClipEvent.UPLOAD_OK, TranscriptStatus.COMPLETE),
        ]:
            status = clip_transition(status, event)
            assert status is expected

    def test_failed_upload_can_be_retried(self):
        status = clip_transition(TranscriptStatus.UPLOADING, ClipEvent.UPLOAD_FAILED)
        assert status is TranscriptStatus.FAILED
        assert clip_transition(status, ClipEvent.RETRY) is TranscriptStatus.UPLOADING

    def test_inapplicable_event_leaves_status(self):
        assert clip_transition(TranscriptStatus.IDLE, ClipEvent.UPLOAD_OK) is TranscriptStatus.IDLE
        assert clip_transition(TranscriptStatus.CAPTURING, ClipEvent.RETRY) is TranscriptStatus.CAPTURING


class TestTranscriptState:
    def test_text_hidden_while_uploading(self):
        """The transcript is unavailable while the upload is in flight."""
        state = TranscriptState(mode=TranscriptMode.CLIP_UPLOAD, status=TranscriptStatus.UPLOADING, text="old")
        assert state.visible_text is None
        state.status = TranscriptStatus.FAILED
        assert state.visible_text == "old"

    def test_snapshot_is_independent(self):
        state = TranscriptState(mode=TranscriptMode.LIVE, text="a")
        snap = state.snapshot()
        state.text = "b"
        assert snap.text == "a"
