"""
Engine factory for creating transcription engines.

Engines register under their transcript mode. ``detect_capability`` picks a
mode once, at configuration time, from what is actually installed.
"""

from typing import Dict, List, Optional, Type

from errors import ConfigurationError, EngineUnsupported
from states import TranscriptMode
from .base import TranscriptionEngine


# Registry of available engines (populated by register_engine)
_engine_registry: Dict[str, Type[TranscriptionEngine]] = {}

AUTO = "auto"


def register_engine(engine_class: Type[TranscriptionEngine]) -> Type[TranscriptionEngine]:
    """
    Register an engine class in the registry.

    Use as a decorator:
        @register_engine
        class MyEngine(TranscriptionEngine):
            MODE = TranscriptMode.LIVE
    """
    _engine_registry[engine_class.MODE.value] = engine_class
    return engine_class


def _mode_id(mode) -> str:
    return mode.value if isinstance(mode, TranscriptMode) else str(mode)


def get_available_engines() -> List[str]:
    """
    Get list of engine modes that are available (dependencies installed).

    Returns:
        List of mode IDs that can be used
    """
    available = []
    for mode_id, engine_class in _engine_registry.items():
        if engine_class.is_available():
            available.append(mode_id)
    return available


def is_engine_available(mode) -> bool:
    """
    Check if a specific engine is available.

    Returns:
        True if engine is registered and dependencies are installed
    """
    mode_id = _mode_id(mode)
    if mode_id not in _engine_registry:
        return False
    return _engine_registry[mode_id].is_available()


def get_engine_class(mode) -> Optional[Type[TranscriptionEngine]]:
    """Get the class registered for a mode (without instantiating)."""
    return _engine_registry.get(_mode_id(mode))


def detect_capability(requested: str = AUTO) -> TranscriptMode:
    """
    Resolve the configured mode to the variant this runtime can run.

    ``auto`` prefers live recognition and falls back to clip upload.

    Raises:
        EngineUnsupported: an explicitly requested engine can't run here
        ConfigurationError: unknown mode
    """
    if requested == AUTO:
        if is_engine_available(TranscriptMode.LIVE):
            return TranscriptMode.LIVE
        return TranscriptMode.CLIP_UPLOAD

    try:
        mode = TranscriptMode(requested)
    except ValueError:
        options = [AUTO] + [m.value for m in TranscriptMode]
        raise ConfigurationError(f"Unknown transcription mode '{requested}'. Options: {options}")

    engine_class = get_engine_class(mode)
    if engine_class is None or not engine_class.is_available():
        hint = engine_class.get_install_hint() if engine_class else "No engine is registered for it."
        raise EngineUnsupported(mode.value, hint)
    return mode


def create_engine(mode, **kwargs) -> TranscriptionEngine:
    """
    Create an instance of the engine registered for ``mode``.

    Raises:
        EngineUnsupported: If engine is not available
        ConfigurationError: If the mode is unknown
    """
    mode_id = _mode_id(mode)
    if mode_id not in _engine_registry:
        available = list(_engine_registry.keys())
        raise ConfigurationError(f"Unknown engine '{mode_id}'. Available: {available}")

    engine_class = _engine_registry[mode_id]

    if not engine_class.is_available():
        raise EngineUnsupported(mode_id, engine_class.get_install_hint())

    return engine_class(**kwargs)


def engine_from_config(options: dict, api_token: Optional[str] = None,
                       server_url: Optional[str] = None, on_error=None) -> TranscriptionEngine:
    """
    Build the configured engine with its production collaborators.

    Args:
        options: the ``transcription_options`` config section
        api_token: sent with clip uploads
        server_url: overrides ``options['server_url']``
    """
    mode = detect_capability(options.get('mode') or AUTO)
    language = options.get('language') or 'en'

    if mode is TranscriptMode.LIVE:
        from .whisper_recognizer import WhisperRecognizer
        live = options.get('live') or {}
        recognizer = WhisperRecognizer(
            model_name=live.get('model', 'base.en'),
            device=live.get('device', 'cpu'),
            compute_type=live.get('compute_type', 'int8'),
            language=language,
            silence_timeout=live.get('silence_timeout', 8.0),
            vad_aggressiveness=live.get('vad_aggressiveness', 2),
        )
        return create_engine(mode, recognizer=recognizer, on_error=on_error)

    from media.clip_recorder import MicrophoneClipRecorder
    from transcription_client import TranscriptionClient
    client = TranscriptionClient(
        server_url=server_url or options.get('server_url'),
        timeout=options.get('upload_timeout', 120.0),
        api_token=api_token,
    )
    clip_recorder = MicrophoneClipRecorder(sample_rate=options.get('clip_sample_rate', 44100))
    return create_engine(mode, clip_recorder=clip_recorder, client=client,
                         language=language, on_error=on_error)


# Import engines to register them
def _register_engines():
    """Import engine modules to register them."""
    from . import live_engine, clip_engine  # noqa: F401


# Register engines on module load
_register_engines()
