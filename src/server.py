"""
Screenscribe Transcription Server

The speech-to-text service clip-upload transcription talks to:
    POST /transcribe/   multipart ``file`` + ``language`` -> {"transcription": ...}
    GET  /status        model readiness and load
    GET  /health        liveness

Run with: python src/server.py
"""

import asyncio
import io
import os
import sys
import threading
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

# Add src directory for imports
sys.path.insert(0, str(Path(__file__).parent))

from compat import setup_cuda_dlls

# Setup CUDA DLLs before any CUDA imports
setup_cuda_dlls()

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from pydantic import BaseModel
import uvicorn

from engines.whisper_model import WhisperTranscriber
from logger import log_exception

# 50MB is ~50 minutes of 128kbps MP3
MAX_UPLOAD_BYTES = 50 * 1024 * 1024


# API Token Authentication Middleware
class APITokenMiddleware(BaseHTTPMiddleware):
    """Middleware to check API token if SCREENSCRIBE_API_TOKEN is set."""

    # Endpoints that don't require authentication
    PUBLIC_ENDPOINTS = {"/health", "/status", "/docs", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        api_token = os.environ.get("SCREENSCRIBE_API_TOKEN")

        # If no token configured, allow all requests
        if not api_token:
            return await call_next(request)

        # Allow public endpoints without auth
        if request.url.path in self.PUBLIC_ENDPOINTS:
            return await call_next(request)

        # Check for token in header
        provided_token = request.headers.get("X-API-Token")
        if not provided_token or provided_token != api_token:
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid or missing API token"}
            )

        return await call_next(request)


class TranscribeResponse(BaseModel):
    """Response body for transcription."""
    transcription: str


class ServerStatus(BaseModel):
    """Server status response."""
    status: str
    model: str
    device: str
    ready: bool
    busy: bool = False  # True if any transcription requests are active
    active_requests: int = 0  # Number of in-flight transcription requests


# Global model instance; one transcription at a time
_model: Optional[WhisperTranscriber] = None
_model_lock = threading.Lock()

# Request tracking for busy detection
_active_requests = 0
_active_requests_lock = threading.Lock()


def _increment_requests():
    """Increment active request counter."""
    global _active_requests
    with _active_requests_lock:
        _active_requests += 1


def _decrement_requests():
    """Decrement active request counter."""
    global _active_requests
    with _active_requests_lock:
        _active_requests = max(0, _active_requests - 1)


def get_active_requests() -> int:
    """Get current number of active requests."""
    with _active_requests_lock:
        return _active_requests


def set_model(model: Optional[WhisperTranscriber]):
    """Install the model the endpoints use (None unloads)."""
    global _model
    with _model_lock:
        _model = model


def get_model() -> Optional[WhisperTranscriber]:
    return _model


def load_model(model_name: str = "base.en", device: str = "auto", compute_type: str = "int8"):
    """Load the Whisper model with the specified settings."""
    if _model is not None:
        return _model

    print(f"[Server] Loading model: {model_name} on {device}...")
    model = WhisperTranscriber()
    if model.load(model_name, device, compute_type):
        set_model(model)
        print("[Server] Model loaded successfully")
    else:
        print("[Server] Model failed to load")
    return _model


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the model on startup."""
    model = os.environ.get("SCREENSCRIBE_MODEL", "base.en")
    device = os.environ.get("SCREENSCRIBE_DEVICE", "auto")
    compute_type = os.environ.get("SCREENSCRIBE_COMPUTE_TYPE", "int8")

    await asyncio.to_thread(load_model, model, device, compute_type)

    yield
    print("[Server] Shutting down...")
    model = get_model()
    if model is not None:
        set_model(None)
        model.unload()


app = FastAPI(
    title="Screenscribe Transcription Server",
    description="Speech-to-text for recorded audio clips",
    version="1.0.0",
    lifespan=lifespan
)

# Add API token authentication middleware
app.add_middleware(APITokenMiddleware)


@app.get("/status", response_model=ServerStatus)
async def status():
    """Check server status and model readiness."""
    model = _model
    active = get_active_requests()
    return ServerStatus(
        status="running",
        model=(model.model_name if model else None) or "not loaded",
        device=(model.device if model else None) or "unknown",
        ready=model is not None,
        busy=active > 0,
        active_requests=active
    )


@app.get("/health")
async def health():
    """Simple health check endpoint."""
    return {"status": "ok"}


def _transcribe_bytes(model: WhisperTranscriber, data: bytes, language: Optional[str]) -> str:
    with _model_lock:
        return model.transcribe(io.BytesIO(data), language=language).text


@app.post("/transcribe/", response_model=TranscribeResponse)
async def transcribe(file: UploadFile = File(...), language: str = Form("en")):
    """
    Transcribe one uploaded audio file (any format ffmpeg/PyAV can decode).
    """
    model = _model
    if model is None:
        raise HTTPException(status_code=503, detail="Model not loaded")

    # Read one byte past the limit so oversize uploads are caught without reading them whole
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"Audio too large (max {MAX_UPLOAD_BYTES // 1024 // 1024}MB)")
    if not data:
        raise HTTPException(status_code=400, detail="Empty audio upload")

    _increment_requests()
    try:
        text = await asyncio.to_thread(_transcribe_bytes, model, data, language or None)
        return TranscribeResponse(transcription=text)
    except Exception as e:
        log_exception(e, f"transcribing upload '{file.filename}'")
        raise HTTPException(status_code=500, detail="Internal transcription error")
    finally:
        _decrement_requests()


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the server."""
    print(f"[Server] Starting on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")


if __name__ == "__main__":
    # Load .env when run directly
    from dotenv import load_dotenv
    load_dotenv(Path(__file__).parent.parent / ".env")

    import argparse
    parser = argparse.ArgumentParser(description="Screenscribe Transcription Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    parser.add_argument("--model", default="base.en", help="Whisper model to use")
    parser.add_argument("--device", default="auto", help="Device (auto/cuda/cpu)")
    args = parser.parse_args()

    os.environ["SCREENSCRIBE_MODEL"] = args.model
    os.environ["SCREENSCRIBE_DEVICE"] = args.device

    run_server(args.host, args.port)
