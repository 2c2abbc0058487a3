"""
Summarization client.

Sends a finished transcript to the AI endpoint and returns the rendered
result. Set SCREENSCRIBE_AI_URL to point at a remote server.
"""

import os
from typing import Optional, Tuple

import requests

from errors import ConfigurationError
from logger import log_debug
from transcription_client import DEFAULT_API_TOKEN, _error_detail, _validate_server_url

TASKS = ("summary", "meetings", "tasks")

DEFAULT_AI_URL = os.environ.get("SCREENSCRIBE_AI_URL", "http://127.0.0.1:8000")


def _debug(msg: str):
    log_debug("client", msg)


class SummaryClient:
    def __init__(self, server_url: Optional[str] = None, timeout: float = 120.0,
                 api_token: Optional[str] = DEFAULT_API_TOKEN):
        self.server_url = _validate_server_url(server_url or DEFAULT_AI_URL)
        self.timeout = timeout
        self.api_token = api_token

    def run_task(self, transcription: str, task: str = "summary") -> Tuple[str, bool]:
        """
        POST ``{transcription, task}`` to ``/ai/``.

        Returns:
            Tuple of (result text or error message, success boolean)

        Raises:
            ConfigurationError: unknown task
        """
        if task not in TASKS:
            raise ConfigurationError(f"Unknown task '{task}'. Options: {list(TASKS)}")

        headers = {"X-API-Token": self.api_token} if self.api_token else {}
        _debug(f"POST {self.server_url}/ai/ (task={task}, {len(transcription)} chars)")
        try:
            response = requests.post(
                f"{self.server_url}/ai/",
                json={"transcription": transcription, "task": task},
                timeout=(5.0, self.timeout),
                headers=headers,
            )
        except requests.Timeout:
            return "Summarization timed out", False
        except requests.RequestException as e:
            return f"Connection error: {e}", False

        if not 200 <= response.status_code < 300:
            return f"Server error {response.status_code}: {_error_detail(response)}", False
        try:
            return response.json().get("result", ""), True
        except (ValueError, AttributeError):
            return "Server returned an invalid response", False
