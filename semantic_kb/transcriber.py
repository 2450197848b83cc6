"""
Client for the local speech-to-text service.

The service accepts ``POST /transcribe`` with a JSON body naming a WAV file
and answers with a Server-Sent-Events stream::

    data: {"status": "progress", ...}
    data: {"status": "success", "text": "..."}
    data: [DONE]

An event with ``"status": "error"`` aborts the transcription.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from typing import Iterable, Optional

import requests

from .errors import TranscriptionError
from .media import extract_audio

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://127.0.0.1:38081/transcribe"
DEFAULT_TIMEOUT = 600.0

_DATA_PREFIX = "data: "
_DONE = "[DONE]"


def parse_event_stream(lines: Iterable[str]) -> str:
    """Return the transcript carried by a stream of SSE lines.

    Raises
    ------
    TranscriptionError
        On an error event, or if the stream ends without a success event.
    """
    text: Optional[str] = None
    for line in lines:
        if not line.startswith(_DATA_PREFIX):
            continue
        payload = line[len(_DATA_PREFIX):].strip()
        if payload == _DONE:
            break
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed event: %s", payload[:200])
            continue
        if not isinstance(event, dict):
            continue

        status = event.get("status")
        if status == "error":
            raise TranscriptionError(
                f"Transcription failed: {event.get('error') or 'unknown error'}"
            )
        if status == "success":
            text = event.get("text") or ""
        elif status:
            logger.debug("Transcription status: %s", status)

    if text is None:
        raise TranscriptionError(
            "Transcription service returned no result; check that the model is installed"
        )
    return text


class TranscriptionClient:
    """HTTP client for the speech-to-text service.

    Parameters
    ----------
    url:
        Full ``/transcribe`` endpoint URL.
    timeout:
        Seconds to wait for the whole request.
    use_gpu:
        Forwarded to the service.
    num_threads:
        Forwarded to the service.
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        timeout: float = DEFAULT_TIMEOUT,
        use_gpu: bool = True,
        num_threads: int = 4,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.use_gpu = use_gpu
        self.num_threads = num_threads

    def transcribe(self, audio_path: str) -> str:
        body = {
            "audio_path": audio_path,
            "use_gpu": self.use_gpu,
            "num_threads": self.num_threads,
        }
        try:
            resp = requests.post(self.url, json=body, timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            raise TranscriptionError(
                f"Cannot reach transcription service ({self.url}): {exc}. "
                "Make sure the service is running and its model is downloaded."
            ) from exc

        try:
            resp.raise_for_status()
            lines = resp.iter_lines(decode_unicode=True)
            return parse_event_stream(line for line in lines if line)
        except requests.RequestException as exc:
            raise TranscriptionError(f"Transcription request failed: {exc}") from exc
        finally:
            resp.close()


def transcribe_video(
    video_path: str,
    temp_dir: str,
    client: TranscriptionClient,
    ffmpeg: str = "ffmpeg",
) -> str:
    """Extract the audio of *video_path* and transcribe it.

    The intermediate WAV file is removed whether or not transcription succeeds.
    """
    os.makedirs(temp_dir, exist_ok=True)
    audio_path = os.path.join(temp_dir, f"{uuid.uuid4()}.wav")
    try:
        extract_audio(video_path, audio_path, ffmpeg=ffmpeg)
        return client.transcribe(audio_path)
    finally:
        try:
            os.remove(audio_path)
        except FileNotFoundError:
            pass
