"""
Audio extraction with an external ffmpeg executable.

Speech recognition expects mono 16 kHz 16-bit PCM WAV input, so every video
is converted with::

    ffmpeg -i IN -vn -acodec pcm_s16le -ar 16000 -ac 1 -y OUT
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from typing import Optional

from .errors import MediaError

logger = logging.getLogger(__name__)

# Hide the console window that would otherwise flash up on Windows
_CREATE_NO_WINDOW = 0x08000000


def find_ffmpeg(configured: Optional[str] = None) -> str:
    """Return the ffmpeg executable to use.

    Prefers *configured*, then whatever ``ffmpeg`` is on ``PATH``, and
    finally the bare name so the error surfaces when it is run.
    """
    if configured:
        return configured
    return shutil.which("ffmpeg") or "ffmpeg"


def build_extract_command(ffmpeg: str, video_path: str, audio_path: str) -> list[str]:
    return [
        ffmpeg,
        "-i", video_path,
        "-vn",
        "-acodec", "pcm_s16le",
        "-ar", "16000",
        "-ac", "1",
        "-y",
        audio_path,
    ]


def extract_audio(video_path: str, audio_path: str, ffmpeg: str = "ffmpeg") -> None:
    """Write the audio track of *video_path* to *audio_path* as a WAV file.

    Raises
    ------
    MediaError
        If ffmpeg cannot be started or exits with a non-zero status.
    """
    cmd = build_extract_command(ffmpeg, video_path, audio_path)
    kwargs = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = _CREATE_NO_WINDOW

    logger.debug("Running: %s", " ".join(cmd))
    try:
        proc = subprocess.run(cmd, capture_output=True, **kwargs)
    except OSError as exc:
        raise MediaError(f"Failed to run ffmpeg ({ffmpeg}): {exc}") from exc

    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        raise MediaError(f"ffmpeg audio extraction failed: {stderr}")
    logger.info("Extracted audio from %s to %s", video_path, audio_path)
