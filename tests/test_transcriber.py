"""
Unit tests for semantic_kb.transcriber

The speech-to-text service and ffmpeg are mocked; no network access.
"""

from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest
import requests

from semantic_kb.errors import MediaError, TranscriptionError
from semantic_kb.transcriber import (
    TranscriptionClient,
    parse_event_stream,
    transcribe_video,
)


# ---------------------------------------------------------------------------
# Tests: parse_event_stream
# ---------------------------------------------------------------------------

class TestParseEventStream:
    def test_success_event(self):
        lines = [
            'data: {"status": "progress", "percent": 50}',
            'data: {"status": "success", "text": "hello world"}',
            "data: [DONE]",
        ]
        assert parse_event_stream(lines) == "hello world"

    def test_ignores_non_data_lines_and_bad_json(self):
        lines = [
            ": keep-alive",
            "event: message",
            "data: {not json",
            "data: [1, 2]",
            'data: {"status": "success", "text": "ok"}',
        ]
        assert parse_event_stream(lines) == "ok"

    def test_stops_at_done(self):
        lines = [
            'data: {"status": "success", "text": "first"}',
            "data: [DONE]",
            'data: {"status": "error", "error": "late"}',
        ]
        assert parse_event_stream(lines) == "first"

    def test_error_event(self):
        lines = ['data: {"status": "error", "error": "model not found"}']
        with pytest.raises(TranscriptionError, match="model not found"):
            parse_event_stream(lines)

    def test_no_result(self):
        with pytest.raises(TranscriptionError, match="no result"):
            parse_event_stream(['data: {"status": "progress"}', "data: [DONE]"])

    def test_empty_transcript_is_allowed(self):
        assert parse_event_stream(['data: {"status": "success", "text": ""}']) == ""


# ---------------------------------------------------------------------------
# Tests: TranscriptionClient
# ---------------------------------------------------------------------------

def _response(lines):
    resp = MagicMock()
    resp.iter_lines.return_value = iter(lines)
    return resp


class TestTranscriptionClient:
    def test_posts_audio_path_and_reads_stream(self):
        resp = _response(["", 'data: {"status": "success", "text": "transcript"}', ""])
        with patch("semantic_kb.transcriber.requests.post", return_value=resp) as post:
            client = TranscriptionClient(url="http://asr/transcribe", timeout=5, use_gpu=False)
            assert client.transcribe("/tmp/a.wav") == "transcript"

        post.assert_called_once_with(
            "http://asr/transcribe",
            json={"audio_path": "/tmp/a.wav", "use_gpu": False, "num_threads": 4},
            timeout=5,
            stream=True,
        )
        resp.close.assert_called_once()

    def test_connection_error(self):
        with patch(
            "semantic_kb.transcriber.requests.post",
            side_effect=requests.ConnectionError("refused"),
        ):
            with pytest.raises(TranscriptionError, match="Cannot reach"):
                TranscriptionClient().transcribe("/tmp/a.wav")

    def test_http_error_status(self):
        resp = _response([])
        resp.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        with patch("semantic_kb.transcriber.requests.post", return_value=resp):
            with pytest.raises(TranscriptionError, match="500"):
                TranscriptionClient().transcribe("/tmp/a.wav")
        resp.close.assert_called_once()


# ---------------------------------------------------------------------------
# Tests: transcribe_video
# ---------------------------------------------------------------------------

class TestTranscribeVideo:
    def test_temp_audio_removed_after_success(self, tmp_path):
        seen = {}

        def fake_extract(video, audio, ffmpeg="ffmpeg"):
            with open(audio, "wb") as fh:
                fh.write(b"RIFF")
            seen["audio"] = audio

        client = MagicMock()
        client.transcribe.return_value = "spoken words"
        with patch("semantic_kb.transcriber.extract_audio", side_effect=fake_extract):
            text = transcribe_video("talk.mp4", str(tmp_path / "tmp"), client)

        assert text == "spoken words"
        assert seen["audio"].endswith(".wav")
        assert os.path.dirname(seen["audio"]) == str(tmp_path / "tmp")
        assert not os.path.exists(seen["audio"])
        client.transcribe.assert_called_once_with(seen["audio"])

    def test_temp_audio_removed_after_failure(self, tmp_path):
        def fake_extract(video, audio, ffmpeg="ffmpeg"):
            with open(audio, "wb") as fh:
                fh.write(b"RIFF")

        client = MagicMock()
        client.transcribe.side_effect = TranscriptionError("service down")
        with patch("semantic_kb.transcriber.extract_audio", side_effect=fake_extract):
            with pytest.raises(TranscriptionError):
                transcribe_video("talk.mp4", str(tmp_path), client)
        assert list(tmp_path.iterdir()) == []

    def test_extraction_failure_skips_service(self, tmp_path):
        client = MagicMock()
        with patch(
            "semantic_kb.transcriber.extract_audio",
            side_effect=MediaError("ffmpeg audio extraction failed"),
        ):
            with pytest.raises(MediaError):
                transcribe_video("talk.mp4", str(tmp_path), client)
        client.transcribe.assert_not_called()
