"""
Transcription Service.

Turns a recorded voice note into plain text in the configured locale
using the OpenAI audio transcription endpoint. All failures surface as
``TranscriptionError``; nothing is retried within a run.
"""

from __future__ import annotations

from typing import Protocol

import httpx

from voice_intake.config import Settings, get_settings
from voice_intake.errors import TranscriptionError
from voice_intake.logging_config import get_logger

logger = get_logger(__name__)

# MIME type -> file extension the speech API uses to sniff the container
SUPPORTED_MIME_TYPES: dict[str, str] = {
    "audio/webm": "webm",
    "audio/mp4": "mp4",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/x-m4a": "m4a",
    "audio/m4a": "m4a",
}


class SpeechToText(Protocol):
    async def transcribe(self, audio: bytes, mime_type: str) -> str: ...


def normalize_mime_type(mime_type: str) -> str:
    """Drop parameters such as ``;codecs=opus`` and lowercase."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


class OpenAITranscriber:
    """Speech-to-text backed by the OpenAI ``/audio/transcriptions`` API."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def _validate(self, audio: bytes, mime_type: str) -> str:
        if not audio:
            raise TranscriptionError("Empty audio buffer", user_message="The recording is empty.")
        if len(audio) > self._settings.max_audio_bytes:
            raise TranscriptionError(
                f"Audio too large: {len(audio)} bytes",
                user_message="The recording is too long.",
            )
        normalized = normalize_mime_type(mime_type)
        if normalized not in SUPPORTED_MIME_TYPES:
            raise TranscriptionError(
                f"Unsupported MIME type: {mime_type}",
                user_message="Unsupported audio format.",
            )
        return normalized

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        normalized = self._validate(audio, mime_type)
        extension = SUPPORTED_MIME_TYPES[normalized]

        logger.info("transcription_started", bytes=len(audio), mime_type=normalized)

        try:
            async with httpx.AsyncClient(timeout=self._settings.llm_timeout_seconds) as client:
                response = await client.post(
                    f"{self._settings.openai_base_url}/audio/transcriptions",
                    headers={"Authorization": f"Bearer {self._settings.openai_api_key}"},
                    files={"file": (f"audio.{extension}", audio, normalized)},
                    data={
                        "model": self._settings.transcription_model,
                        "language": self._settings.voice_language,
                        "response_format": "json",
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("transcription_http_error", status=e.response.status_code)
            raise TranscriptionError(
                f"Speech service returned {e.response.status_code}",
                user_message="The speech service rejected the audio.",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("transcription_unreachable", error=str(e))
            raise TranscriptionError(
                f"Speech service unreachable: {e}",
                user_message="The speech service is unavailable. Try again later.",
            ) from e

        text = (data.get("text") or "").strip() if isinstance(data, dict) else ""
        if not text:
            raise TranscriptionError("Empty transcript", user_message="No speech was detected in the recording.")

        logger.info("transcription_complete", chars=len(text))
        return text
