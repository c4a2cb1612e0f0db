"""
Pipeline error taxonomy.

Fatal errors carry the stage they happened in and a short, user-facing
reason. Unmatched or ambiguous entity names are NOT errors: they are
regular ``MatchResult`` outcomes that pause the run for clarification.
"""

from __future__ import annotations


class VoiceIntakeError(Exception):
    """Base class for every error raised by the voice pipeline."""

    stage: str = "pipeline"
    user_message: str = "The voice report could not be processed."

    def __init__(self, message: str = "", user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class DuplicateAudioError(VoiceIntakeError):
    stage = "intake"
    user_message = "This recording was already processed."


class TranscriptionError(VoiceIntakeError):
    """Unusable audio or speech service outage. Not retried within a run."""

    stage = "transcription"
    user_message = "The audio could not be transcribed."


class ExtractionError(VoiceIntakeError):
    """The language model could not produce a usable extraction."""

    stage = "extraction"
    user_message = "The report details could not be understood."


class ExtractionParseError(ExtractionError):
    user_message = "The model answer was not valid JSON."


class ExtractionIncompleteError(ExtractionError):
    user_message = "The report is missing the equipment or a title."

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Extraction incomplete, missing: {', '.join(missing)}")


class PersistenceError(VoiceIntakeError):
    """The record transaction failed. The log keeps its pre-write state."""

    stage = "persistence"
    user_message = "The record could not be saved. Please retry."


class NotificationDispatchError(VoiceIntakeError):
    """Never surfaced to callers; only logged."""

    stage = "notification"
    user_message = "Notification could not be sent."


class LogNotFoundError(VoiceIntakeError):
    stage = "clarification"
    user_message = "Processing log not found."


class ClarificationError(VoiceIntakeError):
    """The log cannot be resumed with the given choice."""

    stage = "clarification"
    user_message = "This report is not waiting for that choice."
