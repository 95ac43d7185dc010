"""Exception hierarchy for the conversion pipeline."""
import re


class ConversionError(Exception):
    """Base class for job-failing errors."""


class StorageError(ConversionError):
    """Object store upload or download failed."""


class EngineError(ConversionError):
    """Base class for errors raised while talking to the processing engine."""


class EngineNotConfigured(EngineError):
    """Engine credentials are missing."""


class SubmissionError(EngineError):
    """The engine rejected the job at creation."""


class RemoteProcessingError(EngineError):
    """The engine reported an explicit processing error."""


class ResultFetchError(EngineError):
    """The engine finished but its result could not be retrieved."""


class ReconciliationTimeout(ConversionError):
    """The remote operation did not finish within the maximum wait."""


MAX_ERROR_MESSAGE_LENGTH = 300

_URL_RE = re.compile(r"https?://\S+")
_HEX_ID_RE = re.compile(r"\b[0-9a-fA-F]{24,}\b")


def sanitize_error_message(message: str, max_length: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    """
    Reduce an error message to something safe to show an end user.

    Keeps the first non-empty line, replaces URLs and long hex identifiers
    with placeholders and truncates the result.

    Args:
        message: Raw error message
        max_length: Maximum length of the returned message

    Returns:
        Sanitized message, never empty
    """
    lines = [line.strip() for line in str(message).splitlines() if line.strip()]
    if not lines:
        return "Conversion failed"

    cleaned = _URL_RE.sub("[url]", lines[0])
    cleaned = _HEX_ID_RE.sub("[id]", cleaned)

    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3].rstrip() + "..."
    return cleaned
