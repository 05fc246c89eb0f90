"""
Error taxonomy for the transcription job pipeline.

Every failure a request can run into is one of these exceptions. Each
carries the HTTP status it maps to, a short client-facing message and
optional diagnostic details (captured engine streams, partial output).
"""

from typing import Optional

from fastapi import status


class TranscriptionJobError(Exception):
    """Base class for all job pipeline failures surfaced to the caller."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> dict:
        """Render the JSON body returned to the client."""
        return {"error": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class InvalidRequestError(TranscriptionJobError):
    """The request carried no media file."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_REQUEST"
    default_message = "No media file uploaded"


class UploadTooLargeError(TranscriptionJobError):
    """The uploaded media exceeds the configured size limit."""
    status_code = 413  # Content Too Large
    code = "UPLOAD_TOO_LARGE"
    default_message = "Uploaded file exceeds the size limit"


class RuntimeNotFoundError(TranscriptionJobError):
    """No interpreter candidate answered the version check."""
    code = "RUNTIME_NOT_FOUND"
    default_message = "Python executable not found."


class WorkerScriptNotFoundError(TranscriptionJobError):
    """The engine entry script is missing on this host."""
    code = "WORKER_SCRIPT_NOT_FOUND"
    default_message = "Transcription script not found on server"


class WorkspaceIOError(TranscriptionJobError):
    """The workspace directory or an artifact could not be written or read."""
    code = "WORKSPACE_IO_ERROR"
    default_message = "Failed to prepare the job workspace."


class JobTimeoutError(TranscriptionJobError):
    """The engine exceeded the wall-clock limit and was killed."""
    code = "TIMEOUT"
    default_message = "Transcription timed out."


class NonZeroExitError(TranscriptionJobError):
    """The engine exited with a nonzero status."""
    code = "NONZERO_EXIT"
    default_message = "Failed to execute transcription script."


class OutputLimitError(TranscriptionJobError):
    """The engine wrote more to stdout/stderr than the capture limit allows."""
    code = "OUTPUT_LIMIT_EXCEEDED"
    default_message = "Transcription output exceeded the capture limit."


class JobCancelledError(TranscriptionJobError):
    """The request went away and the engine was stopped."""
    code = "CANCELLED"
    default_message = "Transcription was cancelled."


class EngineLaunchError(TranscriptionJobError):
    """The engine process could not be started at all."""
    code = "LAUNCH_ERROR"
    default_message = "Failed to execute transcription script."


class OutputMissingError(TranscriptionJobError):
    """The engine exited zero without writing its output artifact."""
    code = "OUTPUT_MISSING"
    default_message = "Transcription failed: Output file not generated."


class OutputParseError(TranscriptionJobError):
    """The output artifact exists but is not valid JSON."""
    code = "OUTPUT_PARSE_ERROR"
    default_message = "Transcription output could not be parsed."
