"""
Turning an engine run into a transcription result or a typed error.

After the engine exits, its output artifact is the only channel for the
result. On success the artifact must exist and hold JSON. On failure the
artifact is read anyway, since engines may write partial progress before
failing, and its raw text is folded into the error details.
"""

import json
from typing import Any, Dict, Optional, Type

from app.errors import (
    EngineLaunchError,
    JobCancelledError,
    JobTimeoutError,
    NonZeroExitError,
    OutputLimitError,
    OutputMissingError,
    OutputParseError,
    TranscriptionJobError,
    WorkspaceIOError,
)
from app.logging_config import get_logger, log_with_context
from app.models import ExecutionOutcome, ExitClassification, Job


logger = get_logger(__name__)

FAILURE_ERRORS: Dict[ExitClassification, Type[TranscriptionJobError]] = {
    ExitClassification.NONZERO_EXIT: NonZeroExitError,
    ExitClassification.TIMEOUT: JobTimeoutError,
    ExitClassification.OUTPUT_LIMIT: OutputLimitError,
    ExitClassification.CANCELLED: JobCancelledError,
    ExitClassification.LAUNCH_ERROR: EngineLaunchError,
}


def recover_result(job: Job, outcome: ExecutionOutcome) -> Any:
    """
    Read the engine's result for a finished run.

    Args:
        job: The job whose output artifact should be inspected
        outcome: How the engine run ended

    Returns:
        The parsed JSON document, untouched

    Raises:
        OutputMissingError: Engine exited zero but left the artifact absent or empty
        OutputParseError: Artifact exists but is not valid JSON
        WorkspaceIOError: Artifact exists but cannot be read
        TranscriptionJobError: The failure matching the outcome's classification
    """
    if not outcome.succeeded:
        raise failure_error(job, outcome)

    if not job.output_path.exists():
        raise output_missing(job, outcome)

    try:
        raw = job.output_path.read_bytes()
    except OSError as e:
        log_with_context(
            logger,
            "error",
            "Failed to read output artifact",
            job_id=job.job_id,
            file_path=str(job.output_path),
            error=e
        )
        raise WorkspaceIOError(details=f"Cannot read {job.output_path}: {e}") from e

    # The workspace reserves the output as an empty file before the run
    if not raw:
        raise output_missing(job, outcome)

    try:
        # json.loads accepts UTF-8 bytes and rejects undecodable input with a ValueError
        return json.loads(raw)
    except ValueError as e:
        log_with_context(
            logger,
            "error",
            "Output artifact is not valid JSON",
            job_id=job.job_id,
            file_path=str(job.output_path),
            error=e
        )
        raise OutputParseError(details=str(e)) from e


def output_missing(job: Job, outcome: ExecutionOutcome) -> OutputMissingError:
    log_with_context(
        logger,
        "error",
        "Output JSON file was not created by the script",
        job_id=job.job_id,
        file_path=str(job.output_path)
    )
    return OutputMissingError(details=outcome.stderr or outcome.stdout or None)


def failure_error(job: Job, outcome: ExecutionOutcome) -> TranscriptionJobError:
    """
    Build the error for a failed run, including any partial output.

    Reading the partial artifact is best effort: whatever goes wrong
    there, the returned error keeps the outcome's classification.
    """
    error_class = FAILURE_ERRORS.get(outcome.classification, NonZeroExitError)

    parts = []
    if outcome.error:
        parts.append(outcome.error)
    streams = (outcome.stderr or outcome.stdout).strip()
    if streams:
        parts.append(streams)
    partial = read_partial_output(job)
    if partial:
        parts.append(f"Partial output: {partial}")

    return error_class(details="\n".join(parts) or None)


def read_partial_output(job: Job) -> Optional[str]:
    """Return the raw text of the output artifact, or None if unavailable."""
    if not job.output_path.exists():
        return None
    try:
        return job.output_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        log_with_context(
            logger,
            "debug",
            "Could not read partial output",
            job_id=job.job_id,
            file_path=str(job.output_path),
            error_type=type(e).__name__,
            error_message=str(e)
        )
        return None
