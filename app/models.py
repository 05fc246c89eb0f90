"""
Data models for the Whisper Upload Gateway.

This module defines the core data structures of one transcription job:
the job itself, the command built to run the engine for it, and the
outcome of running that command.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from app.logging_config import redact_secret


class ExitClassification(Enum):
    """
    Enumeration of the ways an engine run can end.

    Attributes:
        SUCCESS: Process exited with status zero within all limits
        NONZERO_EXIT: Process exited with a nonzero status
        TIMEOUT: Process exceeded the wall-clock limit and was killed
        OUTPUT_LIMIT: Captured stdout/stderr exceeded the size limit and the process was killed
        CANCELLED: The owning request went away and the process was killed
        LAUNCH_ERROR: The process could not be started
    """
    SUCCESS = "success"
    NONZERO_EXIT = "nonzero_exit"
    TIMEOUT = "timeout"
    OUTPUT_LIMIT = "output_limit"
    CANCELLED = "cancelled"
    LAUNCH_ERROR = "launch_error"


class Job:
    """
    Represents one transcription request.

    A job exists only for the duration of the request that created it. It
    knows where its input artifact was written and where the engine is
    expected to write the output artifact.

    Attributes:
        job_id: Unique identifier (time token + original filename)
        input_path: Path of the uploaded media inside the workspace
        output_path: Path where the engine must write its JSON document
        original_filename: Filename as sent by the client
        diarize: Whether speaker diarization was requested
        hf_token: Credential for diarization models (never logged)
        created_at: Timestamp when the job was created
    """

    def __init__(
        self,
        job_id: str,
        input_path: Path,
        output_path: Path,
        original_filename: str,
        diarize: bool = False,
        hf_token: Optional[str] = None,
        created_at: Optional[datetime] = None
    ):
        self.job_id = job_id
        self.input_path = Path(input_path)
        self.output_path = Path(output_path)
        self.original_filename = original_filename
        self.diarize = diarize
        self.hf_token = hf_token
        self.created_at = created_at or datetime.utcnow()

    def to_dict(self) -> dict:
        """
        Convert the Job to a dictionary suitable for logging.

        The credential is reduced to a presence flag.
        """
        return {
            "job_id": self.job_id,
            "input_path": str(self.input_path),
            "output_path": str(self.output_path),
            "original_filename": self.original_filename,
            "diarize": self.diarize,
            "has_hf_token": bool(self.hf_token),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"Job(job_id={self.job_id!r}, input_path={str(self.input_path)!r}, "
            f"diarize={self.diarize!r})"
        )


@dataclass(frozen=True)
class CommandSpec:
    """
    The argument vector built for exactly one job.

    Attributes:
        runtime: Resolved interpreter used to run the engine
        script_path: Engine entry script
        argv: Full argument vector, runtime first, passed to the OS without a shell
        secret: Credential embedded in argv, if any (masked by redacted())
    """
    runtime: str
    script_path: str
    argv: Tuple[str, ...]
    secret: Optional[str] = None

    def redacted(self) -> str:
        """Render the command for logging with the credential masked."""
        return " ".join(redact_secret(arg, self.secret) for arg in self.argv)

    def __repr__(self) -> str:
        return f"CommandSpec(argv={self.redacted()!r})"


@dataclass(frozen=True)
class ExecutionOutcome:
    """
    Result of running a CommandSpec.

    SUCCESS is the success variant; every other classification is a
    failure carrying whatever streams were captured before the end.

    Attributes:
        classification: How the run ended
        stdout: Captured standard output (decoded, possibly truncated)
        stderr: Captured standard error (decoded, possibly truncated)
        returncode: Exit status, None when the process never started
        duration_seconds: Wall-clock time spent running
        error: Short description for failures (e.g. launch error text)
    """
    classification: ExitClassification
    stdout: str = ""
    stderr: str = ""
    returncode: Optional[int] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.classification is ExitClassification.SUCCESS
