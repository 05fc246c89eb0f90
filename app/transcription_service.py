"""
Transcription service orchestration for the Whisper Upload Gateway.

This module provides the TranscriptionService class which runs one
transcription job end to end: find an interpreter, materialize the upload,
build and run the engine command, recover its result and clean up.
"""

import os
import threading
from pathlib import Path
from typing import Any, Optional, Union

from app.command_builder import build_command
from app.config import settings
from app.errors import RuntimeNotFoundError, TranscriptionJobError, WorkerScriptNotFoundError
from app.executable_locator import ExecutableLocator
from app.job_workspace import JobWorkspace
from app.logging_config import get_logger, log_with_context, redact_secret
from app.process_runner import ProcessRunner
from app.result_recovery import recover_result


class TranscriptionService:
    """
    Orchestrates a single synchronous transcription job per call.

    The service holds no per-job state: every call gets its own job,
    artifacts and child process, so concurrent calls from the request
    threadpool need no locking.

    Attributes:
        workspace: JobWorkspace holding job artifacts
        locator: ExecutableLocator used to find the interpreter
        runner: ProcessRunner enforcing the timeout and output limit
        script_path: Engine entry script
        hf_token_env: Environment variable holding the diarization token
    """

    def __init__(
        self,
        workspace: Optional[JobWorkspace] = None,
        locator: Optional[ExecutableLocator] = None,
        runner: Optional[ProcessRunner] = None,
        script_path: Optional[Union[str, Path]] = None,
        hf_token_env: Optional[str] = None
    ):
        """
        Initialize the TranscriptionService.

        Args:
            workspace: JobWorkspace instance (built from settings if None)
            locator: ExecutableLocator instance (built from settings if None)
            runner: ProcessRunner instance (built from settings if None)
            script_path: Engine script path (settings.worker_script_path if None)
            hf_token_env: Token variable name (settings.hf_token_env if None)
        """
        self.workspace = workspace or JobWorkspace(
            dir_name=settings.workspace_dir_name,
            output_suffix=settings.output_suffix
        )
        self.locator = locator or ExecutableLocator(
            candidates=settings.runtime_candidates,
            check_timeout=settings.check_timeout_seconds
        )
        self.runner = runner or ProcessRunner(
            timeout_seconds=settings.job_timeout_seconds,
            max_output_bytes=settings.max_output_bytes
        )
        self.script_path = Path(script_path or settings.worker_script_path).resolve()
        self.hf_token_env = hf_token_env or settings.hf_token_env
        self.logger = get_logger(__name__)

    def transcribe(
        self,
        filename: Optional[str],
        payload: bytes,
        diarize: bool = False,
        cancel_event: Optional[threading.Event] = None
    ) -> Any:
        """
        Run one transcription job and return the engine's JSON document.

        Workflow:
        1. Locate an interpreter
        2. Check the engine script exists
        3. Write the upload to the workspace
        4. Build and run the engine command
        5. Read the output artifact (or fold partial output into the error)
        6. Remove both artifacts, whatever happened

        Args:
            filename: Original upload filename
            payload: Uploaded bytes
            diarize: Whether speaker diarization was requested
            cancel_event: Set by the caller to kill the engine early

        Returns:
            The engine's output document, unmodified

        Raises:
            TranscriptionJobError: Any pipeline failure; details never contain the token
        """
        hf_token = self.read_hf_token()
        try:
            runtime = self.locator.locate()
            self._check_script()

            with self.workspace.job(filename, payload, diarize=diarize, hf_token=hf_token) as job:
                command = build_command(
                    runtime,
                    self.script_path,
                    job.input_path,
                    job.output_path,
                    diarize=job.diarize,
                    hf_token=job.hf_token
                )
                log_with_context(
                    self.logger,
                    "info",
                    "Executing command",
                    job_id=job.job_id,
                    command=command.redacted()
                )
                outcome = self.runner.run(command, cancel_event=cancel_event, job_id=job.job_id)
                result = recover_result(job, outcome)
                log_with_context(
                    self.logger,
                    "info",
                    "Transcription completed",
                    job_id=job.job_id,
                    duration_seconds=round(outcome.duration_seconds, 3)
                )
                return result
        except TranscriptionJobError as e:
            e.message = redact_secret(e.message, hf_token)
            e.details = redact_secret(e.details, hf_token)
            raise

    def read_hf_token(self) -> Optional[str]:
        """Read the diarization token from the environment at call time."""
        return os.environ.get(self.hf_token_env) or None

    def check_health(self) -> dict:
        """
        Report whether the engine can currently be run.

        Returns:
            Dictionary with the resolved runtime (None if not found) and
            whether the engine script exists
        """
        try:
            runtime = self.locator.locate()
        except RuntimeNotFoundError:
            runtime = None
        return {
            "runtime": runtime,
            "worker_script_found": self.script_path.is_file(),
        }

    def _check_script(self) -> None:
        if not self.script_path.is_file():
            log_with_context(
                self.logger,
                "error",
                "Transcription script not found",
                file_path=str(self.script_path)
            )
            raise WorkerScriptNotFoundError()
