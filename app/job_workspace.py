"""
Per-job temporary storage for the transcription pipeline.

The engine reads its input from a file and writes its result to another
file, so every request materializes the upload inside a shared workspace
directory under the system temp root. Artifact names start with a
nanosecond time token, and both the input and the output name are claimed
with exclusive creates, so concurrent jobs never share a path. The output
artifact starts out as an empty placeholder until the engine writes it.
"""

import tempfile
import time
from contextlib import contextmanager
from pathlib import Path, PureWindowsPath
from typing import Iterator, Optional, Union

from app.errors import WorkspaceIOError
from app.logging_config import get_logger, log_with_context
from app.models import Job


DEFAULT_FILENAME = "upload"

# Keeps "<token>-<name>" under the common 255 byte filename limit
MAX_FILENAME_BYTES = 200

MAX_NAME_ATTEMPTS = 5


def safe_filename(filename: Optional[str]) -> str:
    """
    Reduce a client-supplied filename to a bare file name.

    Directory components (either separator style) and NUL bytes are
    dropped, overlong names are shortened while keeping the extension.
    Quotes, spaces and other characters are kept as-is; they never reach
    a shell.

    Args:
        filename: Name as sent in the multipart upload (may be None)

    Returns:
        A non-empty name safe to join onto the workspace directory
    """
    name = PureWindowsPath((filename or "").replace("\x00", "")).name.strip()
    if name in ("", ".", ".."):
        return DEFAULT_FILENAME

    if len(name.encode("utf-8")) > MAX_FILENAME_BYTES:
        path = Path(name)
        suffix = path.suffix if len(path.suffix) <= 16 else ""
        stem = name[: len(name) - len(suffix)] if suffix else name
        while stem and len((stem + suffix).encode("utf-8")) > MAX_FILENAME_BYTES:
            stem = stem[:-1]
        name = (stem + suffix) or DEFAULT_FILENAME
    return name


class JobWorkspace:
    """
    Manages the workspace directory and the artifacts of each job.

    Attributes:
        directory: Workspace directory shared by all jobs
        output_suffix: Extension of the engine's output artifact
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        dir_name: str = "whisper-uploads",
        output_suffix: str = ".json"
    ):
        self.directory = Path(root if root is not None else tempfile.gettempdir()) / dir_name
        self.output_suffix = output_suffix
        self.logger = get_logger(__name__)

    def ensure_directory(self) -> Path:
        """
        Create the workspace directory if it does not exist yet.

        Returns:
            The workspace directory

        Raises:
            WorkspaceIOError: If the directory cannot be created
        """
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_with_context(
                self.logger,
                "error",
                "Failed to create workspace directory",
                file_path=str(self.directory),
                error=e
            )
            raise WorkspaceIOError(details=f"Cannot create {self.directory}: {e}") from e
        return self.directory

    def output_path_for(self, input_path: Path) -> Path:
        """
        Derive the output artifact path from the input artifact path.

        The input's extension is replaced with the output suffix in the
        same directory. An input that already carries the output suffix
        gets an ``.output`` marker so the engine cannot overwrite it.
        """
        if input_path.suffix.lower() == self.output_suffix.lower():
            return input_path.with_name(f"{input_path.stem}.output{self.output_suffix}")
        return input_path.with_suffix(self.output_suffix)

    def create_job(
        self,
        filename: Optional[str],
        payload: bytes,
        diarize: bool = False,
        hf_token: Optional[str] = None
    ) -> Job:
        """
        Write the uploaded payload as a new input artifact.

        The output artifact is created empty at the same time. When either
        name is already taken the time token is advanced and both are tried
        again.

        Args:
            filename: Original filename from the upload
            payload: Raw uploaded bytes
            diarize: Whether speaker diarization was requested
            hf_token: Optional diarization credential

        Returns:
            The new Job, with its input written and its output reserved

        Raises:
            WorkspaceIOError: If the directory or the file cannot be written
        """
        directory = self.ensure_directory()
        name = safe_filename(filename)

        token = time.time_ns()
        for _ in range(MAX_NAME_ATTEMPTS):
            job_id = f"{token}-{name}"
            input_path = directory / job_id
            output_path = self.output_path_for(input_path)
            try:
                handle = open(input_path, "xb")
            except FileExistsError:
                token += 1
                continue
            except OSError as e:
                raise self._creation_error(job_id, input_path, e) from e

            # Both artifacts are reserved; either name may already belong to
            # another job's input or output
            try:
                with open(output_path, "xb"):
                    pass
            except FileExistsError:
                handle.close()
                self._remove_artifact(input_path, "input", job_id)
                token += 1
                continue
            except OSError as e:
                handle.close()
                self._remove_artifact(input_path, "input", job_id)
                raise self._creation_error(job_id, output_path, e) from e

            try:
                with handle:
                    handle.write(payload)
            except OSError as e:
                log_with_context(
                    self.logger,
                    "error",
                    "Failed to write input artifact",
                    job_id=job_id,
                    file_path=str(input_path),
                    error=e
                )
                self._remove_artifact(input_path, "input", job_id)
                self._remove_artifact(output_path, "output", job_id)
                raise WorkspaceIOError(details=f"Cannot write {input_path}: {e}") from e
            break
        else:
            raise WorkspaceIOError(details=f"Could not allocate a unique artifact name for {name!r}")

        job = Job(
            job_id=job_id,
            input_path=input_path,
            output_path=output_path,
            original_filename=filename or DEFAULT_FILENAME,
            diarize=diarize,
            hf_token=hf_token
        )
        log_with_context(
            self.logger,
            "info",
            "Temporary file saved",
            job_id=job.job_id,
            file_path=str(job.input_path),
            file_size=len(payload)
        )
        return job

    def cleanup(self, job: Job) -> None:
        """
        Delete the input artifact and, if present, the output artifact.

        Never raises: deletion failures are logged so cleanup cannot change
        the outcome of the request.
        """
        self._remove_artifact(job.input_path, "input", job.job_id)
        self._remove_artifact(job.output_path, "output", job.job_id)

    @contextmanager
    def job(
        self,
        filename: Optional[str],
        payload: bytes,
        diarize: bool = False,
        hf_token: Optional[str] = None
    ) -> Iterator[Job]:
        """
        Create a job whose artifacts are removed when the block exits.

        Example:
            >>> with workspace.job("talk.mp3", data) as job:
            ...     run_engine(job.input_path, job.output_path)
        """
        job = self.create_job(filename, payload, diarize=diarize, hf_token=hf_token)
        try:
            yield job
        finally:
            self.cleanup(job)

    def _creation_error(self, job_id: str, path: Path, error: OSError) -> WorkspaceIOError:
        log_with_context(
            self.logger,
            "error",
            "Failed to create job artifact",
            job_id=job_id,
            file_path=str(path),
            error=error
        )
        return WorkspaceIOError(details=f"Cannot create {path}: {error}")

    def _remove_artifact(self, path: Path, kind: str, job_id: str) -> None:
        if not path.exists():
            return
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            log_with_context(
                self.logger,
                "error",
                f"Error cleaning up temporary {kind} file",
                job_id=job_id,
                file_path=str(path),
                error=e
            )
            return
        log_with_context(
            self.logger,
            "info",
            f"Cleaned up temporary {kind} file",
            job_id=job_id,
            file_path=str(path)
        )
