"""
Bounded execution of the transcription engine.

ProcessRunner starts the engine as a child process and enforces two hard
limits: a wall-clock timeout and a cap on the combined size of captured
stdout and stderr. Crossing either limit, or a cancellation from the
owning request, kills the child (and anything it spawned) before run()
returns.
"""

import os
import signal
import subprocess
import threading
import time
from typing import BinaryIO, Dict, List, Optional

from app.logging_config import get_logger, log_with_context, redact_secret
from app.models import CommandSpec, ExecutionOutcome, ExitClassification


READ_CHUNK_SIZE = 64 * 1024
READER_JOIN_TIMEOUT = 5.0


class BoundedCapture:
    """
    Collects bytes from several streams up to a shared size limit.

    Data past the limit is dropped and ``overflowed`` is set; the
    streams keep being drained so the child never blocks on a full pipe.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self.size = 0
        self.overflowed = threading.Event()
        self._chunks: Dict[str, List[bytes]] = {"stdout": [], "stderr": []}
        self._lock = threading.Lock()

    def feed(self, stream: str, chunk: bytes) -> None:
        with self._lock:
            room = self.limit - self.size
            if len(chunk) > room:
                if room > 0:
                    self._chunks[stream].append(chunk[:room])
                    self.size += room
                self.overflowed.set()
                return
            self._chunks[stream].append(chunk)
            self.size += len(chunk)

    def text(self, stream: str) -> str:
        with self._lock:
            data = b"".join(self._chunks[stream])
        return data.decode("utf-8", errors="replace")


def _drain(pipe: BinaryIO, stream: str, capture: BoundedCapture) -> None:
    try:
        while True:
            chunk = pipe.read1(READ_CHUNK_SIZE)
            if not chunk:
                break
            capture.feed(stream, chunk)
    except (OSError, ValueError):
        # Pipe closed underneath us after a kill
        pass
    finally:
        pipe.close()


class ProcessRunner:
    """
    Runs a CommandSpec under a timeout and an output size limit.

    Attributes:
        timeout_seconds: Wall-clock limit for the child process
        max_output_bytes: Combined limit for captured stdout and stderr
        poll_interval: How often the wait loop checks limits and cancellation
    """

    def __init__(
        self,
        timeout_seconds: float = 600.0,
        max_output_bytes: int = 10 * 1024 * 1024,
        poll_interval: float = 0.1
    ):
        self.timeout_seconds = timeout_seconds
        self.max_output_bytes = max_output_bytes
        self.poll_interval = poll_interval
        self.logger = get_logger(__name__)

    def run(
        self,
        command: CommandSpec,
        cancel_event: Optional[threading.Event] = None,
        job_id: Optional[str] = None
    ) -> ExecutionOutcome:
        """
        Execute the command and classify how it ended.

        Never raises for engine failures: launch errors, nonzero exits,
        timeouts, output overflow and cancellation are all reported as
        an ExecutionOutcome.

        Args:
            command: The argument vector to execute (no shell is used)
            cancel_event: Optional event; when set, the child is killed
            job_id: Identifier used in log records

        Returns:
            ExecutionOutcome with the captured (possibly truncated) streams
        """
        started = time.monotonic()
        try:
            process = subprocess.Popen(
                list(command.argv),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=(os.name == "posix")
            )
        except (OSError, ValueError) as e:
            log_with_context(
                self.logger,
                "error",
                "Failed to start transcription process",
                job_id=job_id,
                error=e
            )
            return ExecutionOutcome(
                classification=ExitClassification.LAUNCH_ERROR,
                duration_seconds=time.monotonic() - started,
                error=redact_secret(str(e), command.secret)
            )

        capture = BoundedCapture(self.max_output_bytes)
        readers = [
            threading.Thread(target=_drain, args=(process.stdout, "stdout", capture), daemon=True),
            threading.Thread(target=_drain, args=(process.stderr, "stderr", capture), daemon=True),
        ]
        for reader in readers:
            reader.start()

        classification = self._wait(process, capture, started, cancel_event)

        for reader in readers:
            reader.join(timeout=READER_JOIN_TIMEOUT)
        if any(reader.is_alive() for reader in readers):
            # A grandchild still holds the pipes open
            self._kill(process)
            for reader in readers:
                reader.join(timeout=READER_JOIN_TIMEOUT)
            stuck = [name for name, reader in zip(("stdout", "stderr"), readers) if reader.is_alive()]
            if stuck:
                # Descendants in another session escape the group kill
                log_with_context(
                    self.logger,
                    "warning",
                    "Output readers still running after process exit; pipes left open",
                    job_id=job_id,
                    streams=stuck,
                    pid=process.pid
                )

        if classification is None:
            if capture.overflowed.is_set():
                classification = ExitClassification.OUTPUT_LIMIT
            elif process.returncode == 0:
                classification = ExitClassification.SUCCESS
            else:
                classification = ExitClassification.NONZERO_EXIT

        outcome = ExecutionOutcome(
            classification=classification,
            stdout=capture.text("stdout"),
            stderr=capture.text("stderr"),
            returncode=process.returncode,
            duration_seconds=time.monotonic() - started,
            error=self._describe(classification, process.returncode)
        )
        self._log_outcome(outcome, command, job_id)
        return outcome

    def _wait(
        self,
        process: subprocess.Popen,
        capture: BoundedCapture,
        started: float,
        cancel_event: Optional[threading.Event]
    ) -> Optional[ExitClassification]:
        """Block until the child exits; return a classification if it had to be killed."""
        deadline = started + self.timeout_seconds
        while True:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                process.wait(timeout=min(self.poll_interval, remaining))
                return None
            except subprocess.TimeoutExpired:
                pass

            if capture.overflowed.is_set():
                reason = ExitClassification.OUTPUT_LIMIT
            elif cancel_event is not None and cancel_event.is_set():
                reason = ExitClassification.CANCELLED
            elif time.monotonic() >= deadline:
                reason = ExitClassification.TIMEOUT
            else:
                continue

            self._kill(process)
            return reason

    def _kill(self, process: subprocess.Popen) -> None:
        """Forcibly stop the child and its process group, then reap it."""
        if os.name == "posix":
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            except OSError:
                process.kill()
        elif process.poll() is None:
            process.kill()
        process.wait()

    def _describe(self, classification: ExitClassification, returncode: Optional[int]) -> Optional[str]:
        if classification is ExitClassification.SUCCESS:
            return None
        if classification is ExitClassification.TIMEOUT:
            return f"Process exceeded the {self.timeout_seconds:g}s timeout and was killed"
        if classification is ExitClassification.OUTPUT_LIMIT:
            return f"Process output exceeded {self.max_output_bytes} bytes and was killed"
        if classification is ExitClassification.CANCELLED:
            return "Process was killed because the request was cancelled"
        return f"Process exited with code {returncode}"

    def _log_outcome(self, outcome: ExecutionOutcome, command: CommandSpec, job_id: Optional[str]) -> None:
        stdout = redact_secret(outcome.stdout, command.secret)
        stderr = redact_secret(outcome.stderr, command.secret)
        if outcome.succeeded:
            if stderr:
                self.logger.debug("Python script stderr", extra={"job_id": job_id, "stderr": stderr})
            self.logger.debug("Python script stdout", extra={"job_id": job_id, "stdout": stdout})
            log_with_context(
                self.logger,
                "info",
                "Transcription process finished",
                job_id=job_id,
                returncode=outcome.returncode,
                duration_seconds=round(outcome.duration_seconds, 3)
            )
            return

        log_with_context(
            self.logger,
            "warning",
            "Transcription process failed",
            job_id=job_id,
            classification=outcome.classification.value,
            returncode=outcome.returncode,
            duration_seconds=round(outcome.duration_seconds, 3),
            stderr=stderr
        )
