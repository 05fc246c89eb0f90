"""
Interpreter discovery for the external transcription engine.

The engine is a Python script, but the host it runs on is unknown: the
interpreter may be called python3, python, or live under one of several
Windows install locations. This module tries an ordered candidate list
and returns the first interpreter that answers a version check.
"""

import subprocess
import sys
from pathlib import Path, PureWindowsPath
from typing import Callable, Iterable, Optional, Tuple

from app.errors import RuntimeNotFoundError
from app.logging_config import get_logger, log_with_context


VersionCheck = Callable[[str], bool]


def default_candidates(
    platform: Optional[str] = None,
    home: Optional[Path] = None
) -> Tuple[str, ...]:
    """
    Build the prioritized interpreter candidates for a platform.

    Args:
        platform: Platform identifier as reported by sys.platform (defaults to the current one)
        home: User home directory used for per-user Windows installs

    Returns:
        Tuple of executable names or paths, most preferred first
    """
    platform = platform or sys.platform
    if platform != "win32":
        return ("python3", "python")

    home_dir = PureWindowsPath(str(home if home is not None else Path.home()))
    windows_apps = home_dir / "AppData" / "Local" / "Microsoft" / "WindowsApps"
    return (
        str(windows_apps / "python3.12.exe"),
        str(windows_apps / "python3.exe"),
        "python",
        "python3",
        str(home_dir / "AppData" / "Local" / "Programs" / "Python" / "Python312" / "python.exe"),
        "C:\\Python312\\python.exe",
        "C:\\Python311\\python.exe",
        "C:\\Python310\\python.exe",
    )


def version_check(timeout: float = 10.0) -> VersionCheck:
    """
    Create a check that runs ``<candidate> --version``.

    The candidate passes when the process starts and exits with status
    zero inside the time limit.
    """
    def check(candidate: str) -> bool:
        try:
            subprocess.run(
                [candidate, "--version"],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=timeout,
                check=True
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return True

    return check


class ExecutableLocator:
    """
    Finds the first usable interpreter in an ordered candidate list.

    Candidates are tried strictly in order and checking stops at the first
    success. Both the candidate list and the check are injectable, so the
    lookup is a pure function of its inputs plus whatever the check does.

    Attributes:
        candidates: Ordered executable names or paths
        check: Callable returning True when a candidate is usable
    """

    def __init__(
        self,
        candidates: Optional[Iterable[str]] = None,
        check: Optional[VersionCheck] = None,
        check_timeout: float = 10.0
    ):
        self.candidates = tuple(candidates) if candidates is not None else default_candidates()
        self.check = check or version_check(check_timeout)
        self.logger = get_logger(__name__)

    def locate(self) -> str:
        """
        Return the first candidate that passes the check.

        Returns:
            The executable name or path exactly as listed in the candidates

        Raises:
            RuntimeNotFoundError: If no candidate passes
        """
        for candidate in self.candidates:
            if self.check(candidate):
                log_with_context(
                    self.logger,
                    "info",
                    "Found Python runtime",
                    runtime=candidate
                )
                return candidate
            self.logger.debug(f"Runtime candidate rejected: {candidate}")

        log_with_context(
            self.logger,
            "error",
            "Could not find Python executable",
            candidates=list(self.candidates)
        )
        tried = ", ".join(self.candidates) or "(none)"
        raise RuntimeNotFoundError(details=f"Tried candidates: {tried}")
