"""
Argument vector construction for the transcription engine.

The engine contract is::

    <runtime> <worker-script> --input <path> --output-json <path> [--diarize] [--hf-token <token>]

Each value is its own argv element and the command is executed without
a shell, so nothing in an uploaded filename can escape its argument.
"""

from pathlib import Path
from typing import Optional, Union

from app.logging_config import get_logger
from app.models import CommandSpec


logger = get_logger(__name__)

INPUT_FLAG = "--input"
OUTPUT_FLAG = "--output-json"
DIARIZE_FLAG = "--diarize"
TOKEN_FLAG = "--hf-token"


def build_command(
    runtime: str,
    script_path: Union[str, Path],
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    diarize: bool = False,
    hf_token: Optional[str] = None
) -> CommandSpec:
    """
    Assemble the engine invocation for one job.

    When diarization is requested without a token the command is still
    built, without the token argument; the degradation is logged as a
    warning and is not an error.

    Args:
        runtime: Interpreter returned by the ExecutableLocator
        script_path: Engine entry script
        input_path: Input artifact
        output_path: Expected output artifact
        diarize: Whether to request speaker diarization
        hf_token: Credential passed to the engine for diarization

    Returns:
        CommandSpec holding the ordered argument vector
    """
    argv = [
        runtime,
        str(script_path),
        INPUT_FLAG,
        str(input_path),
        OUTPUT_FLAG,
        str(output_path),
    ]

    secret = None
    if diarize:
        argv.append(DIARIZE_FLAG)
        if hf_token:
            argv.extend([TOKEN_FLAG, hf_token])
            secret = hf_token
        else:
            logger.warning("Proceeding with diarization request but without HF token.")

    return CommandSpec(
        runtime=runtime,
        script_path=str(script_path),
        argv=tuple(argv),
        secret=secret
    )
