"""
Structured logging for the Whisper Upload Gateway.

Every line is a JSON object carrying the service name, the source location
and whatever job context the caller attached (job id, artifact path,
engine streams). The diarization token can reach log records through
engine stderr or exception text, so it is masked twice: explicitly with
redact_secret() where the token is known, and by TokenRedactionFilter on
every handler as a last pass.
"""

import logging
import os
import sys
from typing import Optional
from pythonjsonlogger import jsonlogger


SERVICE_NAME = "whisper-upload-gateway"
REDACTED_TOKEN = "[HF_TOKEN_HIDDEN]"


def redact_secret(text: Optional[str], secret: Optional[str]) -> Optional[str]:
    """
    Mask every occurrence of a secret inside a piece of text.

    Args:
        text: Text that may contain the secret (None is passed through)
        secret: The secret to hide; nothing is replaced when it is empty

    Returns:
        The text with the secret replaced by a fixed marker

    Example:
        >>> redact_secret("--hf-token hf_abc", "hf_abc")
        '--hf-token [HF_TOKEN_HIDDEN]'
    """
    if not text or not secret:
        return text
    return text.replace(secret, REDACTED_TOKEN)


class TokenRedactionFilter(logging.Filter):
    """
    Masks the current diarization token in a record's message and string fields.

    The token is looked up in the environment for each record, matching
    how the service reads it per request.
    """

    def __init__(self, token_env: str):
        super().__init__()
        self.token_env = token_env

    def filter(self, record: logging.LogRecord) -> bool:
        secret = os.environ.get(self.token_env)
        if not secret:
            return True

        message = record.getMessage()
        if secret in message:
            record.msg = redact_secret(message, secret)
            record.args = None
        for key, value in list(vars(record).items()):
            if key != "msg" and isinstance(value, str) and secret in value:
                setattr(record, key, redact_secret(value, secret))
        return True


class GatewayJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding service, level and source location to each line."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = self.formatTime(record, self.datefmt)
        log_record['service'] = SERVICE_NAME
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['location'] = f"{record.module}.{record.funcName}:{record.lineno}"

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    use_json: bool = True,
    token_env: Optional[str] = None
) -> None:
    """
    Configure the root logger for the gateway.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file that receives a copy of stdout logging
        use_json: Emit JSON lines (plain text otherwise, for local runs)
        token_env: Environment variable holding the diarization token; when
            given, every handler masks its value

    Example:
        >>> setup_logging(log_level="DEBUG", token_env="HUGGING_FACE_TOKEN")
    """
    level = getattr(logging, log_level.upper())

    if use_json:
        formatter = GatewayJsonFormatter(
            '%(timestamp)s %(level)s %(logger)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = []
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        if token_env:
            handler.addFilter(TokenRedactionFilter(token_env))
        root_logger.addHandler(handler)

    root_logger.info(
        "Logging configured",
        extra={"log_level": log_level, "use_json": use_json, "log_file": log_file}
    )


def get_logger(name: str) -> logging.Logger:
    """Return the module logger; configuration lives on the root logger."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    job_id: Optional[str] = None,
    file_path: Optional[str] = None,
    file_size: Optional[int] = None,
    error: Optional[Exception] = None,
    **kwargs
) -> None:
    """
    Log a message with job context as structured fields.

    Fields that are None are left out. An exception adds its type and text
    and attaches the traceback.

    Args:
        logger: Logger instance to use
        level: Log level name (debug, info, warning, error, critical)
        message: Log message
        job_id: Job identifier (time token + filename)
        file_path: Artifact the message is about
        file_size: Artifact size in bytes
        error: Exception being reported
        **kwargs: Additional context fields

    Example:
        >>> log_with_context(
        ...     logger,
        ...     "info",
        ...     "Temporary file saved",
        ...     job_id="1718000000000000000-meeting.mp3",
        ...     file_path="/tmp/whisper-uploads/1718000000000000000-meeting.mp3",
        ...     file_size=1024000
        ... )
    """
    context = {
        key: value
        for key, value in (("job_id", job_id), ("file_path", file_path), ("file_size", file_size))
        if value is not None
    }
    if error is not None:
        context['error_type'] = type(error).__name__
        context['error_message'] = str(error)
    context.update(kwargs)

    getattr(logger, level.lower())(message, extra=context, exc_info=error is not None)
