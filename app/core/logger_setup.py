"""
Logger Setup
-----------
Loguru configuration for the identity service.

Three sinks:

- console, always on
- daily application log, outside debug mode
- security log, outside debug mode, holding only records bound with a
  ``security_event`` extra (refresh token reuse, family wipes, permission
  matrix divergence)

A patcher masks bearer tokens and refresh cookie values before any sink sees
a message.
"""

import re
import sys
from loguru import logger
from app.core.config_manager import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"
SECURITY_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[security_event]} | {message}"

BEARER_PATTERN = re.compile(r"(Bearer:?\s+)[\w\-\.]+", re.IGNORECASE)
REDACTED = "[REDACTED]"


def is_security_event(record) -> bool:
    """Filter for records emitted via logger.bind(security_event=...)."""
    return "security_event" in record["extra"]


def redact_secrets(record) -> None:
    """Mask bearer tokens and the refresh cookie value in the message."""
    message = BEARER_PATTERN.sub(rf"\g<1>{REDACTED}", record["message"])
    cookie_key = re.escape(settings.refresh_token_cookie_key)
    message = re.sub(rf"({cookie_key}=)[^;\s]+", rf"\g<1>{REDACTED}", message)
    record["message"] = message


def _add_file_sinks(level: str) -> None:
    logger.add(
        "logs/identity_{time:YYYY-MM-DD}.log",
        rotation="500 MB",
        retention="10 days",
        level=level,
        format=FILE_FORMAT,
        backtrace=True,
        diagnose=False,
    )
    logger.add(
        "logs/security_{time:YYYY-MM-DD}.log",
        rotation="100 MB",
        retention="90 days",
        level="WARNING",
        filter=is_security_event,
        format=SECURITY_FORMAT,
        backtrace=False,
        diagnose=False,
    )


def configure_logger() -> None:
    """Replace loguru's default handler with the service sinks."""
    logger.remove()
    logger.configure(patcher=redact_secrets)

    logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level=settings.log_level,
        colorize=True,
        backtrace=True,
        diagnose=settings.debug,
    )
    if not settings.debug:
        _add_file_sinks(settings.log_level)

    logger.info(f"Logger configured with level: {settings.log_level}")
