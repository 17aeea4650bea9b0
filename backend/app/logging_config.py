"""Logging setup for the Taakl backend.

Routes log through ``get_logger`` and use the structured helpers below so
sync and auth activity share one greppable line format.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(debug: bool = False) -> None:
    """Install a stream handler on the root logger once."""
    global _configured
    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        _configured = True
    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


_sync_logger = get_logger("taakl.sync")
_auth_logger = get_logger("taakl.auth")


def log_sync_operation(
    user: str,
    operation: str,
    processed: int,
    accepted: int,
    returned: int | None = None,
    error: str | None = None,
) -> None:
    """Log one sync call: SYNC | user | operation | counts."""
    parts = [f"SYNC | {user} | {operation}", f"processed={processed}", f"accepted={accepted}"]
    if returned is not None:
        parts.append(f"returned={returned}")
    if error:
        parts.append(f"error={error}")
        _sync_logger.warning(" | ".join(parts))
    else:
        _sync_logger.info(" | ".join(parts))


def log_auth_event(event: str, username: str, success: bool, reason: str | None = None) -> None:
    """Log an auth event: AUTH | event | username | ok/failed."""
    message = f"AUTH | {event} | {username} | {'ok' if success else 'failed'}"
    if reason:
        message += f" | {reason}"
    if success:
        _auth_logger.info(message)
    else:
        _auth_logger.warning(message)
