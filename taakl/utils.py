"""Small filesystem helpers for taakl."""

import os
from pathlib import Path


def get_taakl_home() -> Path:
    """Directory holding the server database.

    ``TAAKL_HOME`` overrides the default of ``~/.taakl``.
    """
    override = os.environ.get("TAAKL_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".taakl"
