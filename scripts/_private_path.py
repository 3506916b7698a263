"""Path type that hides the user's home directory when printed.

Examples
--------
>>> from pathlib import Path
>>> str(PrivatePath(Path.home() / "project" / "plugins"))
'~/project/plugins'
>>> str(PrivatePath("/opt/project"))
'/opt/project'
"""

from __future__ import annotations

import pathlib


class PrivatePath(pathlib.PosixPath):
    """A ``PosixPath`` whose string form collapses ``$HOME`` to ``~``."""

    def __str__(self) -> str:
        raw = super().__str__()
        home = str(pathlib.Path.home())
        if raw == home:
            return "~"
        if raw.startswith(home + "/"):
            return "~" + raw[len(home) :]
        return raw

    def __fspath__(self) -> str:
        return super().__str__()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r})"
