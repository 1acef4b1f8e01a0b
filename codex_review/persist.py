"""Write review text to disk."""

from __future__ import annotations

from pathlib import Path


def write_result(output_file: str | Path, text: str) -> Path:
    """
    Save review text as UTF-8, creating parent directories as needed.

    Returns the path written. OSError propagates to the caller.
    """
    path = Path(output_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path
