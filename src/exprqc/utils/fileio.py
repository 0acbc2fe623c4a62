"""
Crash-safe output files for QC reports.

Each report file is written to a sibling temporary file and moved into place
with ``os.replace()``, so a reader sees either the previous report or the
complete new one.
"""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Iterator, TextIO

import pandas as pd


@contextmanager
def atomic_open(path: str | os.PathLike) -> Iterator[TextIO]:
    """Text handle whose content replaces `path` only if the block succeeds."""
    target = os.fspath(path)
    fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(target) or ".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", newline="") as handle:
            yield handle
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Serialize `data` to `path` as JSON (atomic)."""
    with atomic_open(path) as handle:
        json.dump(data, handle, indent=indent)


def atomic_write_csv(path: str | os.PathLike, frame: pd.DataFrame, *, index: bool = True) -> None:
    """Write `frame` to `path` as CSV (atomic)."""
    with atomic_open(path) as handle:
        frame.to_csv(handle, index=index)
