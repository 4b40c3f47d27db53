"""Crash-safe CSV persistence for pipeline results."""

import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Union

import pandas as pd
from loguru import logger


class WriterIOError(Exception):
    """Raised when a record cannot be durably written."""
    pass


def _fsync_directory(directory: Path) -> None:
    """Persist a directory entry change (file creation or rename)."""
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _as_rows(records: Iterable[Any]) -> List[Dict[str, Any]]:
    return [record.to_row() if hasattr(record, "to_row") else dict(record) for record in records]


class IncrementalWriter:
    """Append-only or snapshot CSV writer for one destination file.

    ``append`` adds rows and writes the header only when the destination does
    not exist yet. ``write_all`` atomically replaces the destination with the
    full list. Both fsync the data, and the directory entry when a file is
    created or replaced, before returning.
    """

    def __init__(self, path: Union[str, Path], columns: Sequence[str]):
        self.path = Path(path)
        self.columns = list(columns)
        self._lock = threading.Lock()

    def _frame(self, records: Iterable[Any]) -> pd.DataFrame:
        return pd.DataFrame(_as_rows(records), columns=self.columns)

    def _has_content(self) -> bool:
        return self.path.exists() and self.path.stat().st_size > 0

    def _ends_with_newline(self) -> bool:
        with open(self.path, "rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) in (b"\n", b"\r")

    def append(self, records: Union[Any, Sequence[Any]]) -> int:
        """Append one record or one batch of records.

        Returns:
            Number of data rows written.
        """
        if not isinstance(records, (list, tuple)):
            records = [records]
        if not records:
            return 0

        df = self._frame(records)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                exists = self._has_content()
                needs_separator = exists and not self._ends_with_newline()
                with open(self.path, "a", encoding="utf-8", newline="") as f:
                    if needs_separator:
                        f.write("\n")
                    df.to_csv(f, header=not exists, index=False, lineterminator="\n")
                    f.flush()
                    os.fsync(f.fileno())
                if not exists:
                    _fsync_directory(self.path.parent)
            except OSError as e:
                raise WriterIOError(f"Failed to append to {self.path}: {e}") from e

        logger.debug(f"Appended {len(df)} row(s) to {self.path}")
        return len(df)

    def write_all(self, records: Sequence[Any]) -> int:
        """Rewrite the destination from the full record list."""
        df = self._frame(records)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8", newline="") as f:
                    df.to_csv(f, index=False, lineterminator="\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
                _fsync_directory(self.path.parent)
            except OSError as e:
                if tmp_path.is_file():
                    tmp_path.unlink()
                raise WriterIOError(f"Failed to write {self.path}: {e}") from e

        logger.debug(f"Wrote {len(df)} row(s) to {self.path}")
        return len(df)
