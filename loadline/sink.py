from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

import pandas as pd

from .config import RESULT_COLUMNS, HeaderPolicy
from .errors import ResultWriteError

if TYPE_CHECKING:
    from .driver import BenchmarkResult

LOGGER = logging.getLogger("loadline.sink")

HEADER_LINE = ",".join(RESULT_COLUMNS) + "\n"


class ResultSink:
    """Append-only CSV writer that flushes every row as soon as it is written."""

    def __init__(self, path: Path, handle: TextIO, header_policy: HeaderPolicy) -> None:
        self._path = path
        self._handle: TextIO | None = handle
        self._header_policy = header_policy
        self._was_empty = os.fstat(handle.fileno()).st_size == 0
        self.rows_written = 0

    @classmethod
    def open(
        cls,
        path: str | os.PathLike[str],
        header_policy: HeaderPolicy = HeaderPolicy.ALWAYS,
    ) -> "ResultSink":
        path = Path(path)
        try:
            handle = open(path, "a", encoding="utf-8", newline="")
        except OSError as exc:
            raise ResultWriteError(f"opening results file {path}: {exc}") from exc
        sink = cls(path, handle, header_policy)
        LOGGER.debug("Opened results file %s (empty=%s)", path, sink._was_empty)
        if header_policy is HeaderPolicy.ALWAYS or sink._was_empty:
            sink.write_header()
        return sink

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._handle is None

    def write_header(self) -> None:
        self._write(HEADER_LINE)

    def write_result(self, result: "BenchmarkResult") -> None:
        self._write(result.to_row())
        self.rows_written += 1

    def close(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            handle.close()
        except OSError as exc:
            raise ResultWriteError(f"closing results file {self._path}: {exc}") from exc

    def _write(self, line: str) -> None:
        if self._handle is None:
            raise ResultWriteError(f"results file {self._path} is closed")
        try:
            self._handle.write(line)
            self._handle.flush()
        except (OSError, ValueError) as exc:
            raise ResultWriteError(f"writing results file {self._path}: {exc}") from exc

    def __enter__(self) -> "ResultSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def read_results(path: str | os.PathLike[str]) -> pd.DataFrame:
    """Load a results file, tolerating the repeated headers left by earlier runs."""

    frame = pd.read_csv(path, dtype=str)
    missing = [column for column in RESULT_COLUMNS if column not in frame.columns]
    if missing:
        raise ValueError(f"{path} is missing result columns: {', '.join(missing)}")
    frame = frame[frame["Num"] != "Num"]
    return frame.loc[:, list(RESULT_COLUMNS)].astype("int64").reset_index(drop=True)


__all__ = ["HEADER_LINE", "ResultSink", "read_results"]
