"""
Append-only output sinks.

ResultLog is the plain-text log of a batch: one line per terminal outcome plus the
summary block. MetricsWriter keeps the same outcomes as CSV rows for later analysis.
Both reopen the file on every write so a line is on disk as soon as its request
settles, and both serialize writers behind an asyncio.Lock.
"""

from __future__ import annotations
import asyncio
import csv
import os
from datetime import datetime, timezone
from typing import Optional

from livepeer_stress.outcome import RequestOutcome


def run_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp safe for file names (``:`` and ``.`` become ``-``)."""
    now = now or datetime.now(timezone.utc)
    iso = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def iso_time(epoch_seconds: float) -> str:
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class ResultLog:
    def __init__(self, path: str, header: Optional[str] = None):
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        # start a fresh file for this run
        with open(path, "w", encoding="utf-8") as f:
            if header:
                f.write(header.rstrip("\n") + "\n")
        self._lock = asyncio.Lock()

    def _write(self, text: str):
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(text)

    async def append(self, line: str):
        async with self._lock:
            self._write(line.rstrip("\n") + "\n")

    def append_block(self, text: str):
        """Synchronous append for summaries and errors written after the batch settled."""
        self._write(text if text.endswith("\n") else text + "\n")

    def read(self) -> str:
        with open(self.path, "r", encoding="utf-8") as f:
            return f.read()


class MetricsWriter:
    FIELDS = [
        "request_num",
        "success",
        "status_code",
        "retry_count",
        "duration_ms",
        "start_time",
        "end_time",
        "error_kind",
        "error",
    ]

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        self._init_header()
        self._lock = asyncio.Lock()

    def _init_header(self):
        if not os.path.exists(self.csv_path):
            with open(self.csv_path, "w", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(self.FIELDS)

    async def write(self, outcome: RequestOutcome):
        row = [
            outcome.request_num,
            outcome.success,
            outcome.status_code,
            outcome.retry_count,
            outcome.duration_ms,
            iso_time(outcome.start_time),
            iso_time(outcome.end_time),
            outcome.error_kind,
            outcome.error,
        ]
        async with self._lock:
            with open(self.csv_path, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(row)
