"""Process memory sampling for pipeline runs."""

from __future__ import annotations

import logging
from typing import Callable

import psutil

from ..models import MemorySample

logger = logging.getLogger(__name__)

MB = 1024 * 1024


def process_rss(include_children: bool = True) -> int:
    """Resident set size of this process, plus its children (the OCR worker process)."""
    proc = psutil.Process()
    total = proc.memory_info().rss
    if include_children:
        for child in proc.children(recursive=True):
            try:
                total += child.memory_info().rss
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
    return int(total)


def to_mb(value: float) -> float:
    return round(value / MB, 2)


class MemoryTracker:
    """Record start, peak and end memory across the stages of one run."""

    def __init__(self, reader: Callable[[], int] = process_rss) -> None:
        self._reader = reader
        self.sample = MemorySample()

    def _read(self) -> int:
        try:
            return int(self._reader())
        except (psutil.Error, OSError) as exc:
            logger.debug("Memory reading failed: %s", exc)
            return self.sample.end or self.sample.start

    def start(self) -> None:
        value = self._read()
        self.sample = MemorySample(start=value, peak=value, end=value)

    def checkpoint(self) -> int:
        value = self._read()
        self.sample.peak = max(self.sample.peak, value)
        return value

    def finish(self) -> MemorySample:
        self.sample.end = self.checkpoint()
        return self.sample
