"""Three-bucket priority queue for pending translations."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from ..models import Priority, TranslationRequest


@dataclass
class QueueItem:
    id: str
    request: TranslationRequest
    priority: Priority
    retry_count: int = 0
    enqueued_at: float = field(default_factory=time.monotonic)
    future: Optional[asyncio.Future] = None


class TranslationQueue:
    """Priority first, FIFO within a priority.

    ``push`` inserts before the first item of strictly lower priority, so a
    re-queued item lands at the tail of its bucket.
    """

    def __init__(self) -> None:
        self._items: List[QueueItem] = []

    def push(self, item: QueueItem) -> None:
        index = len(self._items)
        for i, other in enumerate(self._items):
            if other.priority > item.priority:
                index = i
                break
        self._items.insert(index, item)

    def pop(self) -> Optional[QueueItem]:
        return self._items.pop(0) if self._items else None

    def drain(self) -> List[QueueItem]:
        items, self._items = self._items, []
        return items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[QueueItem]:
        return iter(list(self._items))
