"""Priority queue of execution paths awaiting dispatch."""

import heapq
import itertools
from dataclasses import dataclass, field
from typing import List, Optional

from capy_web.schemas.research_schema import ExecutionPath


@dataclass(order=True)
class QueuedPath:
    """
    Heap entry ordering paths by priority (desc), then enqueue order (asc).

    Fields:
        sort_key: (-priority, sequence); the only compared field
        path: The queued execution path
    """

    sort_key: tuple
    path: ExecutionPath = field(compare=False)


class PathQueue:
    """
    Binary heap of ExecutionPaths.

    Higher priority pops first. Equal priorities pop in the order they were
    pushed, so scheduling is deterministic.
    """

    def __init__(self, paths: Optional[List[ExecutionPath]] = None):
        self._heap: List[QueuedPath] = []
        self._counter = itertools.count()
        for path in paths or []:
            self.push(path)

    def push(self, path: ExecutionPath) -> None:
        heapq.heappush(self._heap, QueuedPath((-path.priority, next(self._counter)), path))

    def pop(self) -> ExecutionPath:
        """
        Remove and return the highest-priority path.

        Raises:
            IndexError: If the queue is empty
        """
        return heapq.heappop(self._heap).path

    def peek(self) -> Optional[ExecutionPath]:
        return self._heap[0].path if self._heap else None

    def pending(self) -> List[ExecutionPath]:
        """Queued paths in dispatch order, without removing them."""
        return [entry.path for entry in sorted(self._heap)]

    def clear(self) -> None:
        self._heap.clear()

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)
