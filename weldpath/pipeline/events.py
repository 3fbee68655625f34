from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from enum import Enum
import functools
import threading
from typing import Callable, Deque


class PipelineState(str, Enum):
    IDLE = "idle"
    LOADING_INPUT = "loading_input"
    PROCESSING_INPUT = "processing_input"
    GENERATING_MESH = "generating_mesh"
    GENERATING_PATH = "generating_path"
    COMPUTING_TRAJECTORY = "computing_trajectory"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    state: PipelineState
    progress: float
    message: str
    run_id: int = 0


class EventChannel:
    """FIFO of callbacks posted from any thread and run by the owner on drain.

    ``post`` never blocks on the consumer. ``drain`` runs exactly the callbacks
    queued when it started, in order; anything posted meanwhile waits for the
    next drain.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queue: Deque[Callable[[], None]] = deque()

    def post(self, callback: Callable[..., None], *args: object) -> None:
        item = functools.partial(callback, *args) if args else callback
        with self._lock:
            self._queue.append(item)

    def drain(self) -> int:
        with self._lock:
            batch, self._queue = self._queue, deque()
        count = 0
        try:
            while batch:
                callback = batch.popleft()
                count += 1
                callback()
        finally:
            if batch:
                # a callback raised: keep the rest ahead of newer posts
                with self._lock:
                    self._queue.extendleft(reversed(batch))
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)
