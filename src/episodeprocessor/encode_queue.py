"""
Encoder slot queue.
Limits how many ffmpeg processes run at the same time.
"""

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Deque

from .logger import get_logger


class ExecutionQueue:
    """
    FIFO admission gate with a fixed number of slots.

    acquire() waits for a free slot, release() hands it to the oldest waiter.
    """

    def __init__(self, capacity: int = 1, name: str = "encoder"):
        if capacity < 1:
            raise ValueError(f"Queue capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self.name = name
        self.ongoing = 0
        self._waiters: Deque[asyncio.Future] = deque()
        self._logger = get_logger('queue')

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        """Wait until a slot is free and take it."""
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self._check()

        try:
            await waiter
        except asyncio.CancelledError:
            # Admitted just before the cancel landed: give the slot back
            if waiter.done() and not waiter.cancelled():
                self.release()
            raise

        self._logger.debug(f"{self.name}: slot taken ({self.ongoing}/{self.capacity})")

    def release(self) -> None:
        """Free a slot and admit the next waiter."""
        if self.ongoing <= 0:
            raise RuntimeError(f"{self.name}: release() without acquire()")
        self.ongoing -= 1
        self._logger.debug(f"{self.name}: slot released ({self.ongoing}/{self.capacity})")
        self._check()

    @asynccontextmanager
    async def slot(self):
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def _check(self) -> None:
        while self.ongoing < self.capacity and self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self.ongoing += 1
            waiter.set_result(None)


@dataclass
class EncoderQueues:
    """Named queue handles per media type; audio may alias the video queue."""
    video: ExecutionQueue
    audio: ExecutionQueue

    @classmethod
    def from_limits(cls, video: int = 1, audio: int = 0) -> 'EncoderQueues':
        """Build queues; audio == 0 shares the video queue."""
        video_queue = ExecutionQueue(video, name="video")
        audio_queue = ExecutionQueue(audio, name="audio") if audio > 0 else video_queue
        return cls(video=video_queue, audio=audio_queue)

    @property
    def shared(self) -> bool:
        return self.audio is self.video

    def for_type(self, media_type: str) -> ExecutionQueue:
        return self.audio if media_type == "audio" else self.video
