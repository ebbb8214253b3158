"""Shared fakes for episodeprocessor tests.

The fakes stand in for the external collaborators of a run: the Discord
webhook, the S3 store and the ffmpeg runner.
"""

import asyncio
from pathlib import Path

from episodeprocessor.errors import EncodeError


async def settle(rounds: int = 5) -> None:
    """Let every ready task run a few steps."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeNotifier:
    """Records every send/edit call."""

    def __init__(self, fail_sends: int = 0, delay: float = 0.0):
        self.calls = []
        self.errors = []
        self.fail_sends = fail_sends
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._next_id = 0

    async def _track(self):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

    async def send(self, message, log=None, ping=False):
        await self._track()
        if self.fail_sends > 0:
            self.fail_sends -= 1
            raise ConnectionError("webhook down")
        self._next_id += 1
        message_id = f"msg-{self._next_id}"
        self.calls.append(("send", message_id, message, log, ping))
        return message_id

    async def edit(self, message_id, message, log=None):
        await self._track()
        self.calls.append(("edit", message_id, message, log, False))
        return message_id

    def texts(self):
        return [call[2] for call in self.calls if isinstance(call[2], str)]


class FakeRunner:
    """Pretends to encode by writing the output file (last argument)."""

    def __init__(self, fail_on=None, delay=0.0):
        self.calls = []
        self.fail_on = fail_on
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(self, args, task=None, cwd=None):
        self.calls.append(list(args))
        output = args[-1]

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        if self.fail_on and output.endswith(self.fail_on):
            raise EncodeError(1, "Conversion failed!")
        Path(output).write_bytes(b"encoded")
        if task is not None:
            task.output = "frame= 100 fps=50"
        return "done"


class FakeStore:
    """In-memory object store."""

    def __init__(self, buckets=("private-bucket", "public-bucket"), existing=0):
        self.buckets = list(buckets)
        self.existing = existing
        self.puts = []

    async def bucket_names(self):
        return self.buckets

    async def count_objects(self, bucket, prefix, sample_size=10):
        keys = [f"{prefix}/old-{i}.mp4" for i in range(self.existing)]
        return len(keys), keys[:sample_size]

    async def put(self, bucket, key, file_path, public=False, metadata=None, progress=None):
        self.puts.append((bucket, key, file_path, public))
        if progress:
            progress(1, 1)
        return f"https://s3.example.com/{bucket}/{key}"

    async def presign(self, bucket, key, expires=0):
        return f"signed:{key}"


class FakeTask:
    """Bare object with the `output` attribute the runner writes to."""

    def __init__(self):
        self.output = ""
