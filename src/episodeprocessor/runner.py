"""
External process runner.
Runs ffmpeg (or any encoder) and streams its progress into a task.
"""

import asyncio
import codecs
import re
from collections import deque
from typing import Deque, Optional, Sequence

from .errors import EncodeError, ToolNotFoundError
from .logger import get_logger


NEWLINE_RE = re.compile(r'\r\n|\r|\n')
PROGRESS_PREFIX = 'frame='
MAX_LINES = 100


class ProgressLog:
    """
    Tail of a process's diagnostic output.

    Consecutive progress lines ("frame=...") collapse into one rolling line,
    and only the last `max_lines` lines are kept.
    """

    def __init__(self, max_lines: int = MAX_LINES, progress_prefix: str = PROGRESS_PREFIX):
        self.progress_prefix = progress_prefix
        self.lines: Deque[str] = deque(maxlen=max_lines)
        self._current = ""

    def feed(self, text: str) -> None:
        chunks = NEWLINE_RE.split(text)
        for index, chunk in enumerate(chunks):
            if index > 0:
                self._push(self._current)
                self._current = ""
            self._current += chunk

    def flush(self) -> None:
        if self._current:
            self._push(self._current)
            self._current = ""

    def _push(self, line: str) -> None:
        if (
            self.lines
            and line.startswith(self.progress_prefix)
            and self.lines[-1].startswith(self.progress_prefix)
        ):
            self.lines[-1] = line
        else:
            self.lines.append(line)

    @property
    def last(self) -> str:
        return self.lines[-1] if self.lines else ""

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class ProcessRunner:
    """Runs an external executable, resolving on exit code 0."""

    def __init__(self, executable: str = "ffmpeg", read_size: int = 4096):
        self.executable = executable
        self.read_size = read_size
        self._logger = get_logger('runner')

    async def run(
        self,
        args: Sequence[str],
        task=None,
        cwd: Optional[str] = None
    ) -> str:
        """
        Run the executable with the given arguments.

        Args:
            args: Argument list (without the executable).
            task: Optional task whose `output` follows the latest progress line.
            cwd: Working directory for the process.

        Returns:
            Retained diagnostic tail.

        Raises:
            ToolNotFoundError: The executable could not be launched.
            EncodeError: The process exited with a non-zero code.
        """
        args = [str(arg) for arg in args]
        self._logger.debug(f"Running: {self.executable} {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                self.executable, *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd
            )
        except OSError as e:
            raise ToolNotFoundError(f"Couldn't execute {self.executable}: {e}") from e

        log = ProgressLog()
        decoder = codecs.getincrementaldecoder('utf-8')(errors='ignore')

        while True:
            chunk = await process.stderr.read(self.read_size)
            if not chunk:
                break
            log.feed(decoder.decode(chunk))
            if task is not None and log.lines:
                task.output = log.last

        log.feed(decoder.decode(b'', final=True))
        log.flush()
        await process.wait()

        if task is not None:
            task.output = log.text

        if process.returncode != 0:
            self._logger.error(f"{self.executable} exited with {process.returncode}")
            raise EncodeError(process.returncode, log.text, self.executable)

        return log.text
