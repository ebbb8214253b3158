"""
Status reporter for Episode Processor.
Posts a live snapshot of a task subtree to the webhook and keeps editing it.
"""

import asyncio
from typing import Any, List, Optional, Tuple

from .logger import get_logger
from .tasks import Task, TaskState


TASK_ICONS = {
    TaskState.PENDING: "◻",
    TaskState.RUNNING: "❯",
    TaskState.COMPLETED: "✔",
    TaskState.FAILED: "✖",
}

HEADLINE_ICONS = {
    TaskState.COMPLETED: ":green_circle:",
    TaskState.FAILED: ":red_circle:",
}
DEFAULT_HEADLINE_ICON = ":yellow_circle:"


def render_snapshot(
    task: Task,
    context: Any = None,
    max_length: int = 1900,
    excerpt_length: int = 100
) -> Tuple[str, str]:
    """
    Render a task subtree.

    Returns:
        (headline, body) where body lists enabled descendants, indented by depth.
    """
    lines: List[str] = []

    def log_subtasks(current: Task, depth: int = 0) -> None:
        if not current.is_enabled(context):
            return

        state = current.state
        indent = "  " * depth
        lines.append(f"{indent}{TASK_ICONS.get(state, ' ')} {current.title}")

        if current.output and state is not TaskState.COMPLETED:
            excerpt = current.output.strip().splitlines()[-1:] or [""]
            lines.append(f"{indent}  {excerpt[0][:excerpt_length]}")

        # Completed subtrees collapse, except the reported task itself
        if current.has_subtasks() and (state is not TaskState.COMPLETED or depth == 0):
            for child in current.subtasks:
                log_subtasks(child, depth + 1)

    log_subtasks(task)

    icon = HEADLINE_ICONS.get(task.state, DEFAULT_HEADLINE_ICON)
    return f"{icon} {task.title}", "\n".join(lines)[:max_length]


class StatusReporter:
    """
    Periodically posts a snapshot of a running task subtree.

    The first snapshot is sent shortly after start, then one every `interval`
    seconds, and a final one once the subtree is done. Sends go through a
    single chain so they never overlap; the first send creates the message
    and later snapshots edit it.
    """

    def __init__(
        self,
        notifier,
        interval: float = 15.0,
        max_length: int = 1900,
        excerpt_length: int = 100,
        first_delay: float = 0.001
    ):
        self.notifier = notifier
        self.interval = interval
        self.max_length = max_length
        self.excerpt_length = excerpt_length
        self.first_delay = first_delay

        self.message_id: Optional[str] = None
        self.errors: List[Exception] = []
        self.snapshots_sent = 0

        self._task: Optional[Task] = None
        self._context: Any = None
        self._timer: Optional[asyncio.Task] = None
        self._chain: Optional[asyncio.Task] = None
        self._logger = get_logger('status')

    @property
    def active(self) -> bool:
        return self._timer is not None

    def start(self, task: Task, context: Any = None) -> None:
        """Begin reporting on a task."""
        if self._timer is not None:
            raise RuntimeError("Status reporter already started")
        self._task = task
        self._context = context
        self._timer = asyncio.create_task(self._tick())

    async def stop(self) -> None:
        """Cancel the timer and send the final snapshot."""
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        if self._task is not None:
            self.post_update()
            await self._chain

    def render(self) -> Tuple[str, str]:
        return render_snapshot(self._task, self._context, self.max_length, self.excerpt_length)

    def post_update(self) -> None:
        """Queue a snapshot behind any send still in flight."""
        self._chain = asyncio.create_task(self._send_after(self._chain))

    async def _tick(self) -> None:
        await asyncio.sleep(self.first_delay)
        self.post_update()
        while True:
            await asyncio.sleep(self.interval)
            self.post_update()

    async def _send_after(self, previous: Optional[asyncio.Task]) -> None:
        if previous is not None:
            await previous

        # Render at send time so the snapshot is as fresh as possible
        headline, body = self.render()
        try:
            if self.message_id is None:
                self.message_id = await self.notifier.send(headline, body)
            else:
                await self.notifier.edit(self.message_id, headline, body)
            self.snapshots_sent += 1
        except Exception as e:
            self.errors.append(e)
            self._logger.warning(f"Status update failed: {e}")
