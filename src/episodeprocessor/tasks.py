"""
Task tree for Episode Processor.

A Task is either a leaf running an async action or a group of child tasks
run one after another (sequential) or all at once (concurrent). A group's
state is derived from its children. Groups may carry a rollback action that
fires once when anything below them fails.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, List, Optional, Sequence, Tuple, Union

from .logger import get_task_logger


class TaskState(Enum):
    """Task lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = (TaskState.COMPLETED, TaskState.FAILED, TaskState.SKIPPED)

Action = Callable[[Any, 'Task'], Awaitable[None]]
ChildrenFactory = Callable[[Any], Sequence['Task']]
Predicate = Callable[[Any], bool]


class Task:
    """
    Unit of work in the task tree.

    Args:
        title: Display title, may be changed by the action while running.
        action: Async callable (context, task) for leaf tasks.
        children: Child tasks, or a factory called with the run context when
            the group is scheduled.
        concurrent: Start all enabled children together instead of in order.
        enabled: Predicate over the run context, checked at scheduling time.
        rollback: Async callable (context, task) run once if this subtree fails.
        reporter: Optional StatusReporter following this subtree.
    """

    def __init__(
        self,
        title: str,
        action: Optional[Action] = None,
        children: Union[Sequence['Task'], ChildrenFactory, None] = None,
        concurrent: bool = False,
        enabled: Optional[Predicate] = None,
        rollback: Optional[Action] = None,
        reporter=None
    ):
        if action is not None and children is not None:
            raise ValueError(f"Task {title!r} can't have both an action and children")

        self.title = title
        self.action = action
        self.concurrent = concurrent
        self.enabled = enabled
        self.rollback = rollback
        self.reporter = reporter

        self.parent: Optional['Task'] = None
        self._children_factory: Optional[ChildrenFactory] = None
        self.subtasks: Optional[List['Task']] = None
        if callable(children):
            self._children_factory = children
        elif children is not None:
            self._adopt(children)

        self.output: str = ""
        self.error: Optional[BaseException] = None
        self.rollback_error: Optional[BaseException] = None

        self._state = TaskState.PENDING
        self._started = False
        self._rolled_back = False
        self._logger = get_task_logger(self)

    def __repr__(self) -> str:
        return f"<Task {self.title!r} {self.state.value}>"

    def _adopt(self, children: Sequence['Task']) -> None:
        self.subtasks = list(children)
        for child in self.subtasks:
            child.parent = self

    @property
    def path(self) -> str:
        """Titles from the root down to this task."""
        titles = []
        task: Optional[Task] = self
        while task is not None:
            titles.append(task.title)
            task = task.parent
        return " / ".join(reversed(titles))

    @property
    def is_group(self) -> bool:
        return self.action is None

    @property
    def state(self) -> TaskState:
        """Current state; groups derive it from their children."""
        if self._state in (TaskState.SKIPPED, TaskState.FAILED) or self.subtasks is None:
            return self._state
        if not self._started:
            return TaskState.PENDING

        states = [child.state for child in self.subtasks]
        states = [state for state in states if state is not TaskState.SKIPPED]

        if TaskState.RUNNING in states:
            return TaskState.RUNNING
        if TaskState.FAILED in states:
            return TaskState.FAILED
        if all(state is TaskState.COMPLETED for state in states):
            return TaskState.COMPLETED
        return TaskState.RUNNING

    def is_pending(self) -> bool:
        return self.state is TaskState.PENDING

    def is_running(self) -> bool:
        return self.state is TaskState.RUNNING

    def is_completed(self) -> bool:
        return self.state is TaskState.COMPLETED

    def has_failed(self) -> bool:
        return self.state is TaskState.FAILED

    def is_skipped(self) -> bool:
        return self.state is TaskState.SKIPPED

    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def has_subtasks(self) -> bool:
        return bool(self.subtasks)

    def is_enabled(self, context: Any) -> bool:
        """Whether the task runs under the given context."""
        if self._state is TaskState.SKIPPED:
            return False
        if self._started or self._state is TaskState.FAILED or self.enabled is None:
            return True
        try:
            return bool(self.enabled(context))
        except Exception:
            # _begin records the error when the task is scheduled
            return False

    def walk(self, depth: int = 0) -> Iterator[Tuple[int, 'Task']]:
        """Yield (depth, task) for this task and every known descendant."""
        yield depth, self
        for child in self.subtasks or ():
            yield from child.walk(depth + 1)

    def failures(self) -> List['Task']:
        """Tasks in this subtree that recorded an error."""
        return [task for _, task in self.walk() if task.error is not None]

    async def run(self, context: Any) -> TaskState:
        """
        Run the task under the given context.

        Task failures are recorded on the task, never raised.

        Returns:
            Final state.
        """
        if self._begin(context):
            await self._execute(context)
        return self.state

    def _begin(self, context: Any) -> bool:
        if self._started or self._state is not TaskState.PENDING:
            raise RuntimeError(f"Task {self.title!r} was already run")

        if self.enabled is not None:
            try:
                enabled = self.enabled(context)
            except Exception as e:
                self.error = e
                self._state = TaskState.FAILED
                self._logger.error(f"Enable check failed: {e!r}")
                return False

            if not enabled:
                self._state = TaskState.SKIPPED
                self._logger.debug("Skipped")
                return False

        self._started = True
        self._state = TaskState.RUNNING
        return True

    async def _execute(self, context: Any) -> None:
        if self.reporter is not None:
            self.reporter.start(self, context)
        try:
            if self.is_group:
                await self._run_children(context)
            else:
                await self._run_action(context)
        finally:
            if self.reporter is not None:
                await self.reporter.stop()

        if self.has_failed():
            await self._rollback(context)

    async def _run_action(self, context: Any) -> None:
        self._logger.debug("Started")
        try:
            await self.action(context, self)
        except asyncio.CancelledError:
            self._state = TaskState.FAILED
            raise
        except Exception as e:
            self.error = e
            self._state = TaskState.FAILED
            self._logger.error(f"Failed: {e}")
            return

        self._state = TaskState.COMPLETED
        self._logger.debug("Completed")

    async def _run_children(self, context: Any) -> None:
        if self.subtasks is None:
            factory = self._children_factory
            try:
                self._adopt(factory(context) if factory is not None else [])
            except Exception as e:
                self.subtasks = []
                self.error = e
                self._state = TaskState.FAILED
                self._logger.error(f"Failed to build subtasks: {e}")
                return

        if self.concurrent:
            started = [child for child in self.subtasks if child._begin(context)]
            await asyncio.gather(*(child._execute(context) for child in started))
            return

        for child in self.subtasks:
            await child.run(context)
            if child.has_failed():
                break

    async def _rollback(self, context: Any) -> None:
        if self.rollback is None or self._rolled_back:
            return
        self._rolled_back = True

        self._logger.warning("Rolling back")
        try:
            await self.rollback(context, self)
        except Exception as e:
            self.rollback_error = e
            self._logger.error(f"Rollback failed: {e}")
