"""Tests for the task tree.

These tests verify ordering, failure propagation, derived group states,
enable predicates and rollback behavior.
"""

import asyncio
import unittest

import pytest

from conftest import settle
from episodeprocessor.tasks import Task, TaskState

pytestmark = [pytest.mark.unit]


def recorder(log, name):
    async def action(context, task):
        log.append(name)
    return action


async def fail(context, task):
    raise RuntimeError(f"{task.title} broke")


def waiter(event):
    async def action(context, task):
        await event.wait()
    return action


class TestSequential(unittest.IsolatedAsyncioTestCase):
    """Test sequential groups."""

    async def test_runs_children_in_order(self):
        log = []
        root = Task("root", children=[Task(name, recorder(log, name)) for name in "abc"])

        state = await root.run({})

        self.assertEqual(state, TaskState.COMPLETED)
        self.assertEqual(log, ["a", "b", "c"])

    async def test_failure_stops_remaining_siblings(self):
        log = []
        broken = Task("broken", fail)
        never = Task("never", recorder(log, "never"))
        root = Task("root", children=[Task("ok", recorder(log, "ok")), broken, never])

        state = await root.run({})

        self.assertEqual(state, TaskState.FAILED)
        self.assertEqual(log, ["ok"])
        self.assertEqual(never.state, TaskState.PENDING)
        self.assertEqual(root.failures(), [broken])
        self.assertIsInstance(broken.error, RuntimeError)

    async def test_failure_propagates_through_nesting(self):
        inner = Task("inner", children=[Task("broken", fail)])
        after = Task("after", recorder([], "after"))
        root = Task("root", children=[inner, after])

        await root.run({})

        self.assertTrue(inner.has_failed())
        self.assertTrue(root.has_failed())
        self.assertTrue(after.is_pending())


class TestConcurrent(unittest.IsolatedAsyncioTestCase):
    """Test concurrent groups."""

    async def test_failed_child_waits_for_siblings(self):
        event = asyncio.Event()
        broken = Task("broken", fail)
        slow = Task("slow", waiter(event))
        root = Task("root", children=[broken, slow, Task("quick", recorder([], "quick"))], concurrent=True)

        running = asyncio.create_task(root.run({}))
        await settle()

        self.assertEqual(broken.state, TaskState.FAILED)
        self.assertEqual(slow.state, TaskState.RUNNING)
        self.assertEqual(root.state, TaskState.RUNNING)

        event.set()
        state = await running

        self.assertEqual(state, TaskState.FAILED)
        self.assertEqual(slow.state, TaskState.COMPLETED)

    async def test_all_children_start_together(self):
        event = asyncio.Event()
        children = [Task(str(i), waiter(event)) for i in range(3)]
        root = Task("root", children=children, concurrent=True)

        running = asyncio.create_task(root.run({}))
        await settle()
        self.assertTrue(all(child.is_running() for child in children))

        event.set()
        self.assertEqual(await running, TaskState.COMPLETED)


class TestRollback(unittest.IsolatedAsyncioTestCase):
    """Test rollback hooks."""

    async def test_rollback_once_after_siblings_settle(self):
        event = asyncio.Event()
        calls = []

        async def rollback(context, task):
            calls.append([child.state for child in task.subtasks])

        slow = Task("slow", waiter(event))
        root = Task(
            "root",
            children=[Task("a", fail), Task("b", fail), slow],
            concurrent=True,
            rollback=rollback,
        )

        running = asyncio.create_task(root.run({}))
        await settle()
        self.assertEqual(calls, [])

        event.set()
        await running

        self.assertEqual(calls, [[TaskState.FAILED, TaskState.FAILED, TaskState.COMPLETED]])

    async def test_nearest_rollback_fires_for_nested_failure(self):
        calls = []

        async def rollback(context, task):
            calls.append(task.title)

        group = Task("group", children=[Task("inner", children=[Task("broken", fail)])], rollback=rollback)
        root = Task("root", children=[group, Task("after", recorder([], "after"))])

        await root.run({})

        self.assertEqual(calls, ["group"])

    async def test_no_rollback_on_success(self):
        calls = []

        async def rollback(context, task):
            calls.append(task.title)

        await Task("group", children=[Task("ok", recorder([], "ok"))], rollback=rollback).run({})
        self.assertEqual(calls, [])

    async def test_rollback_error_is_recorded(self):
        async def rollback(context, task):
            raise ConnectionError("webhook down")

        group = Task("group", children=[Task("broken", fail)], rollback=rollback)
        state = await group.run({})

        self.assertEqual(state, TaskState.FAILED)
        self.assertIsInstance(group.rollback_error, ConnectionError)


class TestEnabled(unittest.IsolatedAsyncioTestCase):
    """Test enable predicates."""

    async def test_predicate_sees_latest_context(self):
        log = []

        async def turn_on(context, task):
            context["flag"] = True

        later = Task("later", recorder(log, "later"), enabled=lambda context: context["flag"])
        never = Task("never", recorder(log, "never"), enabled=lambda context: False)
        root = Task("root", children=[Task("turn on", turn_on), later, never])

        state = await root.run({"flag": False})

        self.assertEqual(state, TaskState.COMPLETED)
        self.assertEqual(log, ["later"])
        self.assertEqual(never.state, TaskState.SKIPPED)

    async def test_all_children_skipped_completes_group(self):
        root = Task("root", children=[Task("x", fail, enabled=lambda context: False)])
        self.assertEqual(await root.run({}), TaskState.COMPLETED)

    async def test_disabled_group_is_skipped(self):
        child = Task("child", fail)
        root = Task("root", children=[child], enabled=lambda context: False)

        self.assertEqual(await root.run({}), TaskState.SKIPPED)
        self.assertFalse(root.is_enabled({}))
        self.assertTrue(child.is_pending())


class TestChildrenFactory(unittest.IsolatedAsyncioTestCase):
    """Test children built at scheduling time."""

    async def test_factory_uses_context(self):
        async def count(context, task):
            context["n"] = 3

        group = Task("group", children=lambda context: [Task(str(i), recorder([], i)) for i in range(context["n"])])
        root = Task("root", children=[Task("count", count), group])

        self.assertIsNone(group.subtasks)
        await root.run({})

        self.assertEqual(len(group.subtasks), 3)
        self.assertTrue(group.is_completed())

    async def test_factory_error_fails_group(self):
        def broken_factory(context):
            raise KeyError("plan")

        group = Task("group", children=broken_factory)
        self.assertEqual(await group.run({}), TaskState.FAILED)
        self.assertIsInstance(group.error, KeyError)


class TestTaskBasics(unittest.IsolatedAsyncioTestCase):
    """Test construction and bookkeeping."""

    def test_action_and_children_are_exclusive(self):
        with self.assertRaises(ValueError):
            Task("bad", recorder([], "x"), children=[])

    def test_initial_state(self):
        root = Task("root", children=[Task("a", fail)])
        self.assertTrue(root.is_pending())
        self.assertFalse(root.is_terminal())

    async def test_cannot_run_twice(self):
        task = Task("once", recorder([], "once"))
        await task.run({})
        with self.assertRaises(RuntimeError):
            await task.run({})

    def test_walk_depths(self):
        leaf = Task("leaf", fail)
        root = Task("root", children=[Task("group", children=[leaf])])

        self.assertEqual([(depth, task.title) for depth, task in root.walk()], [
            (0, "root"),
            (1, "group"),
            (2, "leaf"),
        ])


class TestRaisingPredicate(unittest.IsolatedAsyncioTestCase):
    """A predicate that raises fails its task instead of escaping the tree."""

    async def test_sequential_group_fails_and_rolls_back(self):
        calls = []

        async def rollback(context, task):
            calls.append(task.title)

        after = Task("after", recorder([], "after"))
        checked = Task("upload", recorder([], "upload"), enabled=lambda context: context["uploads"])
        root = Task("root", children=[Task("ok", recorder([], "ok")), checked, after], rollback=rollback)

        state = await root.run({})

        self.assertEqual(state, TaskState.FAILED)
        self.assertTrue(checked.has_failed())
        self.assertIsInstance(checked.error, KeyError)
        self.assertTrue(after.is_pending())
        self.assertEqual(calls, ["root"])
        self.assertEqual(root.failures(), [checked])

    async def test_concurrent_siblings_still_finish(self):
        event = asyncio.Event()
        slow = Task("slow", waiter(event))
        checked = Task("upload", recorder([], "upload"), enabled=lambda context: context["uploads"])
        root = Task("root", children=[slow, checked], concurrent=True)

        running = asyncio.create_task(root.run({}))
        await settle()

        self.assertTrue(checked.has_failed())
        self.assertEqual(root.state, TaskState.RUNNING)

        event.set()
        self.assertEqual(await running, TaskState.FAILED)
        self.assertTrue(slow.is_completed())

    def test_is_enabled_does_not_raise(self):
        task = Task("upload", recorder([], "upload"), enabled=lambda context: context["uploads"])
        self.assertFalse(task.is_enabled({}))


class TestPath(unittest.IsolatedAsyncioTestCase):
    """Test task paths used in log records."""

    async def test_path_follows_tree_and_renames(self):
        async def rename(context, task):
            task.title = f"{task.title} show.mkv"

        encode = Task("Encode", recorder([], "encode"))
        source = Task("Upload source", rename)
        root = Task("Generate Cuts", children=[source, Task("AA001_2", children=[encode])], concurrent=True)

        self.assertEqual(encode.path, "Generate Cuts / AA001_2 / Encode")
        await root.run({})
        self.assertEqual(source.path, "Generate Cuts / Upload source show.mkv")

    async def test_factory_children_get_parent(self):
        group = Task("group", children=lambda context: [Task("leaf", recorder([], "leaf"))])
        await Task("root", children=[group]).run({})
        self.assertEqual(group.subtasks[0].path, "root / group / leaf")
