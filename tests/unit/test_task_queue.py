"""Tests for tessera.core.task_queue - persistent worker invocations."""

from __future__ import annotations

import threading

import pytest

from tessera.core.models import PyramidRequest
from tessera.core.task_queue import TaskQueue, TaskStatus, TaskWorker


class TestEnqueueAndClaim:
    """Test FIFO ordering and claiming."""

    def test_claim_oldest_first(self, task_queue: TaskQueue):
        first = task_queue.enqueue("noop", {"n": 1})
        task_queue.enqueue("noop", {"n": 2})
        task = task_queue.claim_next()
        assert task is not None
        assert task.id == first
        assert task.payload == {"n": 1}
        assert task.status == TaskStatus.PROCESSING

    def test_claim_empty(self, task_queue: TaskQueue):
        assert task_queue.claim_next() is None

    def test_pydantic_payload_serialised(self, task_queue: TaskQueue):
        """Pydantic payloads are stored as their JSON dump."""
        task_id = task_queue.enqueue(
            "start", PyramidRequest(artwork_id="a1", source_image_ref="s.png")
        )
        assert task_queue.get(task_id).payload == {
            "artwork_id": "a1",
            "source_image_ref": "s.png",
        }


class TestRunning:
    """Test handler execution."""

    def test_run_until_empty_follows_continuations(self, task_queue: TaskQueue):
        """Tasks enqueued by a handler are run in the same drain."""
        seen = []

        def handler(payload):
            seen.append(payload["n"])
            if payload["n"] < 3:
                task_queue.enqueue("count", {"n": payload["n"] + 1})

        task_queue.register("count", handler)
        task_queue.enqueue("count", {"n": 1})
        assert task_queue.run_until_empty() == 3
        assert seen == [1, 2, 3]
        assert task_queue.counts()["complete"] == 3

    def test_max_tasks(self, task_queue: TaskQueue):
        task_queue.register("noop", lambda payload: None)
        for _ in range(4):
            task_queue.enqueue("noop", {})
        assert task_queue.run_until_empty(max_tasks=2) == 2
        assert task_queue.counts()["pending"] == 2

    def test_handler_error_marks_task(self, task_queue: TaskQueue):
        """A raising handler marks its task error and the queue carries on."""

        def boom(payload):
            raise RuntimeError("boom")

        task_queue.register("boom", boom)
        task_queue.register("noop", lambda payload: None)
        bad = task_queue.enqueue("boom", {})
        good = task_queue.enqueue("noop", {})

        assert task_queue.run_until_empty() == 2
        assert task_queue.get(bad).status == TaskStatus.ERROR
        assert task_queue.get(bad).error_message == "boom"
        assert task_queue.get(good).status == TaskStatus.COMPLETE

    def test_missing_handler(self, task_queue: TaskQueue):
        task_id = task_queue.enqueue("unknown", {})
        assert task_queue.run_next() is True
        assert task_queue.get(task_id).status == TaskStatus.ERROR

    def test_requeue_stale(self, task_queue: TaskQueue):
        """Tasks left processing are returned to pending."""
        task_queue.enqueue("noop", {})
        task_queue.claim_next()
        assert task_queue.requeue_stale() == 1
        assert len(task_queue.list_tasks(TaskStatus.PENDING)) == 1


class TestTaskWorker:
    """Test the background worker thread."""

    def test_worker_drains_queue(self, task_queue: TaskQueue):
        done = threading.Event()
        task_queue.register("signal", lambda payload: done.set())
        task_queue.enqueue("signal", {})

        worker = TaskWorker(task_queue, poll_interval=0.01)
        worker.start()
        try:
            assert done.wait(timeout=5)
        finally:
            worker.stop()
        assert not worker.is_alive()

    @pytest.mark.parametrize("status", list(TaskStatus))
    def test_counts_include_every_status(self, task_queue: TaskQueue, status):
        assert task_queue.counts()[status.value] == 0
