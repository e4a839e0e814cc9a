# ABOUTME: Unit tests for the reconciliation work queue
# ABOUTME: Tests retries, per-key serialization, concurrency, deadlines and correlation IDs

import asyncio

import pytest

from kserve_reconciler.config import QueueSettings
from kserve_reconciler.engine.errors import BuildError, ConflictError, ReconcileError
from kserve_reconciler.utils.logging import correlation_id, get_correlation_id
from kserve_reconciler.utils.workqueue import WorkQueue, is_retryable


class Flaky:
    """Factory failing with the given errors before succeeding."""

    def __init__(self, *errors: Exception, result: str = "done") -> None:
        self.errors = list(errors)
        self.result = result
        self.attempts = 0

    async def __call__(self) -> str:
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def queue(fast_queue_settings: QueueSettings) -> WorkQueue:
    return WorkQueue(fast_queue_settings)


@pytest.mark.unit
class TestIsRetryable:
    """Tests for is_retryable."""

    def test_store_conflict(self):
        assert is_retryable(ConflictError("stale"))

    def test_wrapped_conflict(self):
        assert is_retryable(ReconcileError("apply", "k", ConflictError("stale")))

    def test_build_error(self):
        assert not is_retryable(ReconcileError("build", "k", BuildError("bad")))

    def test_deadline(self):
        assert is_retryable(TimeoutError())

    def test_plain_exception(self):
        assert not is_retryable(RuntimeError("bug"))


@pytest.mark.unit
class TestWorkQueueRetries:
    """Tests for retry behaviour."""

    async def test_success_returns_result(self, queue):
        assert await queue.run("k", Flaky()) == "done"

    async def test_retryable_failure_is_retried(self, queue):
        factory = Flaky(ConflictError("stale"), ConflictError("stale"))

        assert await queue.run("k", factory) == "done"
        assert factory.attempts == 3

    async def test_non_retryable_failure_raises_immediately(self, queue):
        factory = Flaky(ReconcileError("build", "k", BuildError("bad")))

        with pytest.raises(ReconcileError):
            await queue.run("k", factory)
        assert factory.attempts == 1

    async def test_gives_up_after_max_attempts(self, queue):
        factory = Flaky(*(ConflictError(f"stale {i}") for i in range(5)))

        with pytest.raises(ConflictError, match="stale 2"):
            await queue.run("k", factory)
        assert factory.attempts == 3

    async def test_attempt_deadline(self):
        settings = QueueSettings(max_attempts=2, backoff_min=0.001, backoff_max=0.001, cycle_timeout=0.01)
        attempts = 0

        async def hang():
            nonlocal attempts
            attempts += 1
            await asyncio.sleep(10)

        with pytest.raises(TimeoutError):
            await WorkQueue(settings).run("k", hang)
        assert attempts == 2


@pytest.mark.unit
class TestWorkQueueScheduling:
    """Tests for serialization and concurrency."""

    async def test_same_key_never_overlaps(self, queue):
        running = 0
        peak = 0

        async def item():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await asyncio.gather(*(queue.run("same", item) for _ in range(3)))

        assert peak == 1

    async def test_different_keys_run_concurrently(self, queue):
        both_started = asyncio.Event()
        started = 0

        async def item():
            nonlocal started
            started += 1
            if started == 2:
                both_started.set()
            await asyncio.wait_for(both_started.wait(), timeout=1)

        await asyncio.gather(queue.run("a", item), queue.run("b", item))

        assert both_started.is_set()

    async def test_concurrency_limit(self):
        queue = WorkQueue(QueueSettings(max_concurrency=1, backoff_min=0.001, backoff_max=0.001))
        running = 0
        peak = 0

        async def item():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await asyncio.gather(*(queue.run(f"k{i}", item) for i in range(3)))

        assert peak == 1

    async def test_run_all_reports_each_outcome(self, queue):
        results = await queue.run_all(
            [
                ("a", Flaky(result="a")),
                ("b", Flaky(ReconcileError("build", "b", BuildError("bad")))),
                ("c", Flaky(result="c")),
            ]
        )

        assert results[0] == "a"
        assert isinstance(results[1], ReconcileError)
        assert results[2] == "c"

    async def test_each_item_gets_own_correlation_id(self, queue):
        correlation_id.set("caller01")
        seen = []

        async def item():
            seen.append(get_correlation_id())

        await queue.run("a", item)
        await queue.run("b", item)

        assert len(set(seen)) == 2
        assert "caller01" not in seen
        assert get_correlation_id() == "caller01"


@pytest.mark.unit
class TestWorkQueueLocks:
    """Tests for the per-key lock bookkeeping."""

    async def test_locks_released_after_sequential_items(self, queue):
        for i in range(100):
            await queue.run(f"AuthConfig/models/isvc-{i}", Flaky())

        assert queue._locks == {}
        assert queue._users == {}

    async def test_locks_released_after_run_all(self, queue):
        await queue.run_all(
            [
                ("same", Flaky()),
                ("same", Flaky()),
                ("other", Flaky(ReconcileError("build", "other", BuildError("bad")))),
            ]
        )

        assert queue._locks == {}

    async def test_waiting_item_keeps_lock_alive(self, queue):
        release = asyncio.Event()
        order = []

        async def first():
            order.append("first")
            await release.wait()

        async def second():
            order.append("second")

        running = asyncio.gather(queue.run("same", first), queue.run("same", second))
        await asyncio.sleep(0.01)
        assert list(queue._locks) == ["same"]
        assert queue._users["same"] == 2

        release.set()
        await running

        assert order == ["first", "second"]
        assert queue._locks == {}
