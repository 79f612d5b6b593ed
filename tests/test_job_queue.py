import asyncio

import pytest

from presales_assistant.assessment import JobLocks, QueueClosedError, SubmissionQueue


def test_queue_is_fifo_and_tolerates_duplicates():
    async def scenario():
        queue = SubmissionQueue()
        for job_id in ("a", "b", "a"):
            queue.enqueue(job_id)
        return [await queue.dequeue() for _ in range(3)]

    assert asyncio.run(scenario()) == ["a", "b", "a"]


def test_close_drains_then_stops_every_consumer():
    async def scenario():
        queue = SubmissionQueue()
        queue.enqueue("a")
        queue.close()
        with pytest.raises(QueueClosedError):
            queue.enqueue("b")
        first = await queue.dequeue()
        rest = await asyncio.gather(queue.dequeue(), queue.dequeue(), queue.dequeue())
        return first, rest, queue.closed

    first, rest, closed = asyncio.run(scenario())
    assert first == "a"
    assert rest == [None, None, None]
    assert closed


def test_dequeue_waits_for_enqueue():
    async def scenario():
        queue = SubmissionQueue()
        waiter = asyncio.create_task(queue.dequeue())
        await asyncio.sleep(0.01)
        assert not waiter.done()
        queue.enqueue("late")
        return await asyncio.wait_for(waiter, timeout=1)

    assert asyncio.run(scenario()) == "late"


def test_join_waits_for_task_done():
    async def scenario():
        queue = SubmissionQueue()
        queue.enqueue("a")
        job_id = await queue.dequeue()
        joiner = asyncio.create_task(queue.join())
        await asyncio.sleep(0.01)
        assert not joiner.done()
        queue.task_done()
        await asyncio.wait_for(joiner, timeout=1)
        return job_id

    assert asyncio.run(scenario()) == "a"


def test_join_returns_after_close():
    async def scenario():
        queue = SubmissionQueue()
        queue.enqueue("a")
        assert await queue.dequeue() == "a"
        queue.task_done()
        queue.close()
        assert await queue.dequeue() is None
        await asyncio.wait_for(queue.join(), timeout=1)
        with pytest.raises(ValueError):
            queue.task_done()

    asyncio.run(scenario())


def test_job_locks_serialise_one_job_and_are_dropped_when_free():
    async def scenario():
        locks = JobLocks()
        order = []

        async def hold(job_id, label, pause):
            async with locks.hold(job_id):
                order.append(f"{label}-in")
                await asyncio.sleep(pause)
                order.append(f"{label}-out")

        first = asyncio.create_task(hold("a", "first", 0.02))
        await asyncio.sleep(0)
        second = asyncio.create_task(hold("a", "second", 0))
        other = asyncio.create_task(hold("b", "other", 0))
        await asyncio.sleep(0)
        assert len(locks) == 2
        await asyncio.gather(first, second, other)
        return order, len(locks)

    order, remaining = asyncio.run(scenario())
    assert order.index("first-out") < order.index("second-in")
    assert order.index("other-in") < order.index("first-out")
    assert remaining == 0
