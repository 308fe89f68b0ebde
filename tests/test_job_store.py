import asyncio
from uuid import uuid4

import pytest

from packages.domain.ai_categorization.job_store import (
    PROGRESS_SCRIPT,
    RELEASE_SCRIPT,
    InMemoryJobStateStore,
    RedisJobStateStore,
    build_job_store,
)
from packages.domain.ai_categorization.schemas import (
    ErrorKind,
    ProcessingError,
    ProcessingProgress,
)


class FakeRedis:
    """The subset of redis.asyncio.Redis used by RedisJobStateStore"""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.closed = False

    async def mget(self, *keys):
        return [self.data.get(k) for k in keys]

    async def exists(self, key):
        return int(key in self.data)

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def eval(self, script, numkeys, *keys_and_args):
        job_key, progress_key = keys_and_args[:numkeys]
        args = keys_and_args[numkeys:]
        owner = self.data.get(job_key)
        if script == RELEASE_SCRIPT:
            if owner != args[0]:
                return 0
            return await self.delete(job_key, progress_key)
        if script == PROGRESS_SCRIPT:
            if owner is not None and owner != args[0]:
                return 0
            await self.set(job_key, args[0], ex=int(args[2]))
            await self.set(progress_key, args[1], ex=int(args[2]))
            return 1
        raise AssertionError("unexpected script")

    async def aclose(self):
        self.closed = True


@pytest.fixture(params=["memory", "redis"])
def store(request):
    if request.param == "memory":
        return InMemoryJobStateStore()
    return RedisJobStateStore(FakeRedis(), ttl_seconds=600)


def _error():
    return ProcessingError(code=ErrorKind.RATE_LIMITED, message="limit", retryable=True)


def test_initial_state_is_idle(store):
    state = asyncio.run(store.get_state(uuid4()))

    assert state.processing is False
    assert state.job_id == ""
    assert state.progress is None
    assert state.last_error is None


def test_try_start_is_single_flight(store):
    user_id = uuid4()

    async def scenario():
        first = await store.try_start(user_id, "job-1")
        second = await store.try_start(user_id, "job-2")
        return first, second, await store.get_state(user_id)

    first, second, state = asyncio.run(scenario())

    assert first is True
    assert second is False
    assert state.processing is True
    assert state.job_id == "job-1"


def test_users_are_independent(store):
    async def scenario():
        return await store.try_start(uuid4(), "a"), await store.try_start(uuid4(), "b")

    assert asyncio.run(scenario()) == (True, True)


def test_finish_clears_job_and_progress_but_keeps_error(store):
    user_id = uuid4()

    async def scenario():
        await store.try_start(user_id, "job-1")
        await store.set_progress(user_id, "job-1", ProcessingProgress(processed_count=10, total_count=40,
                                                                      current_batch=1, total_batches=1))
        await store.set_error(user_id, _error())
        await store.finish(user_id, "job-1")
        return await store.get_state(user_id), await store.is_processing(user_id)

    state, processing = asyncio.run(scenario())

    assert processing is False
    assert state.job_id == ""
    assert state.progress is None
    assert state.last_error.code == ErrorKind.RATE_LIMITED


def test_progress_round_trip(store):
    user_id = uuid4()
    progress = ProcessingProgress(processed_count=40, total_count=45, current_batch=2, total_batches=2)

    async def scenario():
        await store.try_start(user_id, "job-1")
        await store.set_progress(user_id, "job-1", progress)
        return await store.get_state(user_id)

    assert asyncio.run(scenario()).progress == progress


def test_clear_error(store):
    user_id = uuid4()

    async def scenario():
        await store.set_error(user_id, _error())
        await store.clear_error(user_id)
        return await store.get_state(user_id)

    assert asyncio.run(scenario()).last_error is None


def test_empty_job_id_is_rejected(store):
    with pytest.raises(ValueError):
        asyncio.run(store.try_start(uuid4(), ""))


def test_in_memory_progress_is_a_snapshot():
    store = InMemoryJobStateStore()
    user_id = uuid4()
    progress = ProcessingProgress(processed_count=1, total_count=10, current_batch=1, total_batches=1)

    async def scenario():
        await store.try_start(user_id, "job-1")
        await store.set_progress(user_id, "job-1", progress)
        progress.processed_count = 9
        return await store.get_state(user_id)

    assert asyncio.run(scenario()).progress.processed_count == 1


def test_finish_by_another_job_keeps_the_claim(store):
    user_id = uuid4()
    progress = ProcessingProgress(processed_count=1, total_count=10, current_batch=1, total_batches=1)

    async def scenario():
        await store.try_start(user_id, "job-1")
        await store.set_progress(user_id, "job-1", progress)
        released = await store.finish(user_id, "job-0")
        overwritten = await store.set_progress(
            user_id, "job-0",
            ProcessingProgress(processed_count=9, total_count=10, current_batch=1, total_batches=1),
        )
        return released, overwritten, await store.get_state(user_id)

    released, overwritten, state = asyncio.run(scenario())

    assert released is False
    assert overwritten is False
    assert state.job_id == "job-1"
    assert state.progress == progress


def test_redis_expired_claim_is_not_released_by_the_old_job():
    client = FakeRedis()
    store = RedisJobStateStore(client, ttl_seconds=600)
    user_id = uuid4()
    job_key = f"ai_categorization:job:{user_id}"

    async def scenario():
        await store.try_start(user_id, "job-old")
        # Claim expires while the old job is still running
        del client.data[job_key]
        claimed_new = await store.try_start(user_id, "job-new")
        await store.finish(user_id, "job-old")
        claimed_third = await store.try_start(user_id, "job-third")
        return claimed_new, claimed_third, await store.get_state(user_id)

    claimed_new, claimed_third, state = asyncio.run(scenario())

    assert claimed_new is True
    assert claimed_third is False
    assert state.processing is True
    assert state.job_id == "job-new"


def test_redis_progress_refreshes_claim_ttl():
    client = FakeRedis()
    store = RedisJobStateStore(client, ttl_seconds=600)
    user_id = uuid4()
    job_key = f"ai_categorization:job:{user_id}"
    progress = ProcessingProgress(processed_count=0, total_count=10, current_batch=1, total_batches=1)

    async def scenario():
        await store.try_start(user_id, "job-1")
        client.ttls[job_key] = 5
        await store.set_progress(user_id, "job-1", progress)
        # A claim that expired without a competing start is taken back
        del client.data[job_key]
        reclaimed = await store.set_progress(user_id, "job-1", progress)
        return reclaimed, await store.get_state(user_id)

    reclaimed, state = asyncio.run(scenario())

    assert client.ttls[job_key] == 600
    assert client.ttls[f"ai_categorization:progress:{user_id}"] == 600
    assert reclaimed is True
    assert state.job_id == "job-1"


def test_redis_keys_carry_ttl():
    client = FakeRedis()
    store = RedisJobStateStore(client, ttl_seconds=600)
    user_id = uuid4()

    async def scenario():
        await store.try_start(user_id, "job-1")
        await store.set_error(user_id, _error())
        await store.close()

    asyncio.run(scenario())

    assert client.ttls[f"ai_categorization:job:{user_id}"] == 600
    assert client.ttls[f"ai_categorization:error:{user_id}"] == 600
    assert client.closed is True


def test_build_job_store():
    assert isinstance(build_job_store("memory"), InMemoryJobStateStore)
    with pytest.raises(ValueError):
        build_job_store("redis")
    with pytest.raises(ValueError):
        build_job_store("sqlite")
