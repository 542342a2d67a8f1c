"""Tests for ScoringService worker lifecycle, sync avoidance and fallback."""

import asyncio

import pytest

from scene_recall.models import Memory
from scene_recall.scoring import (
    ProcessScoringWorker,
    ScoringRequest,
    ScoringService,
    ScoringTimeoutError,
    ScoringWorkerError,
    WorkerState,
    memory_set_key,
    score_memories_sync,
)


class FakeWorker:
    """In-process stand-in that answers like the real worker."""

    def __init__(self, reply=None, delay=0.0, alive=True):
        self.sent = []
        self.reply = reply
        self.delay = delay
        self.alive = alive
        self.terminated = False
        self._memories = None

    def send(self, message):
        self.sent.append(message)

    async def receive(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.reply is not None:
            return self.reply
        _, payload, request = self.sent[-1]
        if payload is not None:
            self._memories = list(payload)
        if self._memories is None:
            return ("error", "No memory set synced")
        scored = score_memories_sync(self._memories, request)
        index_of = {id(m): i for i, m in enumerate(self._memories)}
        return ("ok", [(index_of[id(s.memory)], s.breakdown) for s in scored])

    def is_alive(self):
        return self.alive

    def terminate(self):
        self.terminated = True
        self.alive = False


class WorkerFactory:
    def __init__(self, **worker_kwargs):
        self.worker_kwargs = worker_kwargs
        self.created = []

    def __call__(self):
        worker = FakeWorker(**self.worker_kwargs)
        self.created.append(worker)
        return worker


@pytest.fixture
def memories():
    """A handful of memories spread across the chat."""
    return [
        Memory(id="m1", summary="Met the blacksmith", importance=2, message_ids=[5]),
        Memory(id="m2", summary="The king died", importance=5, message_ids=[10]),
        Memory(id="m3", summary="Found a map", importance=4, message_ids=[80]),
    ]


@pytest.fixture
def request_():
    return ScoringRequest(chat_length=100)


@pytest.mark.asyncio
async def test_offloaded_matches_in_process(memories, request_):
    """The worker path returns the same ranking and scores as in-process scoring."""
    service = ScoringService(worker_factory=WorkerFactory())

    offloaded = await service.score_offloaded(memories, request_)
    local = score_memories_sync(memories, request_)

    assert [s.memory.id for s in offloaded] == [s.memory.id for s in local]
    assert [s.score for s in offloaded] == pytest.approx([s.score for s in local])
    # Results refer to the caller's objects, not copies
    assert all(any(s.memory is m for m in memories) for s in offloaded)


@pytest.mark.asyncio
async def test_unchanged_memory_set_is_not_resent(memories, request_):
    """The second call with the same set sends no payload."""
    factory = WorkerFactory()
    service = ScoringService(worker_factory=factory)

    await service.score_offloaded(memories, request_)
    await service.score_offloaded(memories, ScoringRequest(chat_length=120))

    worker = factory.created[0]
    assert worker.sent[0][1] is not None
    assert worker.sent[1][1] is None
    assert service.full_sync_count == 1
    assert service.synced_key == memory_set_key(memories)


@pytest.mark.asyncio
async def test_changed_memory_set_is_resent(memories, request_):
    factory = WorkerFactory()
    service = ScoringService(worker_factory=factory)

    await service.score_offloaded(memories, request_)
    extra = Memory(id="m4", summary="A storm", message_ids=[90])
    await service.score_offloaded([*memories, extra], request_)

    assert factory.created[0].sent[1][1] is not None
    assert service.full_sync_count == 2


def test_memory_set_key_tracks_edits(memories):
    before = memory_set_key(memories)
    edited = [m.model_copy(update={"summary": "changed"}) if m.id == "m1" else m for m in memories]
    assert memory_set_key(edited) != before
    assert memory_set_key(list(memories)) == before


def test_memory_set_key_tracks_embedding_values(memories):
    embedded = [m.model_copy(update={"embedding": [1.0, 0.0]}) for m in memories]
    reembedded = [m.model_copy(update={"embedding": [0.0, 1.0]}) for m in memories]

    assert memory_set_key(embedded) != memory_set_key(memories)
    assert memory_set_key(reembedded) != memory_set_key(embedded)


@pytest.mark.asyncio
async def test_reembedded_memory_set_is_resent(memories, request_):
    """Swapping embedding vectors (e.g. a new model) resyncs the worker."""
    factory = WorkerFactory()
    service = ScoringService(worker_factory=factory)
    embedded = [m.model_copy(update={"embedding": [1.0, 0.0]}) for m in memories]
    reembedded = [m.model_copy(update={"embedding": [0.0, 1.0]}) for m in memories]

    await service.score_offloaded(embedded, request_)
    await service.score_offloaded(reembedded, request_)

    assert factory.created[0].sent[1][1] is not None
    assert service.full_sync_count == 2


@pytest.mark.asyncio
async def test_cancelled_call_resets_worker_and_next_call_respawns(memories, request_):
    """A caller-side deadline that cancels scoring leaves no stale worker behind."""
    factory = WorkerFactory(delay=10.0)
    service = ScoringService(timeout=30.0, worker_factory=factory)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(service.score(memories, request_), 0.05)

    assert service.state == WorkerState.CRASHED
    assert service.has_worker is False
    assert service.synced_key is None
    assert factory.created[0].terminated

    factory.worker_kwargs = {}
    results = await service.score(memories, request_)

    assert len(results) == 3
    assert len(factory.created) == 2
    assert service.respawn_count == 1
    assert service.sync_call_count == 0
    assert service.state == WorkerState.IDLE
    assert factory.created[1].sent[0][1] is not None


@pytest.mark.asyncio
async def test_timeout_resets_worker_and_next_call_respawns(memories, request_):
    """A hung worker is torn down; the next call gets a fresh one."""
    factory = WorkerFactory(delay=1.0)
    service = ScoringService(timeout=0.05, worker_factory=factory)

    with pytest.raises(ScoringTimeoutError) as exc_info:
        await service.score_offloaded(memories, request_)

    assert exc_info.value.timeout == 0.05
    assert service.synced_key is None
    assert service.has_worker is False
    assert service.state == WorkerState.CRASHED
    assert factory.created[0].terminated

    factory.worker_kwargs = {}
    results = await service.score_offloaded(memories, request_)

    assert len(results) == 3
    assert len(factory.created) == 2
    assert service.respawn_count == 1
    assert service.state == WorkerState.IDLE
    # Fresh worker must receive the full set again
    assert factory.created[1].sent[0][1] is not None


@pytest.mark.asyncio
async def test_error_reply_raises_and_resets(memories, request_):
    service = ScoringService(worker_factory=WorkerFactory(reply=("error", "boom")))

    with pytest.raises(ScoringWorkerError, match="boom"):
        await service.score_offloaded(memories, request_)

    assert service.synced_key is None
    assert service.failure_count == 1


@pytest.mark.asyncio
async def test_unknown_index_in_reply_is_rejected(memories, request_):
    service = ScoringService(worker_factory=WorkerFactory(reply=("ok", [(99, None)])))

    with pytest.raises(ScoringWorkerError):
        await service.score_offloaded(memories, request_)


@pytest.mark.asyncio
async def test_malformed_reply_is_rejected(memories, request_):
    service = ScoringService(worker_factory=WorkerFactory(reply="garbage"))

    with pytest.raises(ScoringWorkerError, match="Malformed"):
        await service.score_offloaded(memories, request_)


@pytest.mark.asyncio
async def test_dead_worker_is_replaced(memories, request_):
    """A worker that exited between calls is replaced before sending."""
    factory = WorkerFactory()
    service = ScoringService(worker_factory=factory)

    await service.score_offloaded(memories, request_)
    factory.created[0].alive = False
    await service.score_offloaded(memories, request_)

    assert len(factory.created) == 2
    assert service.respawn_count == 1
    assert factory.created[1].sent[0][1] is not None


@pytest.mark.asyncio
async def test_factory_failure_raises_worker_error(memories, request_):
    def broken_factory():
        raise OSError("cannot spawn")

    service = ScoringService(worker_factory=broken_factory)

    with pytest.raises(ScoringWorkerError, match="cannot spawn"):
        await service.score_offloaded(memories, request_)


@pytest.mark.asyncio
async def test_score_falls_back_to_in_process(memories, request_):
    """score() never fails because of the worker."""
    service = ScoringService(timeout=0.05, worker_factory=WorkerFactory(delay=1.0))

    results = await service.score(memories, request_)

    expected = score_memories_sync(memories, request_)
    assert [s.memory.id for s in results] == [s.memory.id for s in expected]
    metrics = service.get_metrics()
    assert metrics["scoring_sync_call_count"] == 1
    assert metrics["scoring_failure_count"] == 1


@pytest.mark.asyncio
async def test_offload_disabled_never_creates_worker(memories, request_):
    factory = WorkerFactory()
    service = ScoringService(worker_factory=factory, offload=False)

    results = await service.score(memories, request_)

    assert len(results) == 3
    assert factory.created == []
    assert service.sync_call_count == 1


@pytest.mark.asyncio
async def test_empty_input_skips_worker(request_):
    factory = WorkerFactory()
    service = ScoringService(worker_factory=factory)

    assert await service.score([], request_) == []
    assert factory.created == []


@pytest.mark.asyncio
async def test_limit_applies_in_worker(memories):
    service = ScoringService(worker_factory=WorkerFactory())

    results = await service.score_offloaded(memories, ScoringRequest(chat_length=100, limit=2))

    assert len(results) == 2


@pytest.mark.asyncio
async def test_shutdown_terminates_worker(memories, request_):
    factory = WorkerFactory()
    service = ScoringService(worker_factory=factory)
    await service.score_offloaded(memories, request_)

    service.shutdown()

    assert factory.created[0].terminated
    assert service.has_worker is False
    assert service.synced_key is None
    assert service.state == WorkerState.IDLE


@pytest.mark.asyncio
async def test_process_worker_matches_in_process(memories, request_):
    """The spawned process worker produces the in-process ranking."""
    service = ScoringService(timeout=60.0, worker_factory=ProcessScoringWorker)
    try:
        first = await service.score_offloaded(memories, request_)
        second = await service.score_offloaded(memories, request_)
    finally:
        service.shutdown()

    local = score_memories_sync(memories, request_)
    assert [s.memory.id for s in first] == [s.memory.id for s in local]
    assert [s.score for s in second] == pytest.approx([s.score for s in local])
    assert service.full_sync_count == 1
