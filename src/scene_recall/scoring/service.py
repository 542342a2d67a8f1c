"""
Scoring service: runs the scorer in a background worker with a deadline.

The service owns one worker at a time, remembers which memory set the
worker already holds, and tears the worker down on any failure so the next
call starts clean.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from scene_recall.config import DEFAULT_WORKER_TIMEOUT_SECONDS
from scene_recall.models import Memory
from scene_recall.scoring.errors import ScoringTimeoutError, ScoringWorkerError
from scene_recall.scoring.models import ScoreBreakdown, ScoredMemory, ScoringRequest
from scene_recall.scoring.sync_scorer import score_memories_sync
from scene_recall.scoring.worker import ProcessScoringWorker, ScoringWorker

logger = logging.getLogger(__name__)

MemorySetKey = Tuple[int, int]


class WorkerState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    CRASHED = "crashed"


def memory_set_key(memories: Sequence[Memory]) -> MemorySetKey:
    """
    Identity of a memory set as seen by the worker.

    Changes when memories are added or removed, reordered, edited, or gain
    or change an embedding.
    """
    fingerprint = tuple(
        (
            memory.id,
            memory.summary,
            memory.importance,
            tuple(memory.message_ids),
            hash(tuple(memory.embedding)) if memory.embedding is not None else None,
        )
        for memory in memories
    )
    return len(memories), hash(fingerprint)


class ScoringService:
    """
    Scores memories in a background worker, falling back to in-process scoring.

    Example:
        >>> service = ScoringService(timeout=10.0)
        >>> scored = await service.score(memories, ScoringRequest(chat_length=120))
        >>> service.shutdown()
    """

    def __init__(
        self,
        timeout: float = DEFAULT_WORKER_TIMEOUT_SECONDS,
        worker_factory: Optional[Callable[[], ScoringWorker]] = None,
        offload: bool = True,
    ):
        """
        Initialize the scoring service.

        Args:
            timeout: Seconds to wait for a worker reply before giving up
            worker_factory: Creates a worker (default: spawned child process)
            offload: Use the background worker; False scores in-process only
        """
        self.timeout = timeout
        self.offload = offload
        self._worker_factory = worker_factory or ProcessScoringWorker
        self._worker: Optional[ScoringWorker] = None
        self._synced_key: Optional[MemorySetKey] = None
        self._state = WorkerState.IDLE

        self.offloaded_call_count = 0
        self.sync_call_count = 0
        self.failure_count = 0
        self.respawn_count = 0
        self.full_sync_count = 0

        logger.info(f"ScoringService initialized: offload={offload}, timeout={timeout}s")

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def synced_key(self) -> Optional[MemorySetKey]:
        """Key of the memory set the current worker holds (None after a reset)."""
        return self._synced_key

    @property
    def has_worker(self) -> bool:
        return self._worker is not None

    async def score(
        self, memories: Sequence[Memory], request: ScoringRequest
    ) -> List[ScoredMemory]:
        """
        Score memories, preferring the background worker.

        Worker failures are logged and the call is answered in-process; the
        failed worker has already been torn down and is replaced lazily.
        """
        if not memories:
            return []

        if self.offload:
            try:
                return await self.score_offloaded(memories, request)
            except ScoringWorkerError as e:
                logger.warning(f"Offloaded scoring failed, scoring in-process: {e}")

        self.sync_call_count += 1
        return score_memories_sync(memories, request)

    async def score_offloaded(
        self, memories: Sequence[Memory], request: ScoringRequest
    ) -> List[ScoredMemory]:
        """
        Score memories in the background worker.

        Raises:
            ScoringTimeoutError: No reply within ``timeout``
            ScoringWorkerError: Worker crashed, reported an error, or replied
                with something unreadable
        """
        if not memories:
            return []
        if self._state == WorkerState.BUSY:
            raise ScoringWorkerError("Scoring worker is busy with another request")

        worker = self._ensure_worker()
        key = memory_set_key(memories)
        payload = None if key == self._synced_key else list(memories)

        self._state = WorkerState.BUSY
        self.offloaded_call_count += 1
        try:
            worker.send(("score", payload, request))
            reply = await asyncio.wait_for(worker.receive(), timeout=self.timeout)
            results = self._decode_reply(reply, memories)
        except asyncio.TimeoutError:
            error = ScoringTimeoutError(self.timeout)
            self._teardown(error)
            raise error
        except asyncio.CancelledError:
            # The worker may still answer; its reply must not reach the next call
            self._teardown(ScoringWorkerError("Scoring call was cancelled"))
            raise
        except ScoringWorkerError as e:
            self._teardown(e)
            raise
        except Exception as e:
            error = ScoringWorkerError(f"{type(e).__name__}: {e}")
            self._teardown(error)
            raise error from e

        if payload is not None:
            self.full_sync_count += 1
        self._synced_key = key
        self._state = WorkerState.IDLE
        return results

    def shutdown(self) -> None:
        """Stop the worker (if any) and forget the synced memory set."""
        if self._worker is not None:
            self._worker.terminate()
            self._worker = None
        self._synced_key = None
        self._state = WorkerState.IDLE

    def get_metrics(self) -> dict:
        """
        Get metrics about scoring execution.

        Returns:
            Dictionary with call, failure and respawn counts
        """
        return {
            "scoring_offloaded_call_count": self.offloaded_call_count,
            "scoring_sync_call_count": self.sync_call_count,
            "scoring_failure_count": self.failure_count,
            "scoring_respawn_count": self.respawn_count,
            "scoring_full_sync_count": self.full_sync_count,
            "scoring_worker_state": self._state.value,
        }

    def _ensure_worker(self) -> ScoringWorker:
        if self._worker is not None and not self._worker.is_alive():
            self._teardown(ScoringWorkerError("Scoring worker exited unexpectedly"))

        if self._worker is None:
            if self._state == WorkerState.CRASHED:
                self.respawn_count += 1
                logger.info("Respawning scoring worker")
            try:
                self._worker = self._worker_factory()
            except Exception as e:
                self.failure_count += 1
                self._state = WorkerState.CRASHED
                raise ScoringWorkerError(f"Could not start scoring worker: {e}") from e
            self._synced_key = None
            self._state = WorkerState.IDLE
        return self._worker

    def _teardown(self, error: Exception) -> None:
        self.failure_count += 1
        logger.warning(f"Tearing down scoring worker: {error}")
        if self._worker is not None:
            self._worker.terminate()
            self._worker = None
        self._synced_key = None
        self._state = WorkerState.CRASHED

    def _decode_reply(self, reply, memories: Sequence[Memory]) -> List[ScoredMemory]:
        if not isinstance(reply, tuple) or len(reply) != 2:
            raise ScoringWorkerError(f"Malformed worker reply: {reply!r:.200}")

        status, body = reply
        if status == "error":
            raise ScoringWorkerError(f"Worker reported an error: {body}")
        if status != "ok" or not isinstance(body, list):
            raise ScoringWorkerError(f"Malformed worker reply: {reply!r:.200}")

        results = []
        for entry in body:
            try:
                index, breakdown = entry
            except (TypeError, ValueError):
                raise ScoringWorkerError(f"Malformed worker entry: {entry!r:.200}")
            if not isinstance(index, int) or not 0 <= index < len(memories):
                raise ScoringWorkerError(f"Worker returned unknown memory index: {index!r}")
            if not isinstance(breakdown, ScoreBreakdown):
                raise ScoringWorkerError(f"Malformed score breakdown: {breakdown!r:.200}")
            results.append(
                ScoredMemory(memory=memories[index], score=breakdown.total, breakdown=breakdown)
            )
        return results
