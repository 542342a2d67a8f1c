"""
Background scoring worker.

The worker is a separate process speaking a small request/response
protocol over a multiprocessing pipe:

    parent -> worker: ("score", memories | None, ScoringRequest)
                      ("stop",)
    worker -> parent: ("ok", [(index, ScoreBreakdown), ...])
                      ("error", message)

``memories`` is None when the parent knows the worker already holds the
current memory set; the worker then scores its cached copy.
"""

import asyncio
import logging
import multiprocessing
from typing import Any, Protocol

from typing_extensions import runtime_checkable

from scene_recall.scoring.sync_scorer import score_memories_sync

logger = logging.getLogger(__name__)

STOP_MESSAGE = ("stop",)


def run_scoring_worker(conn) -> None:
    """Worker process main loop. Exits on "stop" or when the parent goes away."""
    memories = None
    while True:
        try:
            message = conn.recv()
        except (EOFError, OSError):
            break

        kind = message[0] if isinstance(message, tuple) and message else None
        if kind == "stop":
            break
        if kind != "score" or len(message) != 3:
            conn.send(("error", f"Unknown message: {message!r}"))
            continue

        _, payload, request = message
        if payload is not None:
            memories = list(payload)
        if memories is None:
            conn.send(("error", "No memory set synced"))
            continue

        try:
            scored = score_memories_sync(memories, request)
            index_of = {id(memory): index for index, memory in enumerate(memories)}
            conn.send(("ok", [(index_of[id(item.memory)], item.breakdown) for item in scored]))
        except Exception as e:
            conn.send(("error", f"{type(e).__name__}: {e}"))

    conn.close()


@runtime_checkable
class ScoringWorker(Protocol):
    """Handle on one running scoring worker."""

    def send(self, message: Any) -> None:
        ...

    async def receive(self) -> Any:
        """Wait for the next reply. Raises EOFError if the worker is gone."""
        ...

    def is_alive(self) -> bool:
        ...

    def terminate(self) -> None:
        """Stop the worker and release its resources. Safe to call twice."""
        ...


class ProcessScoringWorker:
    """Scoring worker running in a spawned child process."""

    def __init__(self):
        ctx = multiprocessing.get_context("spawn")
        self._conn, child_conn = ctx.Pipe()
        self._process = ctx.Process(
            target=run_scoring_worker,
            args=(child_conn,),
            name="scene-recall-scorer",
            daemon=True,
        )
        self._process.start()
        # Parent keeps only its end so recv() sees EOF when the child dies
        child_conn.close()
        logger.debug(f"Scoring worker started: pid={self._process.pid}")

    @property
    def pid(self):
        return self._process.pid

    def send(self, message: Any) -> None:
        self._conn.send(message)

    async def receive(self) -> Any:
        return await asyncio.to_thread(self._conn.recv)

    def is_alive(self) -> bool:
        return self._process.is_alive()

    def terminate(self) -> None:
        if self._process.is_alive():
            try:
                self._conn.send(STOP_MESSAGE)
            except (BrokenPipeError, OSError):
                pass
            self._process.join(timeout=0.5)
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=1.0)
        self._conn.close()
        logger.debug(f"Scoring worker stopped: pid={self._process.pid}")
