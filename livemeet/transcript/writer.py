"""
Snapshot writer: persists each session record as transcripts/{session_id}.json.

Commits happen under the per-session lock, so they only enqueue; a worker
task drains the queue and does the file I/O. Each snapshot replaces the
previous file for that session (write to .tmp, then rename).
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Optional

from livemeet.config import Settings, get_settings

logger = logging.getLogger(__name__)


class SnapshotWriterBase(ABC):
    """Base for session snapshot writers."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    def enqueue(self, session_id: str, record: dict[str, Any]) -> None:
        """Queue one snapshot. Non-blocking; safe to call while holding a session lock."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Flush pending snapshots and stop the worker."""
        ...


class NoOpSnapshotWriter(SnapshotWriterBase):
    """When snapshot saving is disabled. No file I/O."""

    async def start(self) -> None:
        pass

    def enqueue(self, session_id: str, record: dict[str, Any]) -> None:
        pass

    async def close(self) -> None:
        pass


class JsonSnapshotWriter(SnapshotWriterBase):
    def __init__(self, transcript_dir: Optional[str] = None) -> None:
        self._transcript_dir = transcript_dir or get_settings().TRANSCRIPT_DIR
        self._queue: asyncio.Queue[Optional[tuple[str, dict[str, Any]]]] = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self._started = False

    def path_for(self, session_id: str) -> str:
        """Snapshot path; raises ValueError if the id would resolve outside the transcript dir."""
        base = os.path.realpath(self._transcript_dir)
        path = os.path.realpath(os.path.join(base, f"{session_id}.json"))
        if os.path.dirname(path) != base:
            raise ValueError(f"session id {session_id!r} escapes the transcript directory")
        return path

    def _write(self, session_id: str, record: dict[str, Any]) -> None:
        path = self.path_for(session_id)
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(record, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, path)

    async def _worker(self) -> None:
        """Drain queue; None = stop. Log errors, never crash."""
        while True:
            item = await self._queue.get()
            if item is None:
                break
            session_id, record = item
            try:
                self._write(session_id, record)
            except OSError as e:
                logger.warning("Snapshot write failed for session %s: %s", session_id, e)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        try:
            os.makedirs(self._transcript_dir, exist_ok=True)
        except OSError as e:
            logger.warning("Snapshot dir create failed for %s: %s", self._transcript_dir, e)
        self._worker_task = asyncio.create_task(self._worker())

    def enqueue(self, session_id: str, record: dict[str, Any]) -> None:
        if not self._started:
            return
        try:
            self.path_for(session_id)
        except ValueError as e:
            logger.warning("Snapshot skipped: %s", e)
            return
        self._queue.put_nowait((session_id, record))

    async def close(self) -> None:
        if not self._started or self._worker_task is None:
            return
        try:
            self._queue.put_nowait(None)
            await asyncio.wait_for(self._worker_task, timeout=5.0)
        except asyncio.TimeoutError:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
        self._worker_task = None
        self._started = False


def create_snapshot_writer(settings: Settings | None = None) -> SnapshotWriterBase:
    """Create writer when TRANSCRIPT_SAVE_ENABLED is true; else no-op."""
    settings = settings or get_settings()
    if not settings.TRANSCRIPT_SAVE_ENABLED:
        return NoOpSnapshotWriter()
    return JsonSnapshotWriter(transcript_dir=settings.TRANSCRIPT_DIR)
