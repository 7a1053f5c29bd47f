"""
Batch job registry. Owns every BatchJob/SceneTask state change.

Scene tasks only move forward (pending -> running -> succeeded|failed) and the
first terminal write wins, so duplicate completions are harmless. A pending
task may also fail directly when its batch is abandoned before dispatch;
success is only recorded for a running task. Writes to a job are serialized
with a per-job asyncio.Lock.

Expired jobs are swept whenever a new batch is created, so a store whose
batches are never polled again still frees them.
"""
import asyncio
import logging
import time
import uuid
from typing import Callable, Dict, List, Optional
from .models import BatchJob, SceneTask
from .settings import BATCH_TTL_S

logger = logging.getLogger(__name__)


class BatchNotFoundError(LookupError):
    """Unknown or expired batch id."""


class SceneNotFoundError(LookupError):
    """Scene number outside the batch."""


class EmptyBatchError(ValueError):
    """A batch needs at least one scene."""


def new_batch_id() -> str:
    return f"batch_{uuid.uuid4().hex}"


class BatchStore:
    """Transition logic shared by the storage backends; subclasses provide _load/_save/_delete."""

    # Backends whose storage expires keys by itself only need the local bookkeeping dropped
    native_ttl = False

    def __init__(self, ttl_s: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.ttl_s = BATCH_TTL_S if ttl_s is None else ttl_s
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._expiry: Dict[str, float] = {}

    async def _load(self, batch_id: str) -> Optional[BatchJob]:
        raise NotImplementedError

    async def _save(self, job: BatchJob) -> None:
        raise NotImplementedError

    async def _delete(self, batch_id: str) -> None:
        raise NotImplementedError

    def _lock(self, batch_id: str) -> asyncio.Lock:
        lock = self._locks.get(batch_id)
        if lock is None:
            lock = self._locks[batch_id] = asyncio.Lock()
        return lock

    async def _live(self, batch_id: str) -> Optional[BatchJob]:
        job = await self._load(batch_id)
        if job is None:
            return None
        if job.expires_at is not None and job.expires_at <= self.clock():
            logger.info(f"Batch {batch_id} expired, purging")
            await self._delete(batch_id)
            self._forget(batch_id)
            return None
        return job

    def _forget(self, batch_id: str) -> None:
        self._locks.pop(batch_id, None)
        self._expiry.pop(batch_id, None)

    async def sweep_expired(self) -> int:
        """Drop every job this store created that is past its expiry. Returns how many were dropped."""
        now = self.clock()
        expired = [batch_id for batch_id, expires_at in self._expiry.items() if expires_at <= now]
        for batch_id in expired:
            self._forget(batch_id)
            if not self.native_ttl:
                await self._delete(batch_id)
        if expired:
            logger.info(f"Swept {len(expired)} expired batch(es)")
        return len(expired)

    async def create(self, character_image_url: str, character_name: str, scene_texts: List[str]) -> str:
        if not scene_texts:
            raise EmptyBatchError("no scenes to generate")
        await self.sweep_expired()
        now = self.clock()
        job = BatchJob(
            batch_id=new_batch_id(),
            character_image_url=character_image_url,
            character_name=character_name,
            scenes=[SceneTask(scene_number=i, scene_text=text) for i, text in enumerate(scene_texts, start=1)],
            created_at=now,
            expires_at=now + self.ttl_s if self.ttl_s else None,
        )
        async with self._lock(job.batch_id):
            await self._save(job)
        if job.expires_at is not None:
            self._expiry[job.batch_id] = job.expires_at
        logger.info(f"Created batch {job.batch_id} with {len(job.scenes)} scenes")
        return job.batch_id

    async def get(self, batch_id: str) -> Optional[BatchJob]:
        job = await self._live(batch_id)
        return job.model_copy(deep=True) if job else None

    async def _transition(self, batch_id: str, scene_number: int, apply: Callable[[SceneTask], bool]) -> BatchJob:
        async with self._lock(batch_id):
            job = await self._live(batch_id)
            if job is None:
                raise BatchNotFoundError(batch_id)
            task = job.scene(scene_number)
            if task is None:
                raise SceneNotFoundError(f"{batch_id} has no scene {scene_number}")
            if apply(task):
                await self._save(job)
            return job.model_copy(deep=True)

    async def mark_running(self, batch_id: str, scene_number: int) -> BatchJob:
        def apply(task: SceneTask) -> bool:
            if task.state != "pending":
                return False
            task.state = "running"
            return True
        return await self._transition(batch_id, scene_number, apply)

    async def mark_succeeded(self, batch_id: str, scene_number: int, image_url: str) -> BatchJob:
        def apply(task: SceneTask) -> bool:
            if task.state != "running":
                logger.warning(f"Ignoring success for {task.state} scene {scene_number} of {batch_id}")
                return False
            task.state = "succeeded"
            task.image_url = image_url
            return True
        return await self._transition(batch_id, scene_number, apply)

    async def mark_failed(self, batch_id: str, scene_number: int, reason: str) -> BatchJob:
        def apply(task: SceneTask) -> bool:
            if task.is_terminal:
                logger.warning(f"Ignoring failure for already-{task.state} scene {scene_number} of {batch_id}")
                return False
            task.state = "failed"
            task.image_url = None
            task.error_reason = reason or "unknown error"
            return True
        return await self._transition(batch_id, scene_number, apply)


class InMemoryBatchStore(BatchStore):
    def __init__(self, ttl_s: Optional[int] = None, clock: Callable[[], float] = time.time):
        super().__init__(ttl_s=ttl_s, clock=clock)
        self._jobs: Dict[str, BatchJob] = {}

    async def _load(self, batch_id: str) -> Optional[BatchJob]:
        return self._jobs.get(batch_id)

    async def _save(self, job: BatchJob) -> None:
        self._jobs[job.batch_id] = job

    async def _delete(self, batch_id: str) -> None:
        self._jobs.pop(batch_id, None)

    def __len__(self) -> int:
        return len(self._jobs)


def get_batch_store() -> BatchStore:
    from .settings import kv_enabled
    if kv_enabled():
        from .kv_storage import KVBatchStore
        return KVBatchStore()
    logger.warning("KV storage not configured - using in-memory batch store")
    return InMemoryBatchStore()
