import asyncio, logging, traceback
from typing import List, Optional, Set
from urllib.parse import urlparse
from .batch_store import BatchStore, BatchNotFoundError, EmptyBatchError
from .models import BatchStatus, SceneImageResult
from .scenes import split_scenes
from .scene_images import generate_scene_image
from .settings import BATCH_MAX_CONCURRENCY, MAX_SCENES_PER_BATCH, SCENE_TIMEOUT_S

logger = logging.getLogger(__name__)


class BatchValidationError(ValueError):
    """Bad or missing input; the batch is never created."""


def validate_character_image_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise BatchValidationError("mainCharacterImage is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise BatchValidationError(f"mainCharacterImage must be an http(s) URL, got {url[:80]!r}")
    return url

def validate_character_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise BatchValidationError("mainCharacterName is required")
    return name


class BatchOrchestrator:
    """Starts scene batches in the background and answers status polls.

    Scene generation runs as tasks owned by the orchestrator, at most
    max_concurrency at a time; results reach callers only through the store.
    """

    def __init__(self, store: BatchStore, provider=None, storage=None, invoker=None,
                 max_concurrency: int = None, max_scenes: int = None, scene_timeout_s: float = None):
        self.store = store
        self.provider = provider
        self.storage = storage
        self.invoker = invoker or generate_scene_image
        self.max_concurrency = max(1, max_concurrency or BATCH_MAX_CONCURRENCY)
        self.max_scenes = max_scenes or MAX_SCENES_PER_BATCH
        self.scene_timeout_s = SCENE_TIMEOUT_S if scene_timeout_s is None else scene_timeout_s
        self._tasks: Set[asyncio.Task] = set()

    async def start_batch(self, story_text: str, character_image_url: str, character_name: str) -> str:
        if not (story_text or "").strip():
            raise BatchValidationError("personalizedStoryText is required")
        character_name = validate_character_name(character_name)
        character_image_url = validate_character_image_url(character_image_url)

        scenes = split_scenes(story_text)
        if not scenes:
            raise BatchValidationError("no scenes to generate")
        if len(scenes) > self.max_scenes:
            raise BatchValidationError(f"story has {len(scenes)} scenes; at most {self.max_scenes} per batch")

        try:
            batch_id = await self.store.create(character_image_url, character_name, scenes)
        except EmptyBatchError as e:
            raise BatchValidationError(str(e)) from e

        task = asyncio.create_task(
            self._run_batch(batch_id, scenes, character_image_url, character_name), name=f"batch:{batch_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Batch {batch_id} started: {len(scenes)} scenes, max {self.max_concurrency} concurrent")
        return batch_id

    async def get_status(self, batch_id: str) -> BatchStatus:
        job = await self.store.get(batch_id)
        if job is None:
            raise BatchNotFoundError(batch_id)
        return BatchStatus.from_job(job)

    async def generate_single_scene(self, scene_text: str, character_image_url: str, character_name: str,
                                    scene_number: int = 1) -> SceneImageResult:
        """Regenerate one scene outside any batch, e.g. to retry a failed scene."""
        if not (scene_text or "").strip():
            raise BatchValidationError("sceneText is required")
        character_name = validate_character_name(character_name)
        character_image_url = validate_character_image_url(character_image_url)
        return await self._invoke(character_image_url, scene_text.strip(), character_name, scene_number)

    async def _invoke(self, character_image_url: str, scene_text: str, character_name: str,
                      scene_number: int) -> SceneImageResult:
        return await self.invoker(
            character_image_url,
            scene_text,
            character_name,
            scene_number,
            provider=self.provider,
            storage=self.storage,
            timeout_s=self.scene_timeout_s,
        )

    async def _run_batch(self, batch_id: str, scene_texts: List[str], character_image_url: str,
                         character_name: str):
        # Scene numbers follow store.create: 1-based in story order
        scenes = list(enumerate(scene_texts, start=1))
        try:
            semaphore = asyncio.Semaphore(self.max_concurrency)
            await asyncio.gather(
                *(self._run_scene(batch_id, number, text, character_image_url, character_name, semaphore)
                  for number, text in scenes),
                return_exceptions=True,
            )
            final = await self.store.get(batch_id)
            if final is not None:
                logger.info(f"Batch {batch_id} finished: {final.completed_count - final.failed_count} succeeded, "
                            f"{final.failed_count} failed")
        except Exception as e:
            logger.error(f"Batch {batch_id} crashed: {e}")
            logger.error(f"Full traceback: {traceback.format_exc()}")
            await self._fail_remaining(batch_id, [number for number, _ in scenes], f"{type(e).__name__}: {e}")

    async def _fail_remaining(self, batch_id: str, scene_numbers: List[int], reason: str):
        """Mark every scene that never reached a terminal state as failed (no-op for finished ones)."""
        for scene_number in scene_numbers:
            await self._record_failure(batch_id, scene_number, reason)

    async def _record_failure(self, batch_id: str, scene_number: int, reason: str):
        try:
            await self.store.mark_failed(batch_id, scene_number, reason)
        except BatchNotFoundError:
            logger.info(f"Batch {batch_id} expired before scene {scene_number} could be marked failed")
        except Exception as store_error:
            logger.error(f"Could not record failure for scene {scene_number} of {batch_id}: {store_error}")

    async def _run_scene(self, batch_id: str, scene_number: int, scene_text: str, character_image_url: str,
                         character_name: str, semaphore: asyncio.Semaphore):
        async with semaphore:
            try:
                # Batches that expired before their turn are not worth provider quota
                if await self.store.get(batch_id) is None:
                    logger.info(f"Skipping scene {scene_number} of expired batch {batch_id}")
                    return
                await self.store.mark_running(batch_id, scene_number)
                logger.info(f"Starting scene {scene_number} of batch {batch_id}")
                result = await self._invoke(character_image_url, scene_text, character_name, scene_number)
                if result.ok:
                    await self.store.mark_succeeded(batch_id, scene_number, result.image_url)
                else:
                    await self.store.mark_failed(batch_id, scene_number, result.error)
            except BatchNotFoundError:
                logger.info(f"Batch {batch_id} expired while scene {scene_number} was in flight")
            except Exception as e:
                logger.error(f"Scene {scene_number} of batch {batch_id} crashed: {e}")
                logger.error(f"Full traceback: {traceback.format_exc()}")
                await self._record_failure(batch_id, scene_number, f"{type(e).__name__}: {e}")

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def wait_idle(self, timeout: Optional[float] = None):
        """Wait for every dispatched batch to finish."""
        if self._tasks:
            await asyncio.wait_for(asyncio.gather(*list(self._tasks), return_exceptions=True), timeout)

    async def aclose(self):
        """Cancel in-flight batches (server shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
