"""
Vercel KV / Upstash REST integration for batch state.
This allows batches to be polled across serverless function invocations.
"""
import json
import httpx
import logging
from typing import Any, Dict, List, Optional
from .batch_store import BatchStore
from .models import BatchJob
from .settings import KV_REST_API_URL, KV_REST_API_TOKEN

logger = logging.getLogger(__name__)


class KVError(RuntimeError):
    """The KV REST API rejected or failed a command."""


class KVBatchStore(BatchStore):
    # Keys carry EX, so KV drops expired batches itself
    native_ttl = True

    def __init__(self, url: str = None, token: str = None, transport: httpx.AsyncBaseTransport = None, **kwargs):
        super().__init__(**kwargs)
        self.kv_rest_api_url = (url or KV_REST_API_URL).rstrip("/")
        self.kv_rest_api_token = token or KV_REST_API_TOKEN
        self.transport = transport
        if not self.kv_rest_api_url or not self.kv_rest_api_token:
            raise RuntimeError("KV_REST_API_URL and KV_REST_API_TOKEN must both be set for KV storage")
        logger.info("KV batch storage enabled")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.kv_rest_api_token}",
            "Content-Type": "application/json"
        }

    @staticmethod
    def _key(batch_id: str) -> str:
        return f"batch:{batch_id}"

    async def _command(self, command: List[Any]) -> Any:
        """Send one Redis command as a JSON array and return its result."""
        try:
            async with httpx.AsyncClient(timeout=10, transport=self.transport) as client:
                response = await client.post(self.kv_rest_api_url, headers=self._headers(), json=command)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"KV command {command[0]} {command[1]} failed: {e}")
            raise KVError(f"KV command {command[0]} failed: {e}") from e
        if "error" in data:
            raise KVError(f"KV command {command[0]} failed: {data['error']}")
        return data.get("result")

    async def _load(self, batch_id: str) -> Optional[BatchJob]:
        raw = await self._command(["GET", self._key(batch_id)])
        if not raw:
            logger.info(f"Batch {batch_id} not found in KV")
            return None
        # Some clients store the JSON already decoded
        data = raw if isinstance(raw, dict) else json.loads(raw)
        return BatchJob.model_validate(data)

    async def _save(self, job: BatchJob) -> None:
        command: List[Any] = ["SET", self._key(job.batch_id), job.model_dump_json()]
        if job.expires_at is not None:
            # Keep the KV expiry aligned with the job's, not reset on every scene update
            command += ["EX", max(1, int(job.expires_at - self.clock()))]
        await self._command(command)
        logger.debug(f"Stored batch {job.batch_id} in KV")

    async def _delete(self, batch_id: str) -> None:
        await self._command(["DEL", self._key(batch_id)])
