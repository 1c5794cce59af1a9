"""
Best-effort mirror of the history/log ledgers to the engine's HTTP surface.

    GET  /api/history   -> list of history records
    GET  /api/logs      -> list of log entries
    POST /api/history   <- full history list after every local change

Startup reads replace local state wholesale on success; on any failure the
local cache stays as it is. Uploads are fire-and-forget.
"""
import asyncio
from typing import Any, Dict, List, Optional, Sequence, Set

import aiohttp

from src.constants import TUNNEL_SKIP_HEADER
from src.domain.models import ClosedTradeRecord
from src.exceptions import SyncError
from src.monitoring.logger import get_logger
from src.storage.history_store import HistoryStore, LogStore

logger = get_logger(__name__)

HISTORY_ENDPOINT = "/api/history"
LOGS_ENDPOINT = "/api/logs"


class RemoteMirror:
    """HTTP client for the engine's history/log endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout_seconds: float = 10.0,
        enabled: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers if headers is not None else TUNNEL_SKIP_HEADER)
        self.timeout_seconds = timeout_seconds
        self.enabled = enabled
        self._tasks: Set[asyncio.Task] = set()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout_seconds)

    async def _get_list(self, path: str) -> Optional[List[Any]]:
        """GET a JSON array. Returns None when the body isn't a list."""
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.get(url, headers=self.headers) as resp:
                    if resp.status != 200:
                        raise SyncError(f"HTTP {resp.status} from {path}")
                    body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SyncError(f"{type(e).__name__}: {e}") from e
        return body if isinstance(body, list) else None

    async def fetch_history(self) -> Optional[List[Any]]:
        return await self._get_list(HISTORY_ENDPOINT)

    async def fetch_logs(self) -> Optional[List[Any]]:
        return await self._get_list(LOGS_ENDPOINT)

    async def push_history(self, records: List[Dict[str, Any]]) -> None:
        url = f"{self.base_url}{HISTORY_ENDPOINT}"
        headers = {**self.headers, "Content-Type": "application/json"}
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.post(url, json=records, headers=headers) as resp:
                    if resp.status >= 400:
                        raise SyncError(f"HTTP {resp.status} from {HISTORY_ENDPOINT}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SyncError(f"{type(e).__name__}: {e}") from e

    async def _push_history_logged(self, records: List[Dict[str, Any]]) -> None:
        try:
            await self.push_history(records)
        except SyncError as e:
            logger.warning("HISTORY_MIRROR_FAILED", error=str(e), records=len(records))

    def mirror_history(self, items: Sequence[ClosedTradeRecord], added: Sequence[ClosedTradeRecord] = ()) -> None:
        """MirrorHook for HistoryStore: schedule an upload of the full ledger."""
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("HISTORY_MIRROR_SKIPPED_NO_LOOP", records=len(items))
            return
        task = loop.create_task(self._push_history_logged([r.to_dict() for r in items]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight uploads (shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def sync_stores_from_remote(mirror: RemoteMirror, history: HistoryStore, logs: LogStore) -> bool:
    """
    Startup sync: history first, then logs. Local state is replaced only
    by a successful, well-formed response; failures keep the local cache.
    """
    if not mirror.enabled:
        return False

    logs.info("SYS", "Attempting Cloud Sync...")
    try:
        remote_history = await mirror.fetch_history()
        if remote_history is not None:
            history.replace(history.decode_many(remote_history))
            logs.success("SYS", "History Synced")

        remote_logs = await mirror.fetch_logs()
        if remote_logs is not None:
            logs.replace(logs.decode_many(remote_logs))
            logs.success("SYS", "Telemetry Synced")
    except SyncError as e:
        logs.warning("SYS", f"Bridge Unreachable: {e}")
        return False
    return True
