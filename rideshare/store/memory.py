import asyncio
import logging
from collections import defaultdict
from copy import deepcopy
from typing import Any, Dict, Optional

from rideshare.config import settings
from rideshare.exceptions import RecordStoreError
from rideshare.metrics import ATOMIC_UPDATE_RETRIES
from rideshare.store.base import RecordStore, UpdateFn, apply_partial, get_in, set_in, split_path

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """Process-local store with the same optimistic concurrency contract as the Redis store.

    Every document carries a version. ``atomic_update`` yields to the event
    loop between reading and committing, so concurrent callers really do race
    and the loser is re-run against the winner's data.
    """

    def __init__(self, data: Optional[Dict[str, Dict[str, Any]]] = None, max_retries: Optional[int] = None):
        self._docs: Dict[str, Any] = {}
        self._versions: Dict[str, int] = defaultdict(int)
        self.max_retries = max_retries or settings.ATOMIC_UPDATE_MAX_RETRIES
        self.writes = 0
        for root, docs in (data or {}).items():
            for doc_id, doc in docs.items():
                self._docs[f"{root}/{doc_id}"] = deepcopy(doc)

    def _commit(self, key: str, doc: Any) -> None:
        if doc is None:
            self._docs.pop(key, None)
        else:
            self._docs[key] = doc
        self._versions[key] += 1
        self.writes += 1

    def dump(self) -> Dict[str, Any]:
        return deepcopy(self._docs)

    async def get(self, path: str) -> Optional[Any]:
        key, fields = split_path(path)
        await asyncio.sleep(0)
        return deepcopy(get_in(self._docs.get(key), fields))

    async def set(self, path: str, value: Any) -> None:
        key, fields = split_path(path)
        await asyncio.sleep(0)
        self._commit(key, set_in(self._docs.get(key), fields, value))

    async def update(self, path: str, partial: Dict[str, Any]) -> None:
        key, fields = split_path(path)
        await asyncio.sleep(0)
        self._commit(key, apply_partial(self._docs.get(key), fields, partial))

    async def atomic_update(self, path: str, fn: UpdateFn) -> Any:
        key, fields = split_path(path)
        for attempt in range(self.max_retries):
            version = self._versions[key]
            current = deepcopy(get_in(self._docs.get(key), fields))
            await asyncio.sleep(0)
            new_value = fn(current)
            if self._versions[key] != version:
                ATOMIC_UPDATE_RETRIES.labels(store="memory").inc()
                logger.debug("Concurrent write on %s, retrying (attempt %s)", key, attempt + 1)
                continue
            self._commit(key, set_in(self._docs.get(key), fields, new_value))
            return new_value
        raise RecordStoreError(f"Too much contention on {path}")
