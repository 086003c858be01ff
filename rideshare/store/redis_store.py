import json
import logging
from copy import deepcopy
from typing import Any, Callable, Dict, Optional

from redis.exceptions import RedisError, WatchError

from rideshare.config import settings
from rideshare.exceptions import RecordStoreError
from rideshare.metrics import ATOMIC_UPDATE_RETRIES
from rideshare.store.base import RecordStore, UpdateFn, apply_partial, get_in, set_in, split_path

logger = logging.getLogger(__name__)


DOC_KEY_TPL = "rec:{doc}"


class RedisRecordStore(RecordStore):
    """Documents stored as JSON strings; every write is an optimistic WATCH/MULTI/EXEC round."""

    def __init__(self, client=None, max_retries: Optional[int] = None):
        if client is None:
            from rideshare.redis_client import redis_client as client
        self.client = client
        self.max_retries = max_retries or settings.ATOMIC_UPDATE_MAX_RETRIES

    async def get(self, path: str) -> Optional[Any]:
        key, fields = split_path(path)
        try:
            raw = await self.client.get(DOC_KEY_TPL.format(doc=key))
        except RedisError as exc:
            raise RecordStoreError(f"Unable to read {path}") from exc
        return get_in(json.loads(raw) if raw else None, fields)

    async def set(self, path: str, value: Any) -> None:
        key, fields = split_path(path)
        await self._mutate(key, path, lambda doc: (set_in(doc, fields, value), value))

    async def update(self, path: str, partial: Dict[str, Any]) -> None:
        key, fields = split_path(path)
        await self._mutate(key, path, lambda doc: (apply_partial(doc, fields, partial), None))

    async def atomic_update(self, path: str, fn: UpdateFn) -> Any:
        key, fields = split_path(path)

        def _apply(doc):
            new_value = fn(deepcopy(get_in(doc, fields)))
            return set_in(doc, fields, new_value), new_value

        return await self._mutate(key, path, _apply)

    async def _mutate(self, key: str, path: str, doc_fn: Callable[[Any], Any]) -> Any:
        redis_key = DOC_KEY_TPL.format(doc=key)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for attempt in range(self.max_retries):
                    try:
                        await pipe.watch(redis_key)
                        raw = await pipe.get(redis_key)
                        new_doc, result = doc_fn(json.loads(raw) if raw else None)
                        pipe.multi()
                        if new_doc is None:
                            pipe.delete(redis_key)
                        else:
                            pipe.set(redis_key, json.dumps(new_doc, ensure_ascii=False))
                        await pipe.execute()
                        return result
                    except WatchError:
                        ATOMIC_UPDATE_RETRIES.labels(store="redis").inc()
                        logger.debug("Concurrent write on %s, retrying (attempt %s)", redis_key, attempt + 1)
                        continue
        except RedisError as exc:
            raise RecordStoreError(f"Unable to write {path}") from exc
        raise RecordStoreError(f"Too much contention on {path}")
