from rideshare.store.base import RecordStore
from rideshare.store.redis_store import RedisRecordStore


_store = None


def get_store() -> RecordStore:  # to be used as dependency
    global _store
    if _store is None:
        _store = RedisRecordStore()
    return _store
