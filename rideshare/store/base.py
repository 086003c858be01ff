from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Callable, Dict, List, Optional, Tuple


# fn(current) -> new value; may raise AbortUpdate to reject the write
UpdateFn = Callable[[Any], Any]


def split_path(path: str) -> Tuple[str, List[str]]:
    """Split ``root/id/field/...`` into the document key and the field path inside it."""
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2:
        raise ValueError(f"Path must name at least a document: {path!r}")
    return "/".join(parts[:2]), parts[2:]


def get_in(doc: Any, fields: List[str]) -> Any:
    node = doc
    for name in fields:
        if not isinstance(node, dict) or name not in node:
            return None
        node = node[name]
    return node


def set_in(doc: Any, fields: List[str], value: Any) -> Any:
    """Return a copy of ``doc`` with ``value`` placed at ``fields``.

    ``None`` deletes the field, and containers left empty are pruned, so a
    document with nothing left in it becomes ``None`` itself.
    """
    if not fields:
        return _prune(deepcopy(value))
    head, rest = fields[0], fields[1:]
    node = dict(doc) if isinstance(doc, dict) else {}
    child = set_in(node.get(head), rest, value)
    if child is None:
        node.pop(head, None)
    else:
        node[head] = child
    return node or None


def _prune(value: Any) -> Any:
    if isinstance(value, dict):
        pruned = {k: _prune(v) for k, v in value.items()}
        pruned = {k: v for k, v in pruned.items() if v is not None}
        return pruned or None
    return value


def apply_partial(doc: Any, fields: List[str], partial: Dict[str, Any]) -> Any:
    """Apply a multi-location update; keys of ``partial`` may themselves be slash paths."""
    for rel_path, value in partial.items():
        extra = [p for p in rel_path.strip("/").split("/") if p]
        doc = set_in(doc, fields + extra, value)
    return doc


class RecordStore(ABC):
    """Key-path addressed hierarchical store.

    Paths are slash separated; the first two segments name a document
    (``trips/{trip_id}``) and deeper segments address fields inside it.
    """

    @abstractmethod
    async def get(self, path: str) -> Optional[Any]:
        raise NotImplementedError()

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        raise NotImplementedError()

    @abstractmethod
    async def update(self, path: str, partial: Dict[str, Any]) -> None:
        raise NotImplementedError()

    @abstractmethod
    async def atomic_update(self, path: str, fn: UpdateFn) -> Any:
        """Read-modify-write ``path`` so that at most one concurrent writer wins.

        ``fn`` is re-run against fresh data whenever another writer committed
        first. Returns the committed value. Exceptions raised by ``fn``
        propagate unchanged and nothing is written.
        """
        raise NotImplementedError()
