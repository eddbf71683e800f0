import json
import logging
import threading
from typing import Any, Dict, List, Optional

from spending_tagger.storage.base import KeyValueStore

logger = logging.getLogger(__name__)


class InMemoryKeyValueStore(KeyValueStore):
    """
    Dict-backed store.

    Values are kept as JSON text, so callers never share mutable state
    with the store and non-serializable values fail on `set`.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Stored value for '%s' is corrupt, ignoring it: %s", key, e)
            return None

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)

    def __repr__(self) -> str:
        return f"InMemoryKeyValueStore({len(self._data)} keys)"
