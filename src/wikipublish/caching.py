import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field

from . import config

logger = logging.getLogger(__name__)


class CacheType:
    """Namespaces used as the type half of lookup cache keys."""

    WIKIDATA_ENTITY = "wikidata-entity"
    WIKIDATA_SEARCH = "wikidata-search"
    WIKIDATA_ENTITY_EXISTS = "wikidata-entity-exists"
    COMMONS_CATEGORY = "commons-category"
    COMMONS_CATEGORY_EXISTS = "commons-category-exists"
    COMMONS_CATEGORY_CREATED = "commons-category-created"


@dataclass
class CacheStats:
    total_entries: int = 0
    type_breakdown: dict = field(default_factory=dict)


class LookupCache:
    """TTL key/value cache for Wikidata and Commons lookups.

    Keys are ``"<type>:<identifier>"`` with the identifier lowercased, so
    lookups are case-insensitive. Entries older than ``ttl_seconds`` are
    treated as missing and evicted when read. When a ``store`` is given the
    whole cache is persisted as a single JSON document under ``storage_key``;
    persistence is best-effort and never fails the in-memory operation.
    """

    def __init__(
        self,
        ttl_seconds=config.LOOKUP_CACHE_TTL_SECONDS,
        store=None,
        storage_key=config.LOOKUP_CACHE_STORAGE_KEY,
        clock=time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.store = store
        self.storage_key = storage_key
        self._clock = clock
        self._entries = {}
        self._listeners = []
        self._lock = threading.RLock()
        self._load()

    @staticmethod
    def _key(cache_type, identifier):
        return f"{cache_type}:{str(identifier).lower()}"

    def _is_expired(self, entry, now=None):
        now = self._clock() if now is None else now
        return now - entry["timestamp"] > self.ttl_seconds

    # Persistence

    def _load(self):
        if self.store is None:
            return
        try:
            raw = self.store.load(self.storage_key)
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Could not load lookup cache from storage: %s", exc)
            return
        if not raw:
            return
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Discarding corrupt lookup cache document: %s", exc)
            return
        if not isinstance(document, dict):
            logger.warning("Discarding lookup cache document of type %s", type(document).__name__)
            return
        with self._lock:
            for key, entry in document.items():
                if isinstance(entry, dict) and "data" in entry and isinstance(entry.get("timestamp"), (int, float)):
                    self._entries[key] = {"data": entry["data"], "timestamp": entry["timestamp"]}
        self.cleanup_expired()

    def _persist(self):
        if self.store is None:
            return
        with self._lock:
            snapshot = dict(self._entries)
        try:
            payload = json.dumps(snapshot, ensure_ascii=False)
            self.store.save(self.storage_key, payload)
        except (TypeError, ValueError, sqlite3.Error, OSError) as exc:
            logger.warning("Could not persist lookup cache: %s", exc)

    # Change notification

    def subscribe(self, listener):
        """Register a zero-argument callback; returns a function that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Lookup cache listener %r failed", listener)

    # Core operations

    def get(self, cache_type, identifier):
        key = self._key(cache_type, identifier)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not self._is_expired(entry):
                return entry["data"]
            del self._entries[key]
        self._persist()
        return None

    def set(self, cache_type, identifier, data):
        key = self._key(cache_type, identifier)
        with self._lock:
            self._entries[key] = {"data": data, "timestamp": self._clock()}
        self._persist()
        self._notify()

    def invalidate(self, cache_type, identifier):
        key = self._key(cache_type, identifier)
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("Invalidated lookup cache entry %s", key)
            self._persist()
            self._notify()
        return removed

    def invalidate_type(self, cache_type):
        prefix = f"{cache_type}:"
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d lookup cache entries of type %s", len(doomed), cache_type)
            self._persist()
            self._notify()
        return len(doomed)

    def clear(self):
        with self._lock:
            self._entries.clear()
        self._persist()
        self._notify()

    def cleanup_expired(self):
        """Drop every expired entry; returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            self._persist()
        return len(expired)

    def get_stats(self):
        stats = CacheStats()
        with self._lock:
            keys = list(self._entries)
        for key in keys:
            cache_type = key.split(":", 1)[0]
            stats.type_breakdown[cache_type] = stats.type_breakdown.get(cache_type, 0) + 1
            stats.total_entries += 1
        return stats

    def __len__(self):
        with self._lock:
            return len(self._entries)
