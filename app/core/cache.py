# portfolio/app/core/cache.py
import re
import time
import logging
import threading

from cachetools import TLRUCache

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300
DEFAULT_MAXSIZE = 10000
DEFAULT_SWEEP_INTERVAL = 300


def cache_key(namespace, kind, *parts, **params):
    """
    Builds a namespaced key such as 'series:detail:summer-2024' or
    'images:list:category=street|page=2'. Keyword params are sorted so the
    same query always maps to the same key.
    """
    key = f"{namespace}:{kind}"
    if parts:
        key = f"{key}:" + ":".join(str(p) for p in parts)
    if params:
        key = f"{key}:" + "|".join(f"{k}={params[k]}" for k in sorted(params))
    return key


def namespace_pattern(namespace):
    """Pattern matching every key under a namespace."""
    return f"^{re.escape(namespace)}:"


def _expires_at(key, entry, now):
    # Entries are stored as (value, ttl) so each key keeps its own TTL.
    return now + entry[1]


class QueryCache:
    """
    In-process, time-expiring key/value store with pattern invalidation,
    backed by a cachetools TLRUCache (per-entry TTL, bounded size).

    cachetools is not thread-safe, so every access goes through one lock.
    Nothing here ever raises to the caller: a malfunction is logged and
    reported as a miss.
    """

    _MISS = object()

    def __init__(self, default_ttl=DEFAULT_TTL, maxsize=DEFAULT_MAXSIZE, clock=None):
        self.default_ttl = default_ttl
        self._entries = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=clock or time.monotonic)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        # Bumped by every invalidation so in-flight producers can tell their result is stale.
        self._generation = 0
        self._sweeper = None
        self._stop_event = threading.Event()

    def set(self, key, value, ttl=None):
        if ttl is None:
            ttl = self.default_ttl
        try:
            with self._lock:
                if ttl <= 0:
                    # TLRUCache skips already-expired writes and would keep an older value.
                    self._entries.pop(key, None)
                else:
                    self._entries[key] = (value, ttl)
            logger.debug(f"[cache] set {key} (ttl={ttl}s)")
            return True
        except Exception:
            logger.exception(f"[cache] set failed for {key}")
            return False

    def get(self, key, default=None):
        try:
            with self._lock:
                entry = self._entries.get(key, self._MISS)
                if entry is self._MISS:
                    self._misses += 1
                    self._entries.expire()
                    return default
                self._hits += 1
                return entry[0]
        except Exception:
            logger.exception(f"[cache] get failed for {key}")
            return default

    def get_or_set(self, key, producer, ttl=None):
        """
        Read-through helper for handlers. The producer runs outside the lock;
        if an invalidation lands while it runs, the result is returned but
        not stored, since it may predate the write that invalidated it.
        """
        with self._lock:
            generation = self._generation
        value = self.get(key, self._MISS)
        if value is self._MISS:
            value = producer()
            with self._lock:
                if self._generation == generation:
                    self.set(key, value, ttl)
                else:
                    logger.debug(f"[cache] dropped stale result for {key}")
        return value

    def delete(self, key):
        try:
            with self._lock:
                return self._entries.pop(key, self._MISS) is not self._MISS
        except Exception:
            logger.exception(f"[cache] delete failed for {key}")
            return False

    def invalidate(self, pattern):
        """
        Removes every key matching `pattern` (regex search) regardless of its
        remaining TTL. A pattern that is not a valid regex is matched as a
        literal substring. Returns the number of evicted keys.
        """
        try:
            try:
                regex = re.compile(pattern)
            except re.error:
                regex = re.compile(re.escape(pattern))
            with self._lock:
                self._generation += 1
                doomed = [key for key in list(self._entries) if regex.search(key)]
                for key in doomed:
                    self._entries.pop(key, None)
            logger.debug(f"[cache] invalidated {len(doomed)} keys matching '{pattern}'")
            return len(doomed)
        except Exception:
            # Degrade to dropping everything rather than serving stale data.
            logger.exception(f"[cache] invalidate failed for '{pattern}', clearing cache")
            return self.clear()

    def invalidate_namespaces(self, *namespaces):
        return sum(self.invalidate(namespace_pattern(ns)) for ns in namespaces)

    def clear(self):
        with self._lock:
            self._generation += 1
            size = len(self._entries)
            self._entries.clear()
        logger.info(f"[cache] cleared {size} keys")
        return size

    def sweep(self):
        """Evicts every entry past its expiry. Returns the eviction count."""
        try:
            with self._lock:
                expired = self._entries.expire()
            if expired:
                logger.debug(f"[cache] sweep evicted {len(expired)} keys")
            return len(expired)
        except Exception:
            logger.exception("[cache] sweep failed")
            return 0

    def stats(self):
        with self._lock:
            self._entries.expire()
            return {
                'size': len(self._entries),
                'keys': sorted(self._entries),
                'maxsize': self._entries.maxsize,
                'hits': self._hits,
                'misses': self._misses,
            }

    # --- Background sweeper ---

    def start_sweeper(self, interval=DEFAULT_SWEEP_INTERVAL):
        if interval <= 0 or self.sweeper_running:
            return False
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            args=(interval,),
            name="query-cache-sweeper",
            daemon=True,
        )
        self._sweeper.start()
        logger.info(f"[cache] sweeper started (every {interval}s)")
        return True

    def stop_sweeper(self, timeout=None):
        if self._sweeper is None:
            return
        self._stop_event.set()
        self._sweeper.join(timeout)
        self._sweeper = None

    @property
    def sweeper_running(self):
        return self._sweeper is not None and self._sweeper.is_alive()

    def _sweep_loop(self, interval):
        while not self._stop_event.wait(interval):
            self.sweep()
