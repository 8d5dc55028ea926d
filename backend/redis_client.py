"""
Redis helpers: dashboard caching and per-session locking
"""
import os
import json
import logging
import threading
from contextlib import contextmanager
from typing import Optional, List, Dict, Any

import redis

from errors import ConflictError

logger = logging.getLogger(__name__)

SESSION_LOCK_TIMEOUT = float(os.getenv("SESSION_LOCK_TIMEOUT", "10"))
SESSION_LOCK_WAIT = float(os.getenv("SESSION_LOCK_WAIT", "5"))


def _detect_redis_port() -> int:
    raw = os.getenv("REDIS_SERVICE_PORT") or os.getenv("REDIS_PORT") or "6379"
    # kubernetes style values look like tcp://10.0.0.1:6379
    try:
        return int(str(raw).rsplit(":", 1)[-1])
    except ValueError:
        return 6379


class LocalLocks:
    """In-process per-key locks used when redis cannot serialize writers"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock


class RedisClient:
    """Redis access with graceful degradation when the server is unreachable"""

    def __init__(self, enabled: Optional[bool] = None):
        """Connect to redis unless REDIS_ENABLED=0"""
        self.redis_host = os.getenv("REDIS_HOST", "redis")
        self.redis_port = _detect_redis_port()
        if enabled is None:
            enabled = os.getenv("REDIS_ENABLED", "1").lower() not in ("0", "false", "no")
        self.local_locks = LocalLocks()
        self.client = None

        if not enabled:
            logger.info("Redis disabled, caching off and session locks are in-process")
            return

        try:
            self.client = redis.Redis(
                host=self.redis_host,
                port=self.redis_port,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            self.client.ping()
        except redis.RedisError as e:
            logger.warning(f"Could not connect to Redis: {e}")
            self.client = None

    def is_available(self) -> bool:
        if not self.client:
            return False
        try:
            self.client.ping()
            return True
        except redis.RedisError:
            return False

    # ========== Tables ==========

    def cache_tables(self, tables: List[Dict], ttl: int = 60) -> bool:
        """
        Cache the tables list with occupancy
        ttl: seconds (1 minute by default)
        """
        return self._set_json("tables:all", tables, ttl)

    def get_cached_tables(self) -> Optional[List[Dict]]:
        return self._get_json("tables:all")

    def invalidate_tables_cache(self) -> bool:
        return self._delete("tables:all")

    # ========== Department dashboards ==========

    def cache_department_view(self, department: str, orders: List[Dict], ttl: int = 30) -> bool:
        """Cache the pending orders of a department (kitchen, cafe, ...)"""
        return self._set_json(f"kitchen:{department}", orders, ttl)

    def get_cached_department_view(self, department: str) -> Optional[List[Dict]]:
        return self._get_json(f"kitchen:{department}")

    def invalidate_department_views(self) -> bool:
        """Drop every department view; any order mutation can change all of them"""
        if not self.is_available():
            return False
        try:
            keys = self.client.keys("kitchen:*")
            if keys:
                self.client.delete(*keys)
            return True
        except redis.RedisError as e:
            logger.warning(f"Error invalidating department views: {e}")
            return False

    # ========== Per-session locking ==========

    def session_lock(self, session_id: int, timeout: float = None, wait: float = None):
        """Serialize read-modify-write work on one session"""
        return self.lock(f"lock:session:{session_id}", timeout, wait,
                         busy_message="Session is busy, try again", session_id=session_id)

    def table_lock(self, table_id: int, timeout: float = None, wait: float = None):
        """Serialize seat attempts on one table"""
        return self.lock(f"lock:table:{table_id}", timeout, wait,
                         busy_message="Table is being seated by someone else", table_id=table_id)

    @contextmanager
    def lock(self, key: str, timeout: float = None, wait: float = None,
             busy_message: str = "Resource is busy", **context):
        """
        Uses a redis lock when redis is reachable so several API processes
        agree, an in-process lock otherwise. Raises ConflictError when the
        lock cannot be taken within ``wait`` seconds.
        """
        timeout = SESSION_LOCK_TIMEOUT if timeout is None else timeout
        wait = SESSION_LOCK_WAIT if wait is None else wait

        lock = None
        if self.client is not None:
            try:
                lock = self.client.lock(key, timeout=timeout, blocking_timeout=wait)
                acquired = lock.acquire()
            except redis.RedisError as e:
                logger.warning(f"Redis lock {key} unavailable, using local lock: {e}")
                lock = None

        if lock is None:
            lock = self.local_locks.get(key)
            acquired = lock.acquire(timeout=wait)

        if not acquired:
            raise ConflictError(busy_message, **context)
        try:
            yield
        finally:
            try:
                lock.release()
            except (redis.RedisError, RuntimeError) as e:
                # the redis lock expired while held
                logger.warning(f"Releasing lock {key} failed: {e}")

    # ========== Utilities ==========

    def get_cache_info(self) -> Dict[str, Any]:
        if not self.is_available():
            return {"status": "unavailable"}

        try:
            return {
                "status": "available",
                "tables_cached": self.client.exists("tables:all"),
                "department_views_cached": len(self.client.keys("kitchen:*")),
                "session_locks_held": len(self.client.keys("lock:session:*")),
            }
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}

    def _set_json(self, key: str, value: Any, ttl: int) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except redis.RedisError as e:
            logger.warning(f"Error caching {key}: {e}")
            return False

    def _get_json(self, key: str) -> Optional[Any]:
        if not self.is_available():
            return None
        try:
            cached = self.client.get(key)
            if cached:
                return json.loads(cached)
        except redis.RedisError as e:
            logger.warning(f"Error reading {key} from cache: {e}")
        return None

    def _delete(self, *keys: str) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.delete(*keys)
            return True
        except redis.RedisError as e:
            logger.warning(f"Error deleting {keys} from cache: {e}")
            return False


# Global redis client
redis_client = RedisClient()
