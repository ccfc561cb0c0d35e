"""Redis client for sessions, rate limiting and webhook locks"""
import redis
import json
import logging
import uuid
from typing import Optional, Dict
from app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


# Session TTL (1 day)
SESSION_TTL = 24 * 60 * 60

# Rate limiting configuration
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_REQUESTS = 600  # requests per window
RATE_LIMIT_STRICT_WINDOW = 60  # seconds
RATE_LIMIT_STRICT_REQUESTS = 120  # requests per window for state-changing operations


def set_session(session_id: str, role: str, username: str) -> None:
    """Store session principal in Redis"""
    key = f"session:{session_id}"
    get_redis_client().setex(key, SESSION_TTL, json.dumps({"role": role, "username": username}))


def get_session(session_id: str) -> Optional[Dict]:
    """Get the session principal ({'role', 'username'}) or None"""
    key = f"session:{session_id}"
    data = get_redis_client().get(key)
    if not data:
        return None
    try:
        return json.loads(data)
    except (TypeError, ValueError):
        logger.warning(f"Discarding malformed session {session_id[:8]}...")
        return None


def delete_session(session_id: str) -> None:
    """Delete session from Redis"""
    key = f"session:{session_id}"
    get_redis_client().delete(key)


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment rate limit counter and return current count.
    Uses Lua script to atomically increment and set TTL only for new keys (fixed window rate limiting)."""
    key = f"ratelimit:{identifier}"

    lua_script = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('EXPIRE', KEYS[1], ARGV[1])
    end
    return count
    """

    count = get_redis_client().eval(lua_script, 1, key, window)
    return int(count)


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited."""
    window = RATE_LIMIT_STRICT_WINDOW if strict else RATE_LIMIT_WINDOW
    max_requests = RATE_LIMIT_STRICT_REQUESTS if strict else RATE_LIMIT_REQUESTS
    return increment_rate_limit(identifier, window) <= max_requests


def acquire_lock(lock_key: str, timeout: int = 30) -> Optional[str]:
    """Acquire a distributed lock using Redis SET with NX and EX.

    Args:
        lock_key: The lock key to acquire
        timeout: Lock timeout in seconds (default 30)

    Returns:
        The holder token if the lock was acquired, None if it is already held
    """
    token = uuid.uuid4().hex
    if get_redis_client().set(lock_key, token, nx=True, ex=timeout):
        return token
    return None


# Delete only if the key still holds our token; an expired lock may belong to another holder now
RELEASE_LOCK_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def release_lock(lock_key: str, token: str) -> bool:
    """Release a lock taken with ``acquire_lock``. Returns False if it was no longer ours."""
    return int(get_redis_client().eval(RELEASE_LOCK_SCRIPT, 1, lock_key, token)) == 1
