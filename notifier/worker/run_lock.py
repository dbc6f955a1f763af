"""Redis-based lock that keeps scheduled notification runs from overlapping."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

import redis.asyncio as redis

from notifier.config import settings

logger = logging.getLogger(__name__)

LOCK_KEY = "notifications:scheduled:lock"

# Returns: 0 = not found/already released, 1 = deleted, 2 = mismatch
_SAFE_UNLOCK_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 2
end

if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('DEL', KEYS[1])
    return 1
else
    return 2
end
"""


class RunLockManager:
    """
    Single-holder lock for the scheduled notification run.

    The lock value carries the run id and a random token; only the holder of
    both can release it. The TTL bounds how long a crashed run keeps others out.
    """

    def __init__(self, redis_url: Optional[str] = None, key: str = LOCK_KEY):
        self.redis_url = redis_url or settings.redis_url
        self.key = key
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def acquire(self, run_id: str, ttl_seconds: Optional[int] = None) -> Optional[str]:
        """
        Try to take the lock.

        Args:
            run_id: Identifier of the run asking for the lock
            ttl_seconds: Expiry (defaults to settings.run_lock_ttl_seconds)

        Returns:
            Token string if acquired, None if another run holds it
        """
        redis_client = await self._get_redis()
        ttl = ttl_seconds or settings.run_lock_ttl_seconds

        token = uuid4().hex
        lock_value = json.dumps({
            "run_id": run_id,
            "token": token,
            "started_at": datetime.utcnow().isoformat(),
        })

        acquired = await redis_client.set(self.key, lock_value, nx=True, ex=ttl)
        if acquired:
            logger.info(f"Acquired notification run lock for run_id: {run_id[:16]}...")
            return token

        existing_value = await redis_client.get(self.key)
        if existing_value:
            try:
                existing_run_id = json.loads(existing_value).get("run_id", "unknown")
                logger.debug(f"Run lock already held by run_id: {existing_run_id[:16]}...")
            except (json.JSONDecodeError, AttributeError):
                logger.warning(f"Run lock exists but value is invalid: {existing_value}")
        return None

    async def release(self, run_id: str, token: Optional[str]) -> bool:
        """
        Release the lock if ``run_id`` and ``token`` still own it.

        Returns:
            True if released (or already gone), False on mismatch or error
        """
        if not token:
            logger.warning("Unlock requested without token; refusing (use force_unlock for recovery).")
            return False

        redis_client = await self._get_redis()
        try:
            result = await redis_client.eval(_SAFE_UNLOCK_SCRIPT, 1, self.key, run_id, token)
        except Exception as e:
            logger.error(f"Error releasing notification run lock: {e}")
            return False

        if result == 0:
            logger.debug("Run lock already released")
            return True
        if result == 1:
            logger.info(f"Released notification run lock for run_id: {run_id[:16]}...")
            return True
        logger.warning(
            f"Attempted to release run lock with mismatched token/run_id: requested={run_id[:16]}..."
        )
        return False

    async def force_unlock(self) -> bool:
        """Delete the lock without ownership checks (admin recovery)."""
        redis_client = await self._get_redis()
        try:
            await redis_client.delete(self.key)
            logger.warning("Force-cleared notification run lock")
            return True
        except Exception as e:
            logger.error(f"Failed to force unlock: {e}")
            return False

    async def get_lock_info(self) -> Optional[Dict[str, Any]]:
        """
        Get the current holder.

        Returns:
            Dict with run_id, started_at and ttl_seconds, or None if unlocked
        """
        redis_client = await self._get_redis()
        value = await redis_client.get(self.key)
        ttl = await redis_client.ttl(self.key)
        if not value:
            return None

        try:
            data = json.loads(value)
            return {
                "run_id": data.get("run_id"),
                "started_at": data.get("started_at"),
                "ttl_seconds": ttl if ttl > 0 else None,
            }
        except (json.JSONDecodeError, AttributeError) as e:
            logger.error(f"Invalid run lock value format: {e}")
            return {"raw_value": value, "ttl_seconds": ttl if ttl > 0 else None}


# Global lock manager instance
run_lock_manager = RunLockManager()
