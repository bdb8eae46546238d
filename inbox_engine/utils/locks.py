"""
Per-sender Redis locks for inbound ingestion.

Two webhooks from the same brand-new sender can race to create the same
contact and thread. Holding a short SET NX lock on (channel, sender) while the
inbound transaction runs serializes them on the happy path.

The lock never decides correctness: unique constraints on provider_message_id
and contact email/phone remain the backstop, and a Redis outage only means
recording proceeds unlocked.
"""
import asyncio
import hashlib
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "inbox:lock:sender:"
LOCK_TTL_SECONDS = 30
LOCK_WAIT_SECONDS = 5
LOCK_POLL_INTERVAL = 0.1

# Delete only if the stored token is ours; a lock that expired and was
# re-taken by another worker must survive our release.
RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LockTimeoutError(Exception):
    """The sender lock stayed held by someone else for the whole wait."""


def make_sender_lock_key(channel: str, from_address: str) -> str:
    """Hashed (channel, address) so raw phones and emails never appear in Redis keys."""
    digest = hashlib.sha256(f"{channel}:{from_address.strip().lower()}".encode()).hexdigest()
    return LOCK_KEY_PREFIX + digest[:16]


@asynccontextmanager
async def sender_lock(
    channel: str,
    from_address: str,
    ttl: int = LOCK_TTL_SECONDS,
    wait: float = LOCK_WAIT_SECONDS,
) -> AsyncIterator[None]:
    """
    Hold the (channel, sender) lock for the duration of the block.

        async with sender_lock("sms", "+14045551234"):
            ...

    Raises LockTimeoutError if another holder keeps it longer than `wait`.
    """
    key = make_sender_lock_key(channel, from_address)
    token = uuid.uuid4().hex

    owned = await _acquire(key, token, ttl, wait)
    if owned is False:
        raise LockTimeoutError(f"sender lock {key} still held after {wait}s")
    try:
        yield
    finally:
        if owned:
            await _release(key, token)


async def _acquire(key: str, token: str, ttl: int, wait: float):
    """
    True when acquired, False on timeout, None when Redis is unavailable
    (the caller proceeds without a lock and skips the release).
    """
    from inbox_engine.utils.redis_client import get_redis
    try:
        redis = await get_redis()
        deadline = time.monotonic() + wait
        while True:
            if await redis.set(key, token, nx=True, ex=ttl):
                return True
            if time.monotonic() >= deadline:
                logger.warning("Sender lock %s busy for %.1fs", key, wait)
                return False
            await asyncio.sleep(LOCK_POLL_INTERVAL)
    except Exception as e:
        logger.warning("Sender lock unavailable (%s), proceeding unlocked", str(e))
        return None


async def _release(key: str, token: str) -> None:
    from inbox_engine.utils.redis_client import get_redis
    try:
        redis = await get_redis()
        await redis.eval(RELEASE_SCRIPT, 1, key, token)
    except Exception as e:
        logger.warning("Sender lock release failed for %s: %s", key, str(e))
