"""Upload session store.

Sessions live in Redis so that every API process and the worker see the same
state. Layout per session::

    upload_session:<id>          hash  {record: <json>, state: <UploadState>}
    upload_session:<id>:chunks   bitmap, bit N set once chunk N is confirmed
    upload_sessions:expiry       zset  member <id>, score expires_at (epoch s)
    upload_sessions:cleanup      hash  <id> -> <json>, until the session is gone

Every mutation is a Lua script, so concurrent confirmations cannot lose a
chunk and exactly one caller wins the ``uploading -> finalizing`` transition.
Keys are kept for a grace period past ``expires_at`` so the expiry sweep can
still find the chunk objects of abandoned sessions; reads treat such
sessions as absent. The cleanup hash has no TTL, so a session whose keys
aged out before a sweep reached it can still be reaped. The client must
return raw bytes (decode_responses=False, which is what arq.create_pool gives).
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable

from redis.asyncio import Redis

from assethub.core.clock import Clock, utcnow
from assethub.schemas.upload import UploadSession, UploadState

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "upload_session"
EXPIRY_INDEX_KEY = "upload_sessions:expiry"
CLEANUP_INDEX_KEY = "upload_sessions:cleanup"


class SessionStore(ABC):
    """Shared, TTL-aware store of upload sessions with atomic mutations."""

    @abstractmethod
    async def create(self, session: UploadSession, ttl_seconds: int) -> None:
        """Persist a new session in state ``initialized``."""

    @abstractmethod
    async def get(self, session_id: str) -> UploadSession | None:
        """Return the session, or None if missing or past ``expires_at``."""

    @abstractmethod
    async def mark_chunk_uploaded(self, session_id: str, chunk_index: int) -> int | None:
        """Atomically record a chunk and return the confirmed-chunk count.

        Returns None if the session no longer exists.
        """

    @abstractmethod
    async def begin_finalize(self, session_id: str, total_chunks: int) -> bool:
        """Compare-and-set ``uploading -> finalizing`` once all chunks are in."""

    @abstractmethod
    async def abort_finalize(self, session_id: str) -> None:
        """Return a ``finalizing`` session to ``uploading``."""

    @abstractmethod
    async def claim(
        self, session_id: str, states: Iterable[UploadState]
    ) -> UploadSession | None:
        """Atomically delete the session if its state is one of ``states``.

        Returns the deleted session (with its uploaded chunks), or None.
        """

    @abstractmethod
    async def expired_session_ids(self, now: datetime, limit: int) -> list[str]:
        """IDs of sessions whose ``expires_at`` is at or before ``now``."""

    @abstractmethod
    async def reap(self, session_id: str, retry_at: datetime) -> UploadSession | None:
        """Remove an expired session, even if its keys already aged out.

        A ``finalizing`` session is kept and rescheduled at ``retry_at``.
        Returns the removed session, or None if it was deferred or nothing
        is left to locate its chunks.
        """


# --- Bitmap helpers ---


def decode_chunk_bitmap(bitmap: bytes | None, total_chunks: int) -> list[int]:
    """Indices of set bits (Redis SETBIT order: MSB of byte 0 is index 0)."""
    if not bitmap:
        return []
    indices = []
    for byte_index, byte in enumerate(bitmap):
        if not byte:
            continue
        for bit in range(8):
            if byte & (0x80 >> bit):
                index = byte_index * 8 + bit
                if index < total_chunks:
                    indices.append(index)
    return indices


def _text(value: bytes | str | None) -> str | None:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


# --- Lua scripts ---

# KEYS: session hash, chunk bitmap. ARGV: chunk index.
_MARK_CHUNK = """
local state = redis.call('HGET', KEYS[1], 'state')
if not state then
  return -1
end
redis.call('SETBIT', KEYS[2], ARGV[1], 1)
local ttl = redis.call('PTTL', KEYS[1])
if ttl > 0 then
  redis.call('PEXPIRE', KEYS[2], ttl)
end
if state == 'initialized' then
  redis.call('HSET', KEYS[1], 'state', 'uploading')
end
return redis.call('BITCOUNT', KEYS[2])
"""

# KEYS: session hash, chunk bitmap. ARGV: total chunks.
_BEGIN_FINALIZE = """
if redis.call('HGET', KEYS[1], 'state') ~= 'uploading' then
  return 0
end
if redis.call('BITCOUNT', KEYS[2]) < tonumber(ARGV[1]) then
  return 0
end
redis.call('HSET', KEYS[1], 'state', 'finalizing')
return 1
"""

# KEYS: session hash.
_ABORT_FINALIZE = """
if redis.call('HGET', KEYS[1], 'state') == 'finalizing' then
  redis.call('HSET', KEYS[1], 'state', 'uploading')
  return 1
end
return 0
"""

# KEYS: session hash, chunk bitmap, expiry index, cleanup index.
# ARGV: session id, states...
_CLAIM = """
local state = redis.call('HGET', KEYS[1], 'state')
if not state then
  return false
end
for i = 2, #ARGV do
  if state == ARGV[i] then
    local record = redis.call('HGET', KEYS[1], 'record')
    local chunks = redis.call('GET', KEYS[2])
    redis.call('DEL', KEYS[1], KEYS[2])
    redis.call('ZREM', KEYS[3], ARGV[1])
    redis.call('HDEL', KEYS[4], ARGV[1])
    return {record, state, chunks or ''}
  end
end
return false
"""

# KEYS: session hash, chunk bitmap, expiry index, cleanup index.
# ARGV: session id, retry score.
_REAP = """
local state = redis.call('HGET', KEYS[1], 'state')
if state == 'finalizing' then
  redis.call('ZADD', KEYS[3], ARGV[2], ARGV[1])
  return {'deferred'}
end
local record = redis.call('HGET', KEYS[4], ARGV[1])
local chunks = redis.call('GET', KEYS[2])
redis.call('DEL', KEYS[1], KEYS[2])
redis.call('ZREM', KEYS[3], ARGV[1])
redis.call('HDEL', KEYS[4], ARGV[1])
if not record then
  return {'missing'}
end
return {'reaped', record, state or '', chunks or ''}
"""


class RedisSessionStore(SessionStore):
    """Redis implementation of the session store."""

    def __init__(
        self,
        redis: Redis,
        grace_seconds: int = 0,
        clock: Clock = utcnow,
    ) -> None:
        self.redis = redis
        self.grace_seconds = grace_seconds
        self.clock = clock
        self._mark_chunk = redis.register_script(_MARK_CHUNK)
        self._begin_finalize = redis.register_script(_BEGIN_FINALIZE)
        self._abort_finalize = redis.register_script(_ABORT_FINALIZE)
        self._claim = redis.register_script(_CLAIM)
        self._reap = redis.register_script(_REAP)

    @staticmethod
    def session_key(session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}:{session_id}"

    @staticmethod
    def chunks_key(session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}:{session_id}:chunks"

    def _keys(self, session_id: str) -> list[str]:
        return [
            self.session_key(session_id),
            self.chunks_key(session_id),
            EXPIRY_INDEX_KEY,
            CLEANUP_INDEX_KEY,
        ]

    @staticmethod
    def _load(
        record: bytes | str,
        state: bytes | str | None,
        bitmap: bytes | None,
    ) -> UploadSession:
        session = UploadSession.model_validate_json(record)
        session.uploaded_chunks = decode_chunk_bitmap(bitmap, session.total_chunks)
        if state:
            session.state = UploadState(_text(state))
        return session

    async def create(self, session: UploadSession, ttl_seconds: int) -> None:
        key = self.session_key(session.session_id)
        record = session.model_dump_json()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                key,
                mapping={
                    "record": record,
                    "state": UploadState.INITIALIZED.value,
                },
            )
            pipe.expire(key, ttl_seconds + self.grace_seconds)
            pipe.zadd(EXPIRY_INDEX_KEY, {session.session_id: session.expires_at.timestamp()})
            pipe.hset(CLEANUP_INDEX_KEY, session.session_id, record)
            await pipe.execute()

    async def get(self, session_id: str) -> UploadSession | None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hmget(self.session_key(session_id), ["record", "state"])
            pipe.get(self.chunks_key(session_id))
            (record, state), bitmap = await pipe.execute()

        if record is None or state is None:
            return None

        session = self._load(record, state, bitmap)
        if session.is_expired(self.clock()):
            return None
        return session

    async def mark_chunk_uploaded(self, session_id: str, chunk_index: int) -> int | None:
        count = await self._mark_chunk(
            keys=[self.session_key(session_id), self.chunks_key(session_id)],
            args=[chunk_index],
        )
        count = int(count)
        return None if count < 0 else count

    async def begin_finalize(self, session_id: str, total_chunks: int) -> bool:
        won = await self._begin_finalize(
            keys=[self.session_key(session_id), self.chunks_key(session_id)],
            args=[total_chunks],
        )
        return int(won) == 1

    async def abort_finalize(self, session_id: str) -> None:
        await self._abort_finalize(keys=[self.session_key(session_id)])

    async def claim(
        self, session_id: str, states: Iterable[UploadState]
    ) -> UploadSession | None:
        result = await self._claim(
            keys=self._keys(session_id),
            args=[session_id, *(UploadState(s).value for s in states)],
        )
        if not result:
            return None
        record, state, bitmap = result
        return self._load(record, state, bitmap)

    async def expired_session_ids(self, now: datetime, limit: int) -> list[str]:
        members = await self.redis.zrangebyscore(
            EXPIRY_INDEX_KEY, "-inf", now.timestamp(), start=0, num=limit
        )
        return [_text(member) for member in members]

    async def reap(self, session_id: str, retry_at: datetime) -> UploadSession | None:
        result = await self._reap(
            keys=self._keys(session_id),
            args=[session_id, retry_at.timestamp()],
        )
        outcome = _text(result[0])
        if outcome == "deferred":
            return None
        if outcome == "missing":
            logger.warning(
                f"Dropped expired upload session {session_id}: no record left to locate its chunks"
            )
            return None
        _, record, state, bitmap = result
        return self._load(record, state, bitmap)
