import base64
import logging
import time
from typing import List, Optional, Tuple

import redis.asyncio as redis
from fastapi import Request

from chatgame.core.config import settings
from chatgame.schemas.game import StreamChunk

logger = logging.getLogger(__name__)

STREAM_KEY_PREFIX = "chatgame:stream:"  # + {session_hash}:{chapter_id}
ACTIVE_STREAMS_KEY = "chatgame:streams"  # sorted set of stream ids scored by open time
STREAM_MAXLEN = 1000

ERROR_CODE_PROVIDER = "provider_error"
ERROR_CODE_INVALID_REPLY = "invalid_reply"
ERROR_CODE_PERSISTENCE = "persistence_error"
ERROR_CODE_IMAGE = "image_error"


def stream_id_for(session_hash: str, chapter_id: int) -> str:
    return f"{session_hash}:{chapter_id}"


def _stream_key(stream_id: str) -> str:
    return f"{STREAM_KEY_PREFIX}{stream_id}"


class RedisClient:
    def __init__(self, url):
        self.redis_url = url
        self.redis_pool = None
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        if self.redis is not None:
            return
        self.redis_pool = redis.ConnectionPool.from_url(self.redis_url, decode_responses=True)
        self.redis = redis.Redis(connection_pool=self.redis_pool)

    async def close(self):
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        if self.redis_pool:
            await self.redis_pool.disconnect()
            self.redis_pool = None

    async def open_stream(self, stream_id: str):
        """
        Registers a fresh chunk stream for one turn. Any leftovers from an
        earlier attempt at the same turn are discarded.
        """
        await self.redis.delete(_stream_key(stream_id))
        await self.redis.zadd(ACTIVE_STREAMS_KEY, {stream_id: time.time()})

    async def is_stream_open(self, stream_id: str) -> bool:
        return await self.redis.zscore(ACTIVE_STREAMS_KEY, stream_id) is not None

    async def send_chunk(self, stream_id: str, chunk: StreamChunk) -> str:
        """
        Appends a chunk to a turn's stream. Readers receive chunks in append order.
        """
        payload = chunk.model_dump_json(by_alias=True, exclude_defaults=True)
        return await self.redis.xadd(_stream_key(stream_id), {"chunk": payload}, maxlen=STREAM_MAXLEN)

    async def read_chunks(self, stream_id: str, last_id: str, block_ms: int) -> List[Tuple[str, str]]:
        """
        Returns (entry id, chunk json) pairs appended after `last_id`, waiting up
        to `block_ms` for new ones.
        """
        response = await self.redis.xread({_stream_key(stream_id): last_id}, count=100, block=block_ms)
        entries = []
        for _key, messages in response or []:
            for entry_id, fields in messages:
                entries.append((entry_id, fields["chunk"]))
        return entries

    async def remove_stream(self, stream_id: str):
        await self.redis.zrem(ACTIVE_STREAMS_KEY, stream_id)
        await self.redis.delete(_stream_key(stream_id))

    async def prune_streams(self, max_age_seconds: float) -> int:
        """
        Removes streams opened more than `max_age_seconds` ago.

        :return: The number of streams removed.
        """
        cutoff = time.time() - max_age_seconds
        stale = await self.redis.zrangebyscore(ACTIVE_STREAMS_KEY, "-inf", cutoff)
        for stream_id in stale:
            await self.remove_stream(stream_id)
        return len(stale)

redis_client = RedisClient(settings.REDIS_URL)


class ResponseStream:
    """
    Publishing side of one turn's stream. Delivery is best-effort: a Redis
    failure is logged and never fails the turn that produced the chunk.
    """

    def __init__(self, stream_id: str, client: RedisClient = None):
        self.stream_id = stream_id
        self.client = client or redis_client

    async def open(self) -> "ResponseStream":
        try:
            await self.client.open_stream(self.stream_id)
        except redis.RedisError as e:
            logger.error(f"stream {self.stream_id}: failed to open: {e}")
        return self

    async def send(self, chunk: StreamChunk):
        try:
            await self.client.send_chunk(self.stream_id, chunk)
        except redis.RedisError as e:
            logger.error(f"stream {self.stream_id}: failed to publish chunk: {e}")

    async def send_text(self, text: str, done: bool):
        logger.debug(f"stream {self.stream_id}: {len(text)} chars text{' (DONE)' if done else ''}")
        await self.send(StreamChunk(text=text, text_done=done))

    async def send_image(self, data: bytes, done: bool):
        logger.debug(f"stream {self.stream_id}: {len(data)} bytes image{' (DONE)' if done else ''}")
        await self.send(StreamChunk(image_data=base64.b64encode(data).decode("ascii"), image_done=done))

    async def send_image_done(self):
        await self.send(StreamChunk(image_done=True))

    async def send_error(self, code: str, message: str):
        await self.send(StreamChunk(error=message, error_code=code))


async def sse_generator(stream_id: str, request: Request = None):
    """
    An async generator that follows one turn's chunk stream and yields
    SSE-formatted messages.

    It finishes after an error chunk or once both the text and the image are
    done, and then removes the stream. A client disconnect ends the generator
    but keeps the stream, so a reconnecting client can replay it. A Redis
    failure is logged and ends the generator.
    """
    try:
        async for frame in _follow_stream(stream_id, request):
            yield frame
    except redis.RedisError as e:
        logger.error(f"stream {stream_id}: failed to read: {e}")


async def _follow_stream(stream_id: str, request: Request = None):
    last_id = "0-0"
    text_done = False
    image_done = False
    while True:
        entries = await redis_client.read_chunks(stream_id, last_id, settings.STREAM_READ_BLOCK_MS)
        if not entries:
            if request is not None and await request.is_disconnected():
                logger.info(f"stream {stream_id}: client disconnected")
                return
            if not await redis_client.is_stream_open(stream_id):
                logger.info(f"stream {stream_id}: expired")
                return
            continue

        for entry_id, raw in entries:
            last_id = entry_id
            chunk = StreamChunk.model_validate_json(raw)
            yield f"data: {raw}\n\n"

            if chunk.error:
                await redis_client.remove_stream(stream_id)
                return
            text_done = text_done or chunk.text_done
            image_done = image_done or chunk.image_done

        if text_done and image_done:
            await redis_client.remove_stream(stream_id)
            return
