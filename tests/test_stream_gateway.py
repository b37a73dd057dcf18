import base64
import json
import time

import pytest
import redis

from chatgame.scheduler import prune_stale_streams_job, setup_scheduler
from chatgame.services.sse_service import (
    ACTIVE_STREAMS_KEY,
    ResponseStream,
    RedisClient,
    redis_client,
    sse_generator,
    stream_id_for,
)
from tests.fakes import PNG_BYTES, story_json


def _events(resp):
    return [json.loads(line[len("data: "):]) for line in resp.text.splitlines() if line.startswith("data: ")]


def _play_intro(client, session_hash):
    resp = client.post(f"/api/v1/session/{session_hash}", json={"action": "intro", "chapterId": 1})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_stream_delivers_text_then_image(client, make_game, start_session, fake_openai):
    make_game()
    session = start_session()
    fake_openai.queue_reply(story_json(story="The wind howls."))
    _play_intro(client, session["hash"])

    resp = client.get(f"/api/v1/messages/{session['hash']}/1/stream")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = _events(resp)
    assert events[0] == {"text": "The wind howls.", "textDone": True}
    assert base64.b64decode(events[1]["imageData"]) == PNG_BYTES
    assert events[1]["imageDone"] is True
    assert len(events) == 2

    # A finished stream is gone.
    assert client.get(f"/api/v1/messages/{session['hash']}/1/stream").status_code == 404


def test_stream_without_image(client, make_game, start_session):
    make_game(image_style="NO_IMAGE")
    session = start_session()
    _play_intro(client, session["hash"])

    events = _events(client.get(f"/api/v1/messages/{session['hash']}/1/stream"))

    assert events[0]["textDone"] is True
    assert events[-1] == {"imageDone": True}


def test_stream_ends_on_invalid_reply(client, make_game, start_session, fake_openai):
    make_game()
    session = start_session()
    fake_openai.queue_reply("not json")
    _play_intro(client, session["hash"])

    events = _events(client.get(f"/api/v1/messages/{session['hash']}/1/stream"))

    assert len(events) == 1
    assert events[0]["errorCode"] == "invalid_reply"
    assert events[0]["error"].startswith("failed parsing provider output")


def test_stream_carries_image_errors(client, make_game, start_session, fake_openai):
    import openai

    make_game()
    session = start_session()
    fake_openai.image_error = openai.OpenAIError("rate limited")
    _play_intro(client, session["hash"])

    events = _events(client.get(f"/api/v1/messages/{session['hash']}/1/stream"))

    assert events[0]["textDone"] is True
    assert events[1]["errorCode"] == "image_error"
    assert "rate limited" in events[1]["error"]


def test_unknown_stream_is_not_found(client):
    assert client.get("/api/v1/messages/nope/1/stream").status_code == 404


@pytest.mark.asyncio
async def test_reopening_a_stream_discards_old_chunks():
    stream = await ResponseStream(stream_id_for("abc", 2)).open()
    await stream.send_text("first attempt", done=True)

    stream = await ResponseStream(stream_id_for("abc", 2)).open()
    await stream.send_text("second attempt", done=True)
    await stream.send_image_done()

    frames = [frame async for frame in sse_generator(stream_id_for("abc", 2))]

    assert [json.loads(f[len("data: "):].strip()) for f in frames] == [
        {"text": "second attempt", "textDone": True},
        {"imageDone": True},
    ]
    assert not await redis_client.is_stream_open(stream_id_for("abc", 2))


@pytest.mark.asyncio
async def test_publishing_failures_do_not_raise(monkeypatch, caplog):
    client = RedisClient("redis://unused")

    async def _unavailable(*args, **kwargs):
        raise redis.ConnectionError("redis is down")

    monkeypatch.setattr(client, "send_chunk", _unavailable)
    monkeypatch.setattr(client, "open_stream", _unavailable)

    stream = await ResponseStream("abc:1", client).open()
    await stream.send_text("hello", done=True)
    await stream.send_error("provider_error", "boom")

    assert "failed to publish chunk" in caplog.text


@pytest.mark.asyncio
async def test_prune_streams_drops_only_stale_ones(fake_redis):
    await ResponseStream("fresh:1").open()
    await ResponseStream("stale:1").open()
    await fake_redis.zadd(ACTIVE_STREAMS_KEY, {"stale:1": time.time() - 3600})

    removed = await redis_client.prune_streams(300)

    assert removed == 1
    assert await redis_client.is_stream_open("fresh:1")
    assert not await redis_client.is_stream_open("stale:1")


@pytest.mark.asyncio
async def test_scheduled_prune_job(fake_redis):
    await ResponseStream("stale:1").open()
    await fake_redis.zadd(ACTIVE_STREAMS_KEY, {"stale:1": time.time() - 3600})

    await prune_stale_streams_job()

    assert await fake_redis.zcard(ACTIVE_STREAMS_KEY) == 0


@pytest.mark.asyncio
async def test_prune_job_survives_redis_errors(monkeypatch):
    async def _unavailable(*args, **kwargs):
        raise redis.ConnectionError("redis is down")

    monkeypatch.setattr(redis_client, "prune_streams", _unavailable)

    await prune_stale_streams_job()


def test_scheduler_registers_prune_job():
    scheduler = setup_scheduler()

    job = scheduler.get_job("prune_streams_job")

    assert job is not None
    assert job.func is prune_stale_streams_job


@pytest.mark.asyncio
async def test_stream_read_failure_ends_quietly(monkeypatch, caplog):
    await ResponseStream("abc:3").open()

    async def _unavailable(*args, **kwargs):
        raise redis.ConnectionError("redis is down")

    monkeypatch.setattr(redis_client, "read_chunks", _unavailable)

    frames = [frame async for frame in sse_generator("abc:3")]

    assert frames == []
    assert "failed to read" in caplog.text
