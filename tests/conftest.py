from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any, Callable

import pytest

from tests.fakes import FakeOpenAI

# Configure the app before any chatgame module reads its settings.
_DB_PATH = Path(tempfile.mkdtemp(prefix="chatgame-tests-")) / "test.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["OPENAI_API_KEY"] = "sk-server-test-key-0000"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"


@pytest.fixture(autouse=True)
def fake_openai(monkeypatch: pytest.MonkeyPatch) -> FakeOpenAI:
    """Every provider client the app builds is this fake; no test reaches the network."""

    from chatgame.services import openai_client

    fake = FakeOpenAI()

    def _create_client(api_key: str) -> FakeOpenAI:
        fake.credentials.append(api_key)
        return fake

    monkeypatch.setattr(openai_client, "create_client", _create_client)
    return fake


@pytest.fixture(autouse=True)
def _fast_polling(monkeypatch: pytest.MonkeyPatch) -> None:
    from chatgame.core.config import settings

    monkeypatch.setattr(settings, "RUN_POLL_INTERVAL_SECONDS", 0)
    monkeypatch.setattr(settings, "IMAGE_POLL_INTERVAL_SECONDS", 0)
    monkeypatch.setattr(settings, "IMAGE_POLL_MAX_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "STREAM_READ_BLOCK_MS", 10)


@pytest.fixture(autouse=True)
def _fresh_database() -> None:
    """Recreate the schema so every test starts from empty tables."""

    from sqlalchemy import create_engine
    from sqlmodel import SQLModel

    from chatgame.models import game, session  # noqa: F401

    engine = create_engine(f"sqlite:///{_DB_PATH}")
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def fake_redis():
    import fakeredis
    from fakeredis import aioredis

    from chatgame.services.sse_service import redis_client

    r = aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    redis_client.redis = r
    yield r
    redis_client.redis = None


@pytest.fixture()
def client() -> Generator:
    from fastapi.testclient import TestClient

    from chatgame.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def make_game() -> Callable[..., Any]:
    """Insert a game row synchronously and return it (detached, attributes loaded)."""

    from sqlalchemy import create_engine
    from sqlmodel import Session

    from chatgame.models.game import Game

    def _make(
        *,
        owner_id: int = 7,
        title: str = "Desert Run",
        scenario: str = "desert",
        image_style: str = "pixel art",
        session_start_message: str = "",
        status_fields: list[dict[str, str]] | None = None,
        public_hash: str | None = "public-desert",
    ) -> Game:
        fields = status_fields if status_fields is not None else [{"name": "water", "value": "3 flasks"}]
        game = Game(
            owner_id=owner_id,
            title=title,
            scenario=scenario,
            image_style=image_style,
            session_start_message=session_start_message,
            status_fields=json.dumps(fields),
            public_hash=public_hash,
        )
        engine = create_engine(f"sqlite:///{_DB_PATH}")
        with Session(engine) as s:
            s.add(game)
            s.commit()
            s.refresh(game)
        engine.dispose()
        return game

    return _make


@pytest.fixture()
def start_session(client) -> Callable[..., dict]:
    """POST /session/new for a public game hash and return the JSON body."""

    def _start(game_hash: str = "public-desert") -> dict:
        resp = client.post("/api/v1/session/new", json={"gameHash": game_hash})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _start
