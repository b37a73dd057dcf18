"""Test doubles for the LLM provider and shared reply builders."""
from __future__ import annotations

import base64
import json
from types import SimpleNamespace
from typing import Any

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


def story_json(story: str = "The sun burns over the dunes.", image: str = "endless dunes at noon", status=None) -> str:
    status = status if status is not None else [{"name": "water", "value": "2 flasks"}]
    return json.dumps({"story": story, "status": status, "image": image})


def _text_block(value: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=SimpleNamespace(value=value))


class FakeOpenAI:
    """In-memory stand-in for the assistants, threads and images APIs."""

    def __init__(self) -> None:
        self.assistants: list[SimpleNamespace] = []
        self.threads: dict[str, list[SimpleNamespace]] = {}
        self.replies: list[Any] = []  # str, or a list of content blocks
        self.run_statuses: list[str] = ["in_progress", "completed"]
        self.cancelled_runs: list[str] = []
        self.credentials: list[str] = []
        self.image_prompts: list[str] = []
        self.image_b64 = base64.b64encode(PNG_BYTES).decode("ascii")
        self.conversation_error: Exception | None = None
        self.image_error: Exception | None = None
        self._counter = 0
        self.beta = SimpleNamespace(
            assistants=_Assistants(self),
            threads=_Threads(self),
        )
        self.images = _Images(self)

    def next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"

    def queue_reply(self, reply: Any) -> None:
        self.replies.append(reply)

    def posted_messages(self, thread_id: str) -> list[SimpleNamespace]:
        return [m for m in self.threads[thread_id] if m.role == "user"]


class _Assistants:
    def __init__(self, fake: FakeOpenAI) -> None:
        self._fake = fake

    def list(self, limit: int = 20):
        snapshot = [*self._fake.assistants]

        async def _iterate():
            for assistant in snapshot:
                yield assistant

        return _iterate()

    async def create(self, *, name: str, instructions: str, model: str) -> SimpleNamespace:
        assistant = SimpleNamespace(id=self._fake.next_id("asst"), name=name, instructions=instructions, model=model)
        self._fake.assistants.append(assistant)
        return assistant

    async def update(self, assistant_id: str, **fields: Any) -> SimpleNamespace:
        assistant = next(a for a in self._fake.assistants if a.id == assistant_id)
        for key, value in fields.items():
            setattr(assistant, key, value)
        return assistant


class _Messages:
    def __init__(self, fake: FakeOpenAI) -> None:
        self._fake = fake

    async def create(self, thread_id: str, *, role: str, content: str) -> SimpleNamespace:
        if self._fake.conversation_error is not None:
            raise self._fake.conversation_error
        message = SimpleNamespace(id=self._fake.next_id("msg"), role=role, content=[_text_block(content)])
        self._fake.threads[thread_id].append(message)
        return message

    async def list(self, thread_id: str, *, limit: int = 20, order: str = "desc") -> SimpleNamespace:
        messages = [*self._fake.threads[thread_id]]
        if order == "desc":
            messages.reverse()
        return SimpleNamespace(data=messages[:limit])


class _Runs:
    def __init__(self, fake: FakeOpenAI) -> None:
        self._fake = fake
        self._pending: dict[str, tuple[str, list[str]]] = {}

    async def create(self, thread_id: str, *, assistant_id: str) -> SimpleNamespace:
        run = SimpleNamespace(id=self._fake.next_id("run"), status="queued", last_error=None)
        self._pending[run.id] = (thread_id, [*self._fake.run_statuses])
        return run

    async def retrieve(self, run_id: str, *, thread_id: str) -> SimpleNamespace:
        _, statuses = self._pending[run_id]
        status = statuses.pop(0) if len(statuses) > 1 else statuses[0]
        run = SimpleNamespace(id=run_id, status=status, last_error=None)
        if status == "failed":
            run.last_error = SimpleNamespace(code="server_error", message="the model crashed")
        if status == "completed":
            reply = self._fake.replies.pop(0) if self._fake.replies else story_json()
            content = [_text_block(reply)] if isinstance(reply, str) else reply
            self._fake.threads[thread_id].append(
                SimpleNamespace(id=self._fake.next_id("msg"), role="assistant", content=content)
            )
        return run

    async def cancel(self, run_id: str, *, thread_id: str) -> SimpleNamespace:
        self._fake.cancelled_runs.append(run_id)
        return SimpleNamespace(id=run_id, status="cancelling")


class _Threads:
    def __init__(self, fake: FakeOpenAI) -> None:
        self._fake = fake
        self.messages = _Messages(fake)
        self.runs = _Runs(fake)

    async def create(self) -> SimpleNamespace:
        thread = SimpleNamespace(id=self._fake.next_id("thread"))
        self._fake.threads[thread.id] = []
        return thread


class _Images:
    def __init__(self, fake: FakeOpenAI) -> None:
        self._fake = fake

    async def generate(self, *, model: str, prompt: str, size: str, response_format: str, n: int) -> SimpleNamespace:
        if self._fake.image_error is not None:
            raise self._fake.image_error
        self._fake.image_prompts.append(prompt)
        return SimpleNamespace(data=[SimpleNamespace(b64_json=self._fake.image_b64)])
