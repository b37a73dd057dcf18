import asyncio
import logging
import time
from enum import Enum
from typing import Tuple

import openai

from chatgame.core.config import settings
from chatgame.core.errors import ProviderError
from chatgame.services import openai_client

logger = logging.getLogger(__name__)

_PENDING_RUN_STATUSES = ("queued", "in_progress")


class MessageRole(str, Enum):
    PLAYER = "player"
    SYSTEM = "system"


# The thread API only accepts user-authored messages; the JSON payload's `type`
# tells the model whether the player or the engine is speaking.
_PROVIDER_ROLES = {
    MessageRole.PLAYER: "user",
    MessageRole.SYSTEM: "user",
}


class ConversationAdapter:
    """
    Stateful LLM conversation on top of the provider's assistant/thread API.

    Nothing is cached between calls: every operation builds its own client from
    the credential it is given and only returns provider identifiers.
    """

    def __init__(self, poll_interval: float = None, run_timeout: float = None):
        self._poll_interval = poll_interval
        self._run_timeout = run_timeout

    @property
    def poll_interval(self) -> float:
        return self._poll_interval if self._poll_interval is not None else settings.RUN_POLL_INTERVAL_SECONDS

    @property
    def run_timeout(self) -> float:
        return self._run_timeout if self._run_timeout is not None else settings.RUN_TIMEOUT_SECONDS

    async def ensure_agent(self, name: str, instructions: str, credential: str, model: str) -> Tuple[str, str]:
        """
        Idempotent upsert of the assistant called `name`.

        Returns the assistant id and the model it runs on.
        """
        client = openai_client.create_client(credential)
        try:
            existing = None
            async for assistant in client.beta.assistants.list(limit=100):
                if assistant.name == name:
                    existing = assistant
                    break

            if existing is None:
                assistant = await client.beta.assistants.create(name=name, instructions=instructions, model=model)
                logger.info(f"Assistant '{name}' created, id={assistant.id}")
            else:
                assistant = await client.beta.assistants.update(
                    existing.id, name=name, instructions=instructions, model=model
                )
                logger.info(f"Assistant '{name}' updated, id={assistant.id}")
        except openai.OpenAIError as e:
            logger.error(f"Failed to upsert assistant '{name}': {e}")
            raise ProviderError(f"failed to set up assistant: {e}") from e

        return assistant.id, assistant.model

    async def open_context(self, credential: str) -> str:
        client = openai_client.create_client(credential)
        try:
            thread = await client.beta.threads.create()
        except openai.OpenAIError as e:
            logger.error(f"Failed to create thread: {e}")
            raise ProviderError(f"failed to open conversation: {e}") from e
        logger.info(f"Thread created: {thread.id}")
        return thread.id

    async def converse(self, context_id: str, agent_id: str, role: MessageRole, message: str, credential: str) -> str:
        """
        Posts a message to the thread, runs the assistant on it and returns the
        text of the single reply message.
        """
        client = openai_client.create_client(credential)
        try:
            created = await client.beta.threads.messages.create(
                context_id, role=_PROVIDER_ROLES[role], content=message
            )
            logger.debug(f"Message created: {created.id}")

            run = await client.beta.threads.runs.create(context_id, assistant_id=agent_id)
            logger.debug(f"Run {run.id} created on thread {context_id}")

            run = await self._wait_for_run(client, context_id, run)

            page = await client.beta.threads.messages.list(context_id, limit=1, order="desc")
        except openai.OpenAIError as e:
            logger.error(f"Conversation with thread {context_id} failed: {e}")
            raise ProviderError(str(e)) from e

        messages = list(page.data)
        if len(messages) != 1:
            raise ProviderError(f"expected 1 message, got {len(messages)}")
        content = list(messages[0].content)
        if len(content) != 1:
            raise ProviderError(f"expected 1 content block, got {len(content)}")
        if content[0].type != "text":
            raise ProviderError(f"expected text content, got {content[0].type}")
        return content[0].text.value

    async def _wait_for_run(self, client, context_id: str, run):
        deadline = time.monotonic() + self.run_timeout
        while run.status in _PENDING_RUN_STATUSES:
            if time.monotonic() >= deadline:
                await self._cancel_run(client, context_id, run.id)
                raise ProviderError(f"run {run.id} did not complete within {self.run_timeout:g}s")
            await asyncio.sleep(self.poll_interval)
            run = await client.beta.threads.runs.retrieve(run.id, thread_id=context_id)

        if run.status != "completed":
            detail = getattr(run, "last_error", None)
            reason = getattr(detail, "message", None) or run.status
            raise ProviderError(f"run {run.id} ended with status '{run.status}': {reason}")
        logger.debug(f"Run {run.id} completed")
        return run

    async def _cancel_run(self, client, context_id: str, run_id: str):
        try:
            await client.beta.threads.runs.cancel(run_id, thread_id=context_id)
        except openai.OpenAIError as e:
            logger.warning(f"Failed to cancel timed-out run {run_id}: {e}")


conversation_adapter = ConversationAdapter()
