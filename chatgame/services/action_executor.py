import logging
import time
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from chatgame.core.errors import ConflictError, PersistenceError, ProviderError
from chatgame.crud import crud_session
from chatgame.models.game import Game
from chatgame.models.session import INTRO_CHAPTER_ID, GameSession
from chatgame.schemas.game import ActionInput, ActionOutput, ActionType, AgentInfo, OutputType
from chatgame.services import narrative
from chatgame.services.conversation import MessageRole, conversation_adapter
from chatgame.services.image_generator import ImageJob
from chatgame.services.session_lock import session_locks
from chatgame.services.sse_service import (
    ERROR_CODE_INVALID_REPLY,
    ERROR_CODE_PERSISTENCE,
    ERROR_CODE_PROVIDER,
    ResponseStream,
    stream_id_for,
)

logger = logging.getLogger(__name__)

_ROLE_BY_ACTION = {
    ActionType.INTRO: MessageRole.SYSTEM,
    ActionType.ACTION: MessageRole.PLAYER,
}

ImageScheduler = Callable[[ImageJob], Any]


def _check_turn(action_input: ActionInput, last_chapter: Optional[int]):
    """
    Enforces the session's turn order: the intro opens the session, actions
    follow it, and every chapter id is the next one in sequence.
    """
    if last_chapter is None:
        if action_input.type != ActionType.INTRO:
            raise ConflictError("Session has not been started yet, expected an intro")
        expected = INTRO_CHAPTER_ID
    else:
        if action_input.type == ActionType.INTRO:
            raise ConflictError("Session has already been started")
        expected = last_chapter + 1

    if action_input.chapter_id != expected:
        raise ConflictError(f"Expected chapter {expected}, got {action_input.chapter_id}")


async def execute(
    db: AsyncSession,
    session: GameSession,
    game: Game,
    action_input: ActionInput,
    credential: str,
    schedule_image: ImageScheduler,
) -> ActionOutput:
    """
    Plays one turn: sends the action to the provider, decodes the reply,
    stores it as the next chapter and streams the text. The chapter's image is
    handed to `schedule_image` and never awaited here.
    """
    # Plain copies: a failed commit expires the ORM objects.
    session_id = session.id
    session_hash = session.hash
    chapter_id = action_input.chapter_id

    async with session_locks.hold(session_id):
        _check_turn(action_input, await crud_session.last_chapter_id(db, session_id))

        stream = await ResponseStream(stream_id_for(session_hash, chapter_id)).open()

        if action_input.type == ActionType.INTRO and not action_input.message.strip():
            action_input = action_input.model_copy(
                update={"message": game.session_start_message or narrative.DEFAULT_START_MESSAGE}
            )
        raw_input = narrative.encode_input(action_input)
        logger.info(f"Executing action, session {session_id}, chapter {chapter_id}: {raw_input}")

        time_start = time.monotonic()
        try:
            reply = await conversation_adapter.converse(
                session.thread_id,
                session.assistant_id,
                _ROLE_BY_ACTION[action_input.type],
                raw_input,
                credential,
            )
        except ProviderError as e:
            logger.error(f"Provider round trip failed for session {session_id}: {e.message}")
            await stream.send_error(ERROR_CODE_PROVIDER, e.message)
            raise
        computation_time = time.monotonic() - time_start
        logger.info(f"Provider responded in {computation_time:.3f}s: {reply}")

        output = narrative.parse_reply(
            reply,
            chapter_id=chapter_id,
            session_hash=session_hash,
            raw_input=raw_input,
            instructions=session.assistant_instructions,
        )
        output.agent = AgentInfo(
            key=narrative.redact_credential(credential),
            model=session.model,
            assistant=session.assistant_id,
            thread=session.thread_id,
            computation_time=f"{computation_time:.3f}s",
        )
        output.image = narrative.with_image_style(output.image, game.image_style)

        wants_image = (
            output.type == OutputType.STORY
            and bool(output.image)
            and game.image_style != narrative.NO_IMAGE_STYLE
        )

        try:
            await crud_session.add_chapter(
                db,
                session_id,
                chapter_id,
                output.raw_input,
                output.raw_output,
                output.image if wants_image else "",
            )
        except PersistenceError as e:
            logger.error(f"Failed adding chapter {chapter_id} to session {session_id}: {e.message}")
            await stream.send_error(ERROR_CODE_PERSISTENCE, "Failed adding chapter")
            raise
        except ConflictError as e:
            await stream.send_error(ERROR_CODE_PERSISTENCE, e.message)
            raise

    if output.type == OutputType.STORY:
        await stream.send_text(output.story, done=True)
    else:
        await stream.send_error(ERROR_CODE_INVALID_REPLY, output.error)

    if wants_image:
        schedule_image(ImageJob(
            session_id=session_id,
            session_hash=session_hash,
            game_id=game.id,
            user_id=session.user_id,
            chapter_id=chapter_id,
            prompt=output.image,
            credential=credential,
        ))
    elif output.type == OutputType.STORY:
        await stream.send_image_done()

    return output
