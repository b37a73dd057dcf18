import asyncio
import base64
import binascii
import logging
import time
from dataclasses import dataclass

import openai
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatgame import database
from chatgame.core.config import settings
from chatgame.core.errors import NotFoundError, ProviderError
from chatgame.crud import crud_session
from chatgame.models.session import SessionUsageReport
from chatgame.services import openai_client
from chatgame.services.sse_service import ERROR_CODE_IMAGE, ResponseStream, stream_id_for

logger = logging.getLogger(__name__)

USAGE_ACTION_IMAGE = "gen-image"


@dataclass(frozen=True)
class ImageJob:
    """Everything the background image task needs, copied out of the request."""
    session_id: int
    session_hash: str
    game_id: int
    user_id: int
    chapter_id: int
    prompt: str
    credential: str


async def generate(credential: str, prompt: str) -> bytes:
    """
    Turns an image prompt into PNG bytes using the image provider.
    """
    client = openai_client.create_client(credential)
    time_start = time.monotonic()
    try:
        response = await client.images.generate(
            model=settings.OPENAI_IMAGE_MODEL,
            prompt=prompt,
            size=settings.IMAGE_SIZE,
            response_format="b64_json",
            n=1,
        )
        image = base64.b64decode(response.data[0].b64_json)
    except openai.OpenAIError as e:
        raise ProviderError(f"image creation error: {e}") from e
    except (binascii.Error, IndexError, TypeError) as e:
        raise ProviderError(f"failed decoding generated image: {e}") from e
    logger.info(f"Image created in {time.monotonic() - time_start:.2f}s")
    return image


async def run_image_job(job: ImageJob):
    """
    Background task started after an action returned: generates the chapter's
    image, stores it and reports it on the turn's stream.

    Failures are logged and recorded as usage reports; they never reach the
    player's action.
    """
    stream = ResponseStream(stream_id_for(job.session_hash, job.chapter_id))
    error = ""
    try:
        image = await generate(job.credential, job.prompt)
    except ProviderError as e:
        error = e.message
        logger.error(f"failed generating image for session {job.session_id} chapter {job.chapter_id}: {error}")

    async with database.AsyncSessionLocal() as db:
        if not error:
            try:
                stored = await crud_session.set_chapter_image(db, job.session_id, job.chapter_id, image)
            except SQLAlchemyError as e:
                await db.rollback()
                error = f"failed saving image to chapter: {e}"
                logger.error(f"image for session {job.session_id} chapter {job.chapter_id} was not stored: {error}")
            else:
                if stored:
                    logger.info(f"successfully generated and stored image for session {job.session_id} chapter {job.chapter_id}")
                else:
                    error = "chapter missing or image already set"
                    logger.warning(f"image for session {job.session_id} chapter {job.chapter_id} was not stored: {error}")

        try:
            await crud_session.write_usage_report(db, SessionUsageReport(
                session_id=job.session_id,
                game_id=job.game_id,
                user_id=job.user_id,
                api_key=job.credential[:8] + "..",
                action=USAGE_ACTION_IMAGE,
                error=error,
            ))
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"failed writing usage report for session {job.session_id} chapter {job.chapter_id}: {e}")

    if error:
        await stream.send_error(ERROR_CODE_IMAGE, error)
    else:
        await stream.send_image(image, done=True)


async def fetch_image(db: AsyncSession, session_hash: str, chapter_id: int) -> bytes:
    """
    Returns a chapter's image, waiting for a pending generation to finish.

    Polls the chapter store a bounded number of times; hitting the ceiling
    raises NotFoundError, which callers should treat as "try again later".
    Chapters that never got an image prompt fail immediately.
    """
    session = await crud_session.get_session_by_hash(db, session_hash)
    if session is None:
        raise NotFoundError("Session not found")

    for attempt in range(settings.IMAGE_POLL_MAX_ATTEMPTS):
        chapter = await crud_session.get_chapter(db, session.id, chapter_id, fresh=True)
        if chapter is None:
            raise NotFoundError("Chapter not found")
        if chapter.image:
            return chapter.image
        if not chapter.image_prompt:
            raise NotFoundError("No image was requested for this chapter")
        await asyncio.sleep(settings.IMAGE_POLL_INTERVAL_SECONDS)

    raise NotFoundError("Image not found")
