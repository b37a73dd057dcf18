from typing import List, Optional
from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatgame.core.errors import ConflictError, PersistenceError
from chatgame.models import session as session_model

GameSession = session_model.GameSession
Chapter = session_model.Chapter


# --- Sessions ---

async def create_session(db: AsyncSession, session: GameSession) -> GameSession:
    """
    Stores a freshly provisioned session.
    """
    db.add(session)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"failed storing session: {e}") from e
    await db.refresh(session)
    return session

async def get_session_by_hash(db: AsyncSession, session_hash: str) -> Optional[GameSession]:
    result = await db.execute(select(GameSession).where(GameSession.hash == session_hash))
    return result.scalars().first()

async def get_session_by_id(db: AsyncSession, session_id: int) -> Optional[GameSession]:
    result = await db.execute(select(GameSession).where(GameSession.id == session_id))
    return result.scalars().first()

async def delete_session(db: AsyncSession, session_id: int):
    """
    Deletes a session together with its chapters.
    """
    await db.execute(delete(Chapter).where(Chapter.session_id == session_id))
    await db.execute(delete(GameSession).where(GameSession.id == session_id))
    await db.commit()


# --- Chapters ---

async def add_chapter(
    db: AsyncSession,
    session_id: int,
    chapter_id: int,
    raw_input: str,
    raw_output: str,
    image_prompt: str,
) -> Chapter:
    """
    Appends a chapter to a session. Chapters are never rewritten afterwards,
    only their image is filled in once.
    """
    chapter = Chapter(
        session_id=session_id,
        chapter_id=chapter_id,
        input=raw_input,
        output=raw_output,
        image_prompt=image_prompt,
    )
    db.add(chapter)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(f"chapter {chapter_id} already exists in session {session_id}") from e
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"failed adding chapter: {e}") from e
    await db.refresh(chapter)
    return chapter

async def get_chapter(db: AsyncSession, session_id: int, chapter_id: int, fresh: bool = False) -> Optional[Chapter]:
    """
    Retrieves one chapter. With `fresh`, the row is re-read even if the ORM
    already holds it, so writes from other sessions become visible.
    """
    query = select(Chapter).where(Chapter.session_id == session_id, Chapter.chapter_id == chapter_id)
    if fresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalars().first()

async def list_chapters(db: AsyncSession, session_id: int) -> List[Chapter]:
    result = await db.execute(
        select(Chapter).where(Chapter.session_id == session_id).order_by(Chapter.chapter_id)
    )
    return list(result.scalars().all())

async def last_chapter_id(db: AsyncSession, session_id: int) -> Optional[int]:
    result = await db.execute(select(func.max(Chapter.chapter_id)).where(Chapter.session_id == session_id))
    return result.scalar()

async def set_chapter_image(db: AsyncSession, session_id: int, chapter_id: int, image: bytes) -> bool:
    """
    Attaches the generated image to a chapter.

    Only a chapter without an image is updated; returns False when the chapter
    is gone or already has one.
    """
    result = await db.execute(
        update(Chapter)
        .where(
            Chapter.session_id == session_id,
            Chapter.chapter_id == chapter_id,
            Chapter.image.is_(None),
        )
        .values(image=image)
    )
    await db.commit()
    return result.rowcount == 1


# --- Usage reports ---

async def write_usage_report(db: AsyncSession, report: session_model.SessionUsageReport) -> session_model.SessionUsageReport:
    db.add(report)
    await db.commit()
    await db.refresh(report)
    return report

async def list_usage_reports(db: AsyncSession, session_id: int) -> List[session_model.SessionUsageReport]:
    result = await db.execute(
        select(session_model.SessionUsageReport)
        .where(session_model.SessionUsageReport.session_id == session_id)
        .order_by(session_model.SessionUsageReport.id)
    )
    return list(result.scalars().all())
