import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from chatgame.api.deps import get_api_key, get_current_user_id
from chatgame.core.errors import GameEngineError, RequestError
from chatgame.crud import crud_game, crud_session
from chatgame.database import get_session
from chatgame.schemas import game as game_schema
from chatgame.services import action_executor, session_manager
from chatgame.services.image_generator import run_image_job

logger = logging.getLogger(__name__)

router = APIRouter()


def _session_response(session) -> game_schema.SessionResponse:
    return game_schema.SessionResponse(
        id=session.id,
        hash=session.hash,
        game_id=session.game_id,
        user_id=session.user_id,
        assistant_id=session.assistant_id,
        thread_id=session.thread_id,
        model=session.model,
    )


@router.post("/session/new", response_model=game_schema.SessionResponse)
async def new_session(
    session_in: game_schema.SessionNewRequest,
    db: AsyncSession = Depends(get_session),
    user_id: Optional[int] = Depends(get_current_user_id),
    api_key: Optional[str] = Depends(get_api_key),
):
    """
    Starts a new play-through: owned games by gameId, public games by gameHash.
    """
    try:
        session = await session_manager.start_session(
            db, session_in.game_id, session_in.game_hash, user_id, api_key
        )
    except GameEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    return _session_response(session)


@router.post("/session/{session_hash}", response_model=game_schema.ActionOutput, response_model_exclude_none=True)
async def session_action(
    session_hash: str,
    action_in: game_schema.SessionActionRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
):
    """
    Plays one turn of a session. The narrative comes back synchronously; the
    scene image is generated in the background.
    """
    try:
        session = await session_manager.load_session(db, session_hash)
        if action_in.game_id is not None and action_in.game_id != session.game_id:
            raise RequestError("gameId does not match the session")

        game = await crud_game.get_game(db, session.game_id)
        if game is None:
            raise HTTPException(status_code=500, detail="Failed loading game data")
        if action_in.game_hash and action_in.game_hash != game.public_hash:
            raise RequestError("gameHash does not match the session")

        return await action_executor.execute(
            db,
            session,
            game,
            action_in.to_action_input(),
            session.api_key,
            lambda job: background_tasks.add_task(run_image_job, job),
        )
    except GameEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e


@router.get("/session/{session_hash}", response_model=game_schema.SessionDetailResponse)
async def get_session_detail(session_hash: str, db: AsyncSession = Depends(get_session)):
    """
    Retrieves a session together with its chapter transcript.
    """
    try:
        session = await session_manager.load_session(db, session_hash)
    except GameEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e

    chapters = await crud_session.list_chapters(db, session.id)
    return game_schema.SessionDetailResponse(
        **_session_response(session).model_dump(),
        chapters=[
            game_schema.ChapterResponse(
                chapter_id=chapter.chapter_id,
                input=chapter.input,
                output=chapter.output,
                has_image=chapter.image is not None,
                created_at=chapter.created_at,
            )
            for chapter in chapters
        ],
    )


@router.delete("/session/{session_hash}", status_code=204)
async def delete_session(
    session_hash: str,
    db: AsyncSession = Depends(get_session),
    user_id: Optional[int] = Depends(get_current_user_id),
):
    """
    Deletes a session and its chapters.
    """
    try:
        session = await session_manager.load_session(db, session_hash)
        await session_manager.delete_session(db, session, user_id)
    except GameEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    logger.info(f"Deleted session {session_hash}")
    return
