from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from chatgame.core.errors import GameEngineError
from chatgame.database import get_session
from chatgame.services import image_generator

router = APIRouter()


@router.get("/image/{session_hash}/{chapter_id}", response_class=Response)
async def get_chapter_image(session_hash: str, chapter_id: int, db: AsyncSession = Depends(get_session)):
    """
    Returns a chapter's scene image. Image creation can take a while, so this
    waits for it up to a fixed number of polls and then answers 404.
    """
    try:
        image = await image_generator.fetch_image(db, session_hash, chapter_id)
    except GameEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    return Response(content=image, media_type="image/png")
