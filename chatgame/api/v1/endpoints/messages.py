from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from chatgame.services.sse_service import redis_client, sse_generator, stream_id_for

router = APIRouter()


@router.get("/messages/{session_hash}/{chapter_id}/stream")
async def message_stream(request: Request, session_hash: str, chapter_id: int):
    """
    Server-Sent Events stream of a turn's text and image progress.
    """
    stream_id = stream_id_for(session_hash, chapter_id)
    if not await redis_client.is_stream_open(stream_id):
        raise HTTPException(status_code=404, detail="Stream not found")

    return StreamingResponse(
        sse_generator(stream_id, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
