import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from chatgame.core.config import settings
from chatgame.database import init_db
from chatgame.services.sse_service import redis_client
from chatgame.api.v1.endpoints import image, messages, session
from chatgame.scheduler import setup_scheduler

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and shutdown events.
    """
    # Startup
    logging.basicConfig(level=settings.LOG_LEVEL, format=LOG_FORMAT)
    await init_db()
    await redis_client.connect()
    scheduler = setup_scheduler()
    scheduler.start()

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await redis_client.close()

app = FastAPI(title="ChatGame Session Engine", lifespan=lifespan)

@app.get("/healthcheck")
async def healthcheck():
    return {"status": "ok"}

# Include API routers
app.include_router(session.router, prefix="/api/v1", tags=["session"])
app.include_router(image.router, prefix="/api/v1", tags=["image"])
app.include_router(messages.router, prefix="/api/v1", tags=["messages"])
