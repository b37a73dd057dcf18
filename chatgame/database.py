from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from chatgame.core.config import settings

DATABASE_URL = settings.DATABASE_URL

# SQLite connections are cheap to open; not pooling them keeps the engine usable
# from the request loop, background tasks and the CLI alike.
_engine_options = {"poolclass": NullPool} if DATABASE_URL.startswith("sqlite") else {}

# Create an async engine
async_engine = create_async_engine(DATABASE_URL, echo=False, future=True, **_engine_options)

async def init_db():
    """
    Initializes the database and creates tables.
    """
    # Import the table models so they are registered on the metadata.
    from chatgame.models import game, session  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

# Create a configured "Session" class
AsyncSessionLocal = sessionmaker(
    bind=async_engine, class_=AsyncSession, expire_on_commit=False
)

async def get_session() -> AsyncSession:
    """
    Dependency to get an async database session.
    """
    async with AsyncSessionLocal() as session:
        yield session
