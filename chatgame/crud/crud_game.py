import secrets
from typing import Optional
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from chatgame.models import game as game_model

# Pydantic schema for creating a game, mirroring the model fields
class GameCreateSchema(BaseModel):
    owner_id: int
    title: str
    description: str = ""
    scenario: str
    session_start_message: str = ""
    image_style: str = ""
    status_fields: str = "[]"  # JSON string
    public: bool = False

async def create_game(db: AsyncSession, game: GameCreateSchema) -> game_model.Game:
    """
    Creates a new game in the database from a schema object.
    Public games get a random hash that lets anyone start a session.
    """
    data = game.model_dump(exclude={"public"})
    new_game = game_model.Game(**data)
    if game.public:
        new_game.public_hash = secrets.token_urlsafe(12)
    db.add(new_game)
    await db.commit()
    await db.refresh(new_game)
    return new_game

async def get_game(db: AsyncSession, game_id: int) -> Optional[game_model.Game]:
    """
    Retrieves a game by its ID.
    """
    result = await db.execute(select(game_model.Game).where(game_model.Game.id == game_id))
    return result.scalars().first()

async def get_game_by_public_hash(db: AsyncSession, public_hash: str) -> Optional[game_model.Game]:
    result = await db.execute(select(game_model.Game).where(game_model.Game.public_hash == public_hash))
    return result.scalars().first()
