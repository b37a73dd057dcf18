import logging
import secrets
from typing import Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from chatgame.core.config import settings
from chatgame.core.errors import NotFoundError, RequestError, UnauthorizedError
from chatgame.crud import crud_game, crud_session
from chatgame.models.game import Game
from chatgame.models.session import ANONYMOUS_USER_ID, GameSession
from chatgame.services import narrative
from chatgame.services.conversation import conversation_adapter

logger = logging.getLogger(__name__)


def agent_name_for(game: Game) -> str:
    return f"{settings.PROJECT_NAME} Game #{game.id}"


def resolve_credential(api_key: Optional[str]) -> str:
    """
    Picks the credential a new session is billed against: the caller's own key
    if one was supplied, otherwise the server's configured key.
    """
    credential = api_key or settings.OPENAI_API_KEY
    if not credential:
        raise RequestError("No API key available for this session")
    return credential


async def create_session(game: Game, user_id: int, credential: str) -> GameSession:
    """
    Provisions the provider side of a new play-through: renders the
    instructions, upserts the game's assistant and opens a fresh thread.

    The returned session is not stored yet.
    """
    logger.info(f"Creating session for game {game.id}, user {user_id}")
    instructions = narrative.render_instructions(game)

    assistant_id, model = await conversation_adapter.ensure_agent(
        agent_name_for(game), instructions, credential, settings.OPENAI_MODEL
    )
    thread_id = await conversation_adapter.open_context(credential)

    return GameSession(
        hash=secrets.token_urlsafe(16),
        user_id=user_id,
        game_id=game.id,
        assistant_id=assistant_id,
        thread_id=thread_id,
        model=model,
        assistant_instructions=instructions,
        api_key=credential,
    )


async def load_session(db: AsyncSession, hash_or_id: Union[str, int]) -> GameSession:
    """
    Loads a session by its public hash (str) or by its internal id (int).
    Strings are never interpreted as ids, so a guessed number cannot open
    someone else's session through a hash route.
    """
    if isinstance(hash_or_id, int):
        session = await crud_session.get_session_by_id(db, hash_or_id)
    else:
        session = await crud_session.get_session_by_hash(db, hash_or_id)
    if session is None:
        raise NotFoundError("Session not found")
    return session


async def resolve_new_session_game(
    db: AsyncSession,
    game_id: Optional[int],
    game_hash: Optional[str],
    user_id: Optional[int],
) -> Tuple[Game, int]:
    """
    Finds the game a new session is for, and the user it will belong to.

    Owned games are started by id and require their authenticated owner.
    Public games are started by their public hash and played anonymously.
    """
    if (game_id is None) == (not game_hash):
        raise RequestError("Exactly one of gameId and gameHash must be given")

    if game_id is not None:
        if user_id is None:
            raise UnauthorizedError("Unauthorized")
        game = await crud_game.get_game(db, game_id)
        if game is None or game.owner_id != user_id:
            raise NotFoundError("Game not found")
        return game, user_id

    game = await crud_game.get_game_by_public_hash(db, game_hash)
    if game is None:
        raise NotFoundError("Game not found")
    return game, ANONYMOUS_USER_ID


async def start_session(
    db: AsyncSession,
    game_id: Optional[int],
    game_hash: Optional[str],
    user_id: Optional[int],
    api_key: Optional[str],
) -> GameSession:
    game, owner_id = await resolve_new_session_game(db, game_id, game_hash, user_id)
    credential = resolve_credential(api_key)
    session = await create_session(game, owner_id, credential)
    session = await crud_session.create_session(db, session)
    logger.info(f"Session {session.id} stored for game {game.id}")
    return session


async def delete_session(db: AsyncSession, session: GameSession, user_id: Optional[int]):
    """
    Ends a play-through. Anonymous sessions can be deleted by anyone holding
    the hash, owned sessions only by their owner.
    """
    if session.user_id != ANONYMOUS_USER_ID and session.user_id != user_id:
        raise NotFoundError("Session not found")
    await crud_session.delete_session(db, session.id)
    logger.info(f"Deleted session {session.id}")
