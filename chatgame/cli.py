import asyncio
import logging
from typing import List, Optional

import typer

from chatgame.core.config import settings
from chatgame.core.errors import GameEngineError
from chatgame.crud import crud_game, crud_session
from chatgame.database import AsyncSessionLocal, init_db
from chatgame.models.session import INTRO_CHAPTER_ID
from chatgame.schemas.game import ActionInput, ActionType, OutputType, StatusField
from chatgame.services import action_executor, narrative, session_manager
from chatgame.services.image_generator import run_image_job
from chatgame.services.sse_service import redis_client

cli_app = typer.Typer()

def _parse_status(values: List[str]) -> List[StatusField]:
    fields = []
    for value in values:
        name, sep, initial = value.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"status fields look like name=value, got '{value}'")
        fields.append(StatusField(name=name.strip(), value=initial.strip()))
    return fields

@cli_app.command()
def init_db_command():
    """
    Initializes the database.
    """
    print("Initializing the database...")
    asyncio.run(init_db())
    print("Database initialized.")

@cli_app.command()
def add_game(
    title: str = typer.Option(..., help="Title of the game"),
    scenario: str = typer.Option(..., help="Scenario text sent to the game master"),
    owner: int = typer.Option(..., help="User id of the owner"),
    image_style: str = typer.Option("", help="Style appended to every image prompt, or NO_IMAGE"),
    start_message: str = typer.Option("", help="How the game should open"),
    status: List[str] = typer.Option([], help="Status field as name=value, repeatable"),
    public: bool = typer.Option(False, help="Allow anonymous play via a public hash"),
):
    """
    Adds a game definition.
    """
    game_in = crud_game.GameCreateSchema(
        owner_id=owner,
        title=title,
        scenario=scenario,
        session_start_message=start_message,
        image_style=image_style,
        status_fields=narrative.dump_status_fields(_parse_status(status)),
        public=public,
    )

    async def _add():
        await init_db()
        async with AsyncSessionLocal() as db:
            return await crud_game.create_game(db, game_in)

    game = asyncio.run(_add())
    print(f"Game created: id={game.id}")
    if game.public_hash:
        print(f"Public hash: {game.public_hash}")

async def _play(game_id: Optional[int], game_hash: Optional[str], user: Optional[int], api_key: Optional[str]):
    await init_db()
    await redis_client.connect()
    try:
        async with AsyncSessionLocal() as db:
            session = await session_manager.start_session(db, game_id, game_hash, user, api_key)
            game = await crud_game.get_game(db, session.game_id)
            print(f"Session {session.hash} started (model {session.model})")

            pending = []
            status = narrative.parse_status_fields(game.status_fields)
            action_input = ActionInput(type=ActionType.INTRO, chapter_id=INTRO_CHAPTER_ID, status=status)
            while True:
                output = await action_executor.execute(
                    db, session, game, action_input, session.api_key,
                    lambda job: pending.append(asyncio.create_task(run_image_job(job))),
                )
                if output.type == OutputType.ERROR:
                    print(f"[error] {output.error}")
                else:
                    print(f"\n{output.story}\n")
                    status = output.status or status
                    for field in status:
                        print(f"  {field.name}: {field.value}")

                message = typer.prompt("\n>", default="", show_default=False)
                if message.strip().lower() in ("quit", "exit"):
                    break
                action_input = ActionInput(
                    type=ActionType.ACTION,
                    chapter_id=output.chapter_id + 1,
                    message=message,
                    status=status,
                )

            if pending:
                print("Waiting for image generation to finish...")
                await asyncio.gather(*pending)
            chapters = await crud_session.list_chapters(db, session.id)
            print(f"Session {session.hash} has {len(chapters)} chapters.")
    finally:
        await redis_client.close()

@cli_app.command()
def play(
    game_id: Optional[int] = typer.Option(None, help="Id of a game you own"),
    game_hash: Optional[str] = typer.Option(None, help="Public hash of a game"),
    user: Optional[int] = typer.Option(None, help="Your user id, required with --game-id"),
    api_key: Optional[str] = typer.Option(None, envvar="CHATGAME_API_KEY", help="API key to bill the session against"),
):
    """
    Plays a game session in the terminal. Type 'quit' to stop.
    """
    logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    try:
        asyncio.run(_play(game_id, game_hash, user, api_key))
    except GameEngineError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)

if __name__ == "__main__":
    cli_app()
