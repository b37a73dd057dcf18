from typing import Optional
import datetime
from sqlmodel import Field, SQLModel
from sqlalchemy import Column, DateTime, LargeBinary, UniqueConstraint

from chatgame.models.game import utcnow

ANONYMOUS_USER_ID = 0
INTRO_CHAPTER_ID = 1


class GameSession(SQLModel, table=True):
    __tablename__ = "game_session"

    id: Optional[int] = Field(default=None, primary_key=True)
    hash: str = Field(unique=True, index=True)
    user_id: int = Field(default=ANONYMOUS_USER_ID, index=True)
    game_id: int = Field(foreign_key="game.id", index=True)
    assistant_id: str = Field(default="")
    thread_id: str = Field(default="")
    model: str = Field(default="")
    assistant_instructions: str = Field(default="")
    api_key: str = Field(default="")
    created_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), default=utcnow, nullable=False)
    )


class Chapter(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("session_id", "chapter_id", name="uq_chapter_session_seq"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="game_session.id", index=True)
    chapter_id: int
    input: str
    output: str
    image_prompt: str = Field(default="")
    image: Optional[bytes] = Field(default=None, sa_column=Column(LargeBinary, nullable=True))
    created_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), default=utcnow, nullable=False)
    )


class SessionUsageReport(SQLModel, table=True):
    __tablename__ = "session_usage_report"

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(index=True)
    game_id: int
    user_id: int
    api_key: str  # truncated, never the full credential
    action: str
    error: str = Field(default="")
    created_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), default=utcnow, nullable=False)
    )
