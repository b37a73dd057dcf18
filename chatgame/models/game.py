from typing import Optional
import datetime
from sqlmodel import Field, SQLModel
from sqlalchemy import Column, DateTime


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Game(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    title: str
    description: str = Field(default="")
    scenario: str = Field(default="")
    # Sent instead of an empty intro message when a session starts
    session_start_message: str = Field(default="")
    image_style: str = Field(default="")
    status_fields: str = Field(default="[]")  # Store ordered status fields as JSON string
    # Set for games that anyone holding the hash may play anonymously
    public_hash: Optional[str] = Field(default=None, unique=True, index=True)
    created_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            default=utcnow,
            nullable=False,
        )
    )
