import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for every shape that crosses the wire: camelCase out, either case in."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Narrative protocol ---

class ActionType(str, Enum):
    INTRO = "intro"
    ACTION = "action"


class OutputType(str, Enum):
    STORY = "story"
    ERROR = "error"


class StatusField(CamelModel):
    name: str
    value: str


class ActionInput(CamelModel):
    type: ActionType
    chapter_id: int
    message: str = ""
    status: List[StatusField] = Field(default_factory=list)


class NarrativeReply(CamelModel):
    """The part of a turn the provider writes itself."""
    story: str = ""
    status: List[StatusField] = Field(default_factory=list)
    image: str = ""


class AgentInfo(CamelModel):
    key: str = ""
    model: str = ""
    assistant: str = ""
    thread: str = ""
    computation_time: str = ""


class ActionOutput(CamelModel):
    chapter_id: int = 0
    session_hash: str = ""
    type: OutputType = OutputType.STORY
    story: str = ""
    status: List[StatusField] = Field(default_factory=list)
    image: str = ""
    error: str = ""
    raw_input: str = ""
    raw_output: str = ""
    assistant_instructions: Optional[str] = None  # only on the intro chapter
    agent: AgentInfo = Field(default_factory=AgentInfo)


# --- Request Models ---

class SessionNewRequest(CamelModel):
    game_id: Optional[int] = None
    game_hash: Optional[str] = None


class SessionActionRequest(CamelModel):
    action: ActionType
    chapter_id: int
    game_id: Optional[int] = None
    game_hash: Optional[str] = None
    message: str = ""
    status: List[StatusField] = Field(default_factory=list)

    def to_action_input(self) -> ActionInput:
        return ActionInput(
            type=self.action,
            chapter_id=self.chapter_id,
            message=self.message,
            status=self.status,
        )


# --- Response Models ---

class SessionResponse(CamelModel):
    id: int
    hash: str
    game_id: int
    user_id: int
    assistant_id: str
    thread_id: str
    model: str


class ChapterResponse(CamelModel):
    chapter_id: int
    input: str
    output: str
    has_image: bool
    created_at: datetime.datetime


class SessionDetailResponse(SessionResponse):
    chapters: List[ChapterResponse]


# --- Streaming ---

class StreamChunk(CamelModel):
    text: str = ""
    text_done: bool = False
    image_data: str = ""  # base64-encoded image bytes
    image_done: bool = False
    error: str = ""
    error_code: str = ""
