from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime


class Chat(BaseModel):
    session_id: str
    system_prompt: str = ""
    selected_model: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None


class MessageCounts(BaseModel):
    user: int = 0
    assistant: int = 0
    total: int = 0


class SessionSummary(BaseModel):
    session_id: str
    message_count: int
    message_counts: MessageCounts
    preview: str
    last_message: Optional[Message]
    messages: List[Message]
    created_at: datetime
    updated_at: datetime


class SessionStats(BaseModel):
    session_id: str
    total_messages: int
    user_messages: int
    assistant_messages: int
    total_characters: int
    created_at: datetime
    updated_at: datetime
