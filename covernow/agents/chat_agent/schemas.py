"""
schemas.py — ChatAgent request/response contracts.

ChatRequest is the POST /api/chat body: the client's running message list plus
the conversation it belongs to. Only user/assistant turns are accepted; the
system prompt is always built server-side.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messages: List[ChatMessageIn] = Field(..., min_length=1)
    conversationId: str = Field(..., min_length=1)


class CreateConversationRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)


class ConversationOut(BaseModel):
    id: str
    title: str
    token_count: int
