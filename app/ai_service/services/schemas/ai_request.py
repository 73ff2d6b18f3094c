"""
Schemas for summarization requests.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SUMMARY_LIMIT = 15
MAX_SUMMARY_LIMIT = 100


class SummarizeRequest(BaseModel):
    """
    Body of POST /api/v1/ai/summarize.
    """

    model_config = ConfigDict(extra="ignore")

    conversation_id: UUID = Field(
        ...,
        description="Conversation to summarize",
    )
    limit: Optional[int] = Field(
        None,
        description="Number of recent messages (default 15, max 100)",
    )


class AIMessage(BaseModel):
    """
    A chat message in the shape sent to the LLM provider.
    """

    id: str
    user_id: Optional[str] = None
    content: str
    role: str = Field(
        "user",
        description="Message author role: user, assistant or system",
    )
    created_at: Optional[datetime] = None


class SummarizationRequest(BaseModel):
    """
    Request handed to the AI provider.
    """

    conversation_id: UUID
    user_id: UUID
    messages: List[AIMessage]
    limit: int = DEFAULT_SUMMARY_LIMIT
    anonymize: bool = Field(
        False,
        description="Whether the user consented to data anonymization",
    )
