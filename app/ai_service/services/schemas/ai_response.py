"""
Schemas for summarization responses.
"""

from datetime import datetime
from typing import Any, Dict
from uuid import UUID

from pydantic import BaseModel, Field


class SummarizationResult(BaseModel):
    """
    Result returned by the AI provider.
    """

    id: str
    conversation_id: UUID
    summary: str
    message_count: int
    tokens_used: int = 0
    model: str
    processing_time: float = Field(
        0.0,
        description="Provider-side processing time in seconds",
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SummarizeResponse(SummarizationResult):
    """
    Response body of POST /api/v1/ai/summarize.

    ``processing_time`` covers the whole request in seconds.
    """

    cached_result: bool = Field(
        False,
        description="True when served from the summary cache",
    )
