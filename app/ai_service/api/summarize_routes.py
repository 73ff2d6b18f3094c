"""
Conversation summarization API routes.
"""

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from app.ai_service.services.schemas.ai_response import SummarizeResponse
from app.ai_service.services.summarize_service import SummarizeService
from app.ai_service.utils.logger import get_logger
from app.core.dependencies import (
    build_request_context,
    enforce_ai_rate_limit,
    get_summarize_service,
)
from app.core.security import AuthenticatedUser

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/ai", tags=["AI"])


@router.post("/summarize", response_model=SummarizeResponse)
async def summarize_conversation(
    request: Request,
    user: AuthenticatedUser = Depends(enforce_ai_rate_limit),
    service: SummarizeService = Depends(get_summarize_service),
) -> SummarizeResponse:
    """
    Summarize the most recent messages of a conversation.

    The body is read raw so that authentication and rate limiting are
    decided before the payload is validated.
    """
    raw_body = await request.body()
    ctx = build_request_context(request)

    return await run_in_threadpool(service.summarize, ctx, raw_body)
