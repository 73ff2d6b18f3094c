"""
Conversation summarization pipeline.

Orchestrates consent, the summary cache, the chat service and the
LLM provider for POST /api/v1/ai/summarize. Every step either
continues or ends the request with an APIError.
"""

import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from uuid import UUID

from pydantic import ValidationError

from app.ai_service.clients.chat_client import ChatMessage
from app.ai_service.repositories.summary_cache import (
    CacheMiss,
    Summary,
    SummaryCache,
    build_cache_key,
)
from app.ai_service.services.schemas.ai_request import (
    DEFAULT_SUMMARY_LIMIT,
    MAX_SUMMARY_LIMIT,
    AIMessage,
    SummarizationRequest,
    SummarizeRequest,
)
from app.ai_service.services.schemas.ai_response import (
    SummarizationResult,
    SummarizeResponse,
)
from app.ai_service.utils.logger import get_logger
from app.common.audit_logger import AuditAction, AuditLogRequest
from app.core.dependencies import RequestContext
from app.core.errors import (
    ConsentRequired,
    InternalError,
    NotFound,
    Unauthorized,
    ValidationFailed,
)

logger = get_logger(__name__)

ENDPOINT = "/api/v1/ai/summarize"


def to_ai_messages(messages: List[ChatMessage]) -> List[AIMessage]:
    """Map chat messages onto provider roles. Anything not assistant/system is user."""
    return [
        AIMessage(
            id=m.id,
            user_id=m.user_id,
            content=m.content,
            role=m.message_type if m.message_type in ("assistant", "system") else "user",
            created_at=m.created_at,
        )
        for m in messages
    ]


def parse_summarize_body(raw_body: bytes) -> SummarizeRequest:
    """
    Parse and validate the request body, applying the default limit.

    Raises:
        ValidationFailed: On malformed JSON, a missing or invalid
            conversation id, or a limit above the maximum.
    """
    try:
        payload = json.loads(raw_body or b"")
        if not isinstance(payload, dict):
            raise ValueError("request body must be a JSON object")
        request = SummarizeRequest.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        raise ValidationFailed(
            "Invalid request body",
            details={"details": str(exc)},
        ) from exc

    if request.limit is None or request.limit <= 0:
        request.limit = DEFAULT_SUMMARY_LIMIT
    elif request.limit > MAX_SUMMARY_LIMIT:
        raise ValidationFailed(
            "Invalid request body",
            details={"details": f"limit must be at most {MAX_SUMMARY_LIMIT}"},
        )

    return request


class SummarizeService:
    def __init__(
        self,
        *,
        ai_service,
        chat_client,
        privacy_service,
        summary_cache: SummaryCache,
        summary_ttl_seconds: int = 3600,
    ) -> None:
        self.ai_service = ai_service
        self.chat_client = chat_client
        self.privacy_service = privacy_service
        self.summary_cache = summary_cache
        self.summary_ttl = timedelta(seconds=summary_ttl_seconds)

    def summarize(self, ctx: RequestContext, raw_body: bytes) -> SummarizeResponse:
        """
        Run the summarization pipeline.

        Raises:
            APIError: The first failing step's error.
        """
        start = time.perf_counter()

        # 1. Identity
        if ctx.user is None:
            raise Unauthorized("User not authenticated")
        user_id = ctx.user.user_id

        # 2. Body
        request = parse_summarize_body(raw_body)
        conversation_id = request.conversation_id
        limit = request.limit

        log_fields = {
            "user_id": str(user_id),
            "conversation_id": str(conversation_id),
            "limit": limit,
            "request_id": ctx.request_id,
        }
        logger.info("Processing summarization request", extra=log_fields)

        # 3. AI processing consent
        try:
            has_consent = self.privacy_service.has_ai_processing_consent(str(user_id))
        except Exception as exc:
            logger.exception("Failed to check AI processing consent", extra=log_fields)
            raise InternalError(
                "Failed to verify consent",
                details={"details": str(exc)},
            ) from exc

        if not has_consent:
            logger.warning("AI processing consent missing", extra=log_fields)
            raise ConsentRequired(
                "AI processing consent is required",
                details={"details": "User must provide consent for AI processing"},
            )

        # 4. Cache lookup
        cache_key = build_cache_key(conversation_id, user_id, limit)
        cached = self._get_cached(cache_key)
        if cached is not None:
            logger.info(
                "Returning cached summary",
                extra={**log_fields, "summary_id": cached.id},
            )
            self._audit(ctx, conversation_id, "cache_hit", {"cached": True, "limit": limit})
            return self._cached_response(cached, limit, start)

        # 5. Messages
        try:
            messages = self.chat_client.get_recent_messages(
                conversation_id,
                limit,
                token=ctx.token,
            )
        except Exception as exc:
            logger.exception("Failed to fetch messages from chat service", extra=log_fields)
            raise InternalError(
                "Failed to fetch messages",
                code="FETCH_ERROR",
                details={"details": str(exc)},
            ) from exc

        if not messages:
            logger.warning("No messages found for conversation", extra=log_fields)
            raise NotFound(
                "No messages found in conversation",
                code="NO_MESSAGES",
                details={"conversation_id": str(conversation_id)},
            )

        # 6. Anonymization consent
        try:
            anonymize = self.privacy_service.has_data_anonymization_consent(str(user_id))
        except Exception as exc:
            logger.exception("Failed to check anonymization consent", extra=log_fields)
            raise InternalError(
                "Failed to verify consent",
                details={"details": str(exc)},
            ) from exc

        # 7. LLM
        ai_request = SummarizationRequest(
            conversation_id=conversation_id,
            user_id=user_id,
            messages=to_ai_messages(messages),
            limit=limit,
            anonymize=anonymize,
        )
        try:
            result = self.ai_service.summarize_messages(ai_request)
        except Exception as exc:
            logger.exception("AI summarization failed", extra=log_fields)
            raise InternalError(
                "Failed to generate summary",
                code="AI_ERROR",
                details={"details": str(exc)},
            ) from exc

        # 8. Cache write
        self._store(cache_key, result)

        # 9. Audit
        anonymized_fields = result.metadata.get("anonymized_fields") or []
        if anonymized_fields:
            self._audit(
                ctx,
                conversation_id,
                "pii_redacted",
                {"fields": sorted(set(anonymized_fields)), "model": result.model},
                action=AuditAction.DATA_ANONYMIZED,
            )

        self._audit(
            ctx,
            conversation_id,
            "ai_generated",
            {
                "cached": False,
                "limit": limit,
                "message_count": len(messages),
                "tokens_used": result.tokens_used,
                "model": result.model,
                "anonymized": anonymize,
                "processing_time_ms": int(result.processing_time * 1000),
            },
        )

        # 10. Response
        response = SummarizeResponse(
            **result.model_dump(exclude={"processing_time"}),
            processing_time=time.perf_counter() - start,
            cached_result=False,
        )

        logger.info(
            "Summarization request completed",
            extra={
                **log_fields,
                "summary_id": response.id,
                "tokens_used": response.tokens_used,
                "processing_time": round(response.processing_time, 3),
            },
        )
        return response

    def _get_cached(self, cache_key: str) -> Summary | None:
        try:
            return self.summary_cache.get_summary(cache_key)
        except CacheMiss:
            return None
        except Exception:
            logger.warning(
                "Summary cache lookup failed, treating as miss",
                extra={"cache_key": cache_key},
                exc_info=True,
            )
            return None

    def _cached_response(self, cached: Summary, limit: int, start: float) -> SummarizeResponse:
        metadata = dict(cached.metadata)
        model = metadata.get("model_used") or self.ai_service.get_supported_models()[0]

        return SummarizeResponse(
            id=cached.id,
            conversation_id=UUID(cached.conversation_id),
            summary=cached.content,
            message_count=metadata.get("message_count", limit),
            tokens_used=0,
            model=model,
            processing_time=time.perf_counter() - start,
            cached_result=True,
            metadata=metadata,
            created_at=cached.created_at,
        )

    def _store(self, cache_key: str, result: SummarizationResult) -> None:
        now = datetime.now(timezone.utc)
        summary = Summary(
            id=result.id,
            conversation_id=str(result.conversation_id),
            content=result.summary,
            metadata=result.metadata,
            created_at=result.created_at,
            expires_at=now + self.summary_ttl,
        )
        try:
            self.summary_cache.set_summary(cache_key, summary)
        except Exception:
            logger.warning(
                "Failed to cache summary result",
                extra={"cache_key": cache_key, "summary_id": result.id},
                exc_info=True,
            )

    def _audit(
        self,
        ctx: RequestContext,
        conversation_id: UUID,
        event_type: str,
        details: Dict[str, Any],
        action: AuditAction = AuditAction.MESSAGES_SUMMARIZED,
    ) -> None:
        entry = AuditLogRequest(
            user_id=str(ctx.user.user_id),
            action=action,
            resource_type="conversation_summary",
            resource_id=str(conversation_id),
            details={"event_type": event_type, "endpoint": ENDPOINT, **details},
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        try:
            self.privacy_service.log_action(entry)
        except Exception:
            logger.error(
                "Failed to log audit event",
                extra={"event_type": event_type, "user_id": entry.user_id},
                exc_info=True,
            )
