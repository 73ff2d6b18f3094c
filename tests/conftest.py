"""
Pytest configuration and fixtures.
"""

import os

# Must be set before anything imports app.ai_service.config
os.environ.setdefault("LINK_AI_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("LINK_AI_ENV", "test")
os.environ.setdefault("LINK_AI_GLOBAL_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LINK_AI_MONGO_URI", "mongodb://localhost:27017")
os.environ.setdefault("LINK_AI_SENTRY_DSN", "")

import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from app.ai_service.clients.chat_client import ChatMessage
from app.ai_service.repositories.summary_cache import MemorySummaryCache
from app.ai_service.services.schemas.ai_request import SummarizationRequest
from app.ai_service.services.schemas.ai_response import SummarizationResult
from app.core.security import create_access_token

TEST_USER_ID = "22222222-2222-2222-2222-222222222222"
TEST_CONVERSATION_ID = "11111111-1111-1111-1111-111111111111"


class FakePrivacyService:
    """In-memory consent store counting collaborator calls."""

    def __init__(self, ai_consent: bool = True, anonymization_consent: bool = False):
        self.ai_consent = ai_consent
        self.anonymization_consent = anonymization_consent
        self.consent_error: Optional[Exception] = None
        self.audit_error: Optional[Exception] = None
        self.anonymization_error: Optional[Exception] = None
        self.consent_checks = 0
        self.audit_entries = []

    def has_ai_processing_consent(self, user_id: str) -> bool:
        self.consent_checks += 1
        if self.consent_error:
            raise self.consent_error
        return self.ai_consent

    def has_data_anonymization_consent(self, user_id: str) -> bool:
        if self.anonymization_error:
            raise self.anonymization_error
        return self.anonymization_consent

    def log_action(self, entry) -> None:
        if self.audit_error:
            raise self.audit_error
        self.audit_entries.append(entry)


class FakeChatClient:
    def __init__(self, messages: Optional[List[ChatMessage]] = None):
        self.messages = messages if messages is not None else []
        self.error: Optional[Exception] = None
        self.calls = []

    def get_recent_messages(self, conversation_id, limit, token=None):
        self.calls.append((str(conversation_id), limit, token))
        if self.error:
            raise self.error
        return self.messages[-limit:]

    def health(self) -> None:
        return None


class FakeAIService:
    def __init__(self, summary: str = "The team agreed to ship on Friday.", tokens_used: int = 120):
        self.summary = summary
        self.tokens_used = tokens_used
        self.error: Optional[Exception] = None
        self.anonymized_fields: List[str] = []
        self.requests: List[SummarizationRequest] = []

    def summarize_messages(self, request: SummarizationRequest) -> SummarizationResult:
        self.requests.append(request)
        if self.error:
            raise self.error
        metadata = {
            "model_used": "models/gemini-flash-latest",
            "message_count": len(request.messages),
            "anonymization_consent": request.anonymize,
        }
        if request.anonymize:
            metadata["anonymized_fields"] = list(self.anonymized_fields)
        return SummarizationResult(
            id=str(uuid.uuid4()),
            conversation_id=request.conversation_id,
            summary=self.summary,
            message_count=len(request.messages),
            tokens_used=self.tokens_used,
            model="models/gemini-flash-latest",
            processing_time=0.05,
            metadata=metadata,
            created_at=datetime.now(timezone.utc),
        )

    def get_supported_models(self) -> List[str]:
        return ["models/gemini-flash-latest"]

    def health(self) -> None:
        return None


class SpyCache(MemorySummaryCache):
    def __init__(self):
        super().__init__()
        self.gets = 0
        self.sets = 0
        self.set_error: Optional[Exception] = None

    def get_summary(self, key):
        self.gets += 1
        return super().get_summary(key)

    def set_summary(self, key, summary):
        self.sets += 1
        if self.set_error:
            raise self.set_error
        super().set_summary(key, summary)


def make_messages(count: int, conversation_id: str = TEST_CONVERSATION_ID) -> List[ChatMessage]:
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return [
        ChatMessage(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            user_id=TEST_USER_ID,
            content=f"message {i}",
            message_type="assistant" if i % 2 else "text",
            created_at=base + timedelta(minutes=i),
        )
        for i in range(count)
    ]


@pytest.fixture
def privacy_service():
    return FakePrivacyService()


@pytest.fixture
def chat_client():
    return FakeChatClient(make_messages(5))


@pytest.fixture
def ai_service():
    return FakeAIService()


@pytest.fixture
def summary_cache():
    return SpyCache()


@pytest.fixture
def auth_token():
    return create_access_token(
        {
            "sub": TEST_USER_ID,
            "user_id": TEST_USER_ID,
            "email": "ada@example.com",
            "name": "Ada",
            "role": "user",
        }
    )


@pytest.fixture
def auth_headers(auth_token):
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def make_chat_messages():
    return make_messages
