import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from google.genai import errors as genai_errors

from app.ai_service.config import Settings
from app.ai_service.services.gemini_service import (
    AIServiceError,
    GeminiSummarizationService,
    build_ai_service,
)
from app.ai_service.services.schemas.ai_request import AIMessage, SummarizationRequest

MODEL = "models/gemini-flash-latest"


def _gemini_response(text="Alice and Bob agreed to ship on Friday.", prompt=90, completion=30):
    return SimpleNamespace(
        text=text,
        candidates=[],
        usage_metadata=SimpleNamespace(
            prompt_token_count=prompt,
            candidates_token_count=completion,
            total_token_count=prompt + completion,
        ),
    )


def _stub_redactor(text):
    if "alice@example.com" in text:
        return text.replace("alice@example.com", "<EMAIL_ADDRESS>"), ["EMAIL_ADDRESS"]
    return text, []


def _request(count=3, limit=15, anonymize=False):
    messages = [
        AIMessage(
            id=f"m{i}",
            content="mail me at alice@example.com" if i == 0 else f"message {i}",
            role="assistant" if i % 2 else "user",
            created_at=datetime(2024, 5, 1, 12, i, tzinfo=timezone.utc),
        )
        for i in range(count)
    ]
    return SummarizationRequest(
        conversation_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        messages=messages,
        limit=limit,
        anonymize=anonymize,
    )


@pytest.fixture
def gemini_client():
    client = MagicMock()
    client.models.generate_content.return_value = _gemini_response()
    return client


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(gemini_client, sleeps):
    return GeminiSummarizationService(
        api_key="test-key",
        model=MODEL,
        max_retries=2,
        client=gemini_client,
        redactor=_stub_redactor,
        sleep=sleeps.append,
    )


def _prompt(gemini_client, call=-1):
    return gemini_client.models.generate_content.call_args_list[call].kwargs["contents"]


def test_summary_reports_tokens_and_metadata(service):
    result = service.summarize_messages(_request(anonymize=True))

    assert result.summary == "Alice and Bob agreed to ship on Friday."
    assert result.tokens_used == 120
    assert result.message_count == 3
    assert result.model == MODEL
    assert result.metadata["prompt_tokens"] == 90
    assert result.metadata["completion_tokens"] == 30
    assert result.metadata["anonymized_fields"] == ["EMAIL_ADDRESS"]
    assert result.metadata["anonymization_consent"] is True
    assert result.metadata["model_used"] == MODEL


def test_prompt_is_redacted_and_timestamped(service, gemini_client):
    service.summarize_messages(_request())

    prompt = _prompt(gemini_client)
    assert "alice@example.com" not in prompt
    assert "[2024-05-01 12:00:00] user: mail me at <EMAIL_ADDRESS>" in prompt
    assert "[2024-05-01 12:01:00] assistant: message 1" in prompt


def test_only_most_recent_messages_are_sent(service, gemini_client):
    result = service.summarize_messages(_request(count=6, limit=2))

    prompt = _prompt(gemini_client)
    assert result.message_count == 2
    assert "message 5" in prompt
    assert "message 3" not in prompt


def test_connection_errors_are_retried(service, gemini_client, sleeps):
    gemini_client.models.generate_content.side_effect = [
        ConnectionError("reset"),
        genai_errors.APIError(503, {"error": {"message": "overloaded", "status": "UNAVAILABLE"}}),
        _gemini_response(),
    ]

    result = service.summarize_messages(_request())

    assert result.summary
    assert sleeps == [0.25, 0.5]


def test_retries_are_bounded(service, gemini_client, sleeps):
    gemini_client.models.generate_content.side_effect = TimeoutError("slow")

    with pytest.raises(AIServiceError):
        service.summarize_messages(_request())

    assert gemini_client.models.generate_content.call_count == 3
    assert len(sleeps) == 2


def test_non_retryable_errors_fail_immediately(service, gemini_client, sleeps):
    gemini_client.models.generate_content.side_effect = genai_errors.APIError(
        400, {"error": {"message": "bad request", "status": "INVALID_ARGUMENT"}}
    )

    with pytest.raises(AIServiceError):
        service.summarize_messages(_request())

    assert gemini_client.models.generate_content.call_count == 1
    assert sleeps == []


def test_empty_output_is_an_error(service, gemini_client):
    gemini_client.models.generate_content.return_value = _gemini_response(text="   ")

    with pytest.raises(AIServiceError, match="Empty summary"):
        service.summarize_messages(_request())


def test_text_is_collected_from_candidate_parts(service, gemini_client):
    part = SimpleNamespace(text="From parts.")
    response = _gemini_response(text=None)
    response.candidates = [SimpleNamespace(content=SimpleNamespace(parts=[part]))]
    gemini_client.models.generate_content.return_value = response

    assert service.summarize_messages(_request()).summary == "From parts."


def test_no_messages_is_an_error(service, gemini_client):
    with pytest.raises(AIServiceError):
        service.summarize_messages(_request(count=0))

    gemini_client.models.generate_content.assert_not_called()


def test_redaction_failure_is_an_error(gemini_client):
    def failing_redactor(text):
        raise RuntimeError("presidio unavailable")

    service = GeminiSummarizationService(
        api_key="test-key",
        model=MODEL,
        client=gemini_client,
        redactor=failing_redactor,
    )

    with pytest.raises(AIServiceError, match="anonymization"):
        service.summarize_messages(_request())

    gemini_client.models.generate_content.assert_not_called()


def test_missing_api_key_is_an_error():
    service = GeminiSummarizationService(api_key=None, model=MODEL, redactor=_stub_redactor)

    with pytest.raises(AIServiceError, match="API key"):
        service.summarize_messages(_request())

    with pytest.raises(AIServiceError):
        service.health()


def test_supported_models_put_configured_model_first(service):
    models = service.get_supported_models()

    assert models[0] == MODEL
    assert len(models) == len(set(models))
    service.validate_model(MODEL)
    with pytest.raises(ValueError):
        service.validate_model("models/unknown")


def test_health_wraps_provider_errors(service, gemini_client):
    service.health()
    gemini_client.models.get.assert_called_once_with(model=MODEL)

    gemini_client.models.get.side_effect = RuntimeError("unreachable")
    with pytest.raises(AIServiceError):
        service.health()


def test_unknown_provider_is_rejected():
    settings = Settings(JWT_SECRET="secret", AI_PROVIDER="openai")

    with pytest.raises(ValueError, match="Unsupported AI provider"):
        build_ai_service(settings)


def test_gemini_provider_is_built_from_settings():
    settings = Settings(JWT_SECRET="secret", AI_MODEL="models/gemini-pro-latest", AI_MAX_RETRIES=1)

    service = build_ai_service(settings)

    assert isinstance(service, GeminiSummarizationService)
    assert service.model == "models/gemini-pro-latest"
    assert service.max_retries == 1
