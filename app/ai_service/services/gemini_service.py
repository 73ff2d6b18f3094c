"""
Conversation summarization with Gemini.

Every message is redacted with Presidio before it is placed in the
prompt, so raw PII never reaches the provider.
"""

import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import mlflow
from google.genai import errors as genai_errors

from app.ai_service.config import Settings
from app.ai_service.services.schemas.ai_request import AIMessage, SummarizationRequest
from app.ai_service.services.schemas.ai_response import SummarizationResult
from app.ai_service.utils.logger import get_logger
from app.common.mlflow_control import mlflow_context, mlflow_safe
from app.common.pii_detector import redact_pii

logger = get_logger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a helpful assistant that creates concise summaries of chat "
    "conversations. Focus on key points, decisions, and important "
    "information while maintaining context."
)

PROMPT_TEMPLATE = """Summarize the following messages in 2-3 sentences, focusing on key points, decisions, and important information:

Messages:
{messages}

Please provide a clear, concise summary that captures the main topics and any conclusions or next steps discussed."""

FALLBACK_MODELS = [
    "models/gemini-flash-latest",
    "models/gemini-pro-latest",
]

BASE_RETRY_DELAY = 0.25
MAX_RETRY_DELAY = 30.0


class AIServiceError(RuntimeError):
    """Raised when a summary cannot be produced."""


def _extract_text(response) -> str | None:
    text = getattr(response, "text", None)
    if isinstance(text, str) and text.strip():
        return text.strip()

    candidates = getattr(response, "candidates", None)
    if not candidates:
        return None

    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None)
    if not isinstance(parts, list):
        return None

    collected = [
        p.text.strip()
        for p in parts
        if hasattr(p, "text") and isinstance(p.text, str) and p.text.strip()
    ]
    return " ".join(collected) if collected else None


def _token_usage(response) -> Tuple[int, int, int]:
    usage = getattr(response, "usage_metadata", None)
    prompt = getattr(usage, "prompt_token_count", None) or 0
    completion = getattr(usage, "candidates_token_count", None) or 0
    total = getattr(usage, "total_token_count", None) or (prompt + completion)
    return prompt, completion, total


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, genai_errors.APIError):
        return exc.code == 429 or exc.code >= 500
    return isinstance(exc, (ConnectionError, TimeoutError))


class GeminiSummarizationService:
    def __init__(
        self,
        *,
        api_key: Optional[str],
        model: str,
        max_tokens: int = 800,
        temperature: float = 0.2,
        max_retries: int = 3,
        client=None,
        redactor: Callable[[str], Tuple[str, List[str]]] = redact_pii,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_retries = max(0, max_retries)
        self._client = client
        self._redact = redactor
        self._sleep = sleep
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiSummarizationService":
        return cls(
            api_key=settings.GEMINI_API_KEY,
            model=settings.AI_MODEL,
            max_tokens=settings.AI_MAX_TOKENS,
            temperature=settings.AI_TEMPERATURE,
            max_retries=settings.AI_MAX_RETRIES,
        )

    # --------------------------------------------------
    # Client
    # --------------------------------------------------

    def _load_gemini(self):
        """
        Create the Gemini client on first use.

        Raises:
            AIServiceError: If no API key is configured.
        """
        if self._client is not None:
            return self._client

        with self._lock:
            if self._client is None:
                if not self.api_key:
                    raise AIServiceError("Missing Gemini API key")

                from google import genai

                self._client = genai.Client(api_key=self.api_key)
                logger.info("Gemini client initialized", extra={"model": self.model})

        return self._client

    # --------------------------------------------------
    # Models
    # --------------------------------------------------

    def get_supported_models(self) -> List[str]:
        models = [self.model]
        models.extend(m for m in FALLBACK_MODELS if m != self.model)
        return models

    def validate_model(self, name: str) -> None:
        if name not in self.get_supported_models():
            raise ValueError(f"Unsupported model: {name}")

    def health(self) -> None:
        """
        Raises:
            AIServiceError: If the provider is unconfigured or unreachable.
        """
        client = self._load_gemini()
        try:
            client.models.get(model=self.model)
        except Exception as exc:
            raise AIServiceError(f"Gemini unreachable: {exc}") from exc

    # --------------------------------------------------
    # Prompt
    # --------------------------------------------------

    def _anonymize_messages(self, messages: List[AIMessage]) -> Tuple[str, List[str]]:
        lines = []
        fields = set()

        for message in messages:
            stamp = (
                message.created_at.strftime("%Y-%m-%d %H:%M:%S")
                if message.created_at
                else "unknown time"
            )
            redacted, found = self._redact(message.content)
            lines.append(f"[{stamp}] {message.role}: {redacted}")
            fields.update(found)

        return "\n\n".join(lines), sorted(fields)

    def _generate(self, client, prompt: str):
        from google.genai.types import GenerateContentConfig

        return client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=GenerateContentConfig(
                system_instruction=SYSTEM_INSTRUCTION,
                temperature=self.temperature,
                max_output_tokens=self.max_tokens,
            ),
        )

    def _generate_with_retry(self, client, prompt: str):
        delay = BASE_RETRY_DELAY

        for attempt in range(self.max_retries + 1):
            try:
                return self._generate(client, prompt)
            except Exception as exc:
                if not _is_retryable(exc) or attempt == self.max_retries:
                    logger.error(
                        "Gemini request failed",
                        extra={"attempt": attempt, "error": str(exc)},
                    )
                    raise AIServiceError(f"Gemini request failed: {exc}") from exc

                logger.warning(
                    "Gemini request failed, will retry",
                    extra={"attempt": attempt, "delay": delay, "error": str(exc)},
                )
                self._sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY)

    # --------------------------------------------------
    # Public API
    # --------------------------------------------------

    def summarize_messages(self, request: SummarizationRequest) -> SummarizationResult:
        """
        Summarize the most recent ``request.limit`` messages.

        Raises:
            AIServiceError: On missing configuration, redaction failure,
                provider failure after retries, or empty output.
        """
        start_time = time.time()
        messages = request.messages[-request.limit:] if request.limit > 0 else []

        if not messages:
            raise AIServiceError("No messages to summarize")

        client = self._load_gemini()

        try:
            transcript, anonymized_fields = self._anonymize_messages(messages)
        except RuntimeError as exc:
            raise AIServiceError("Message anonymization failed") from exc

        prompt = PROMPT_TEMPLATE.format(messages=transcript)

        logger.info(
            "Starting message summarization",
            extra={
                "conversation_id": str(request.conversation_id),
                "message_count": len(messages),
                "anonymized_fields": anonymized_fields,
            },
        )

        with mlflow_context(run_name="conversation_summary"):
            mlflow_safe(mlflow.set_tag, "service", "ai_summarize")
            mlflow_safe(mlflow.set_tag, "llm_provider", "gemini")
            mlflow_safe(mlflow.set_tag, "llm_model", self.model)

            response = self._generate_with_retry(client, prompt)

            summary = _extract_text(response)
            if not summary:
                raise AIServiceError("Empty summary returned from Gemini")

            prompt_tokens, completion_tokens, total_tokens = _token_usage(response)
            elapsed = time.time() - start_time

            mlflow_safe(mlflow.log_metric, "summary_latency_sec", elapsed)
            mlflow_safe(mlflow.log_metric, "summary_tokens", total_tokens)

        logger.info(
            "Summary generated",
            extra={
                "conversation_id": str(request.conversation_id),
                "tokens_used": total_tokens,
                "latency_sec": round(elapsed, 3),
            },
        )

        return SummarizationResult(
            id=str(uuid.uuid4()),
            conversation_id=request.conversation_id,
            summary=summary,
            message_count=len(messages),
            tokens_used=total_tokens,
            model=self.model,
            processing_time=elapsed,
            metadata={
                "anonymized_fields": anonymized_fields,
                "anonymization_consent": request.anonymize,
                "model_used": self.model,
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "message_count": len(messages),
            },
            created_at=datetime.now(timezone.utc),
        )


def build_ai_service(settings: Settings) -> GeminiSummarizationService:
    """
    Raises:
        ValueError: If AI_PROVIDER is not supported.
    """
    provider = settings.AI_PROVIDER.lower()
    if provider == "gemini":
        return GeminiSummarizationService.from_settings(settings)

    raise ValueError(f"Unsupported AI provider: {settings.AI_PROVIDER}")
