"""
PII redaction using Microsoft Presidio.

Message text is redacted before it is sent to the LLM provider.
"""

from typing import List, Tuple

from presidio_analyzer import AnalyzerEngine, RecognizerRegistry
from presidio_anonymizer import AnonymizerEngine
from presidio_anonymizer.entities import OperatorConfig

from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)

PII_ENTITIES = [
    "PERSON",
    "EMAIL_ADDRESS",
    "PHONE_NUMBER",
    "LOCATION",
    "US_SSN",
    "CREDIT_CARD",
    "IP_ADDRESS",
    "IBAN_CODE",
    "URL",
]

_analyzer = None
_anonymizer = None


def get_pii_analyzer() -> AnalyzerEngine:
    """Get or create PII analyzer instance."""
    global _analyzer

    if _analyzer is None:
        logger.info("Initializing Presidio PII analyzer")
        registry = RecognizerRegistry()
        registry.load_predefined_recognizers()
        _analyzer = AnalyzerEngine(registry=registry)

    return _analyzer


def get_pii_anonymizer() -> AnonymizerEngine:
    """Get or create PII anonymizer instance."""
    global _anonymizer

    if _anonymizer is None:
        logger.info("Initializing Presidio PII anonymizer")
        _anonymizer = AnonymizerEngine()

    return _anonymizer


def redact_pii(text: str) -> Tuple[str, List[str]]:
    """
    Replace detected PII with ``<ENTITY_TYPE>`` placeholders.

    Args:
        text: Text that may contain PII.

    Returns:
        The redacted text and the sorted entity types that were replaced.

    Raises:
        RuntimeError: If the Presidio engines fail.
    """
    if not text or len(text) < 3:
        return text, []

    try:
        results = get_pii_analyzer().analyze(
            text=text,
            language="en",
            entities=PII_ENTITIES,
            score_threshold=0.5,
        )

        if not results:
            return text, []

        anonymized = get_pii_anonymizer().anonymize(
            text=text,
            analyzer_results=results,
            operators={"DEFAULT": OperatorConfig("replace")},
        )
    except Exception as exc:
        logger.exception("PII redaction failed")
        raise RuntimeError("PII redaction failed") from exc

    fields = sorted({r.entity_type for r in results})
    logger.debug(
        "PII redacted from text",
        extra={"entities": len(results), "pii_types": fields},
    )
    return anonymized.text, fields
