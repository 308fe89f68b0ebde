"""
Error Classifier - Maps classifier/network failures to a closed error taxonomy

The remote classifier exposes no structured error codes, so classification is
done on the lowercased error text with an ordered rule list (first match wins):

1. Deadline / cancellation      -> TIMEOUT              (retryable)
2. Rate limit / quota / 429     -> RATE_LIMITED         (retryable)
3. 401 / 403 / bad API key      -> AUTH_ERROR           (NOT retryable)
4. Connection / network / 503   -> SERVICE_UNAVAILABLE  (retryable)
5. parse / json / decode        -> PARSE_ERROR          (retryable)
6. Anything else                -> UNKNOWN_ERROR        (retryable)

Errors raised as ClassifierServiceError with an explicit `kind` skip the text
rules entirely.

User-facing messages come from a static table, never from the error text.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import structlog

from packages.domain.ai_categorization.exceptions import ClassifierServiceError
from packages.domain.ai_categorization.schemas import ErrorKind, ProcessingError

logger = structlog.get_logger()


ERROR_MESSAGES: Dict[str, Dict[ErrorKind, str]] = {
    "en": {
        ErrorKind.SERVICE_UNAVAILABLE: "The AI service is temporarily unavailable. Please try again later.",
        ErrorKind.RATE_LIMITED: "Request limit reached. Wait a few minutes and try again.",
        ErrorKind.AUTH_ERROR: "The AI service is misconfigured. Please contact support.",
        ErrorKind.TIMEOUT: "Processing took longer than expected. Try again with fewer transactions.",
        ErrorKind.PARSE_ERROR: "The AI response could not be processed. Please try again.",
        ErrorKind.UNKNOWN_ERROR: "An unexpected error occurred during processing. Please try again.",
    },
    "pt-BR": {
        ErrorKind.SERVICE_UNAVAILABLE: "O servico de inteligencia artificial esta temporariamente indisponivel. Tente novamente mais tarde.",
        ErrorKind.RATE_LIMITED: "Limite de requisicoes atingido. Aguarde alguns minutos e tente novamente.",
        ErrorKind.AUTH_ERROR: "Erro de configuracao do servico de IA. Por favor, contate o suporte.",
        ErrorKind.TIMEOUT: "O processamento demorou mais do que o esperado. Tente novamente com menos transacoes.",
        ErrorKind.PARSE_ERROR: "Erro ao processar resposta da IA. Tente novamente.",
        ErrorKind.UNKNOWN_ERROR: "Ocorreu um erro inesperado durante o processamento. Tente novamente.",
    },
}

# Appended to the error message when earlier batches already produced suggestions
SAVED_SUGGESTIONS_NOTES: Dict[str, str] = {
    "en": "{count} suggestions were saved.",
    "pt-BR": "{count} sugestoes foram salvas.",
}

RETRYABLE: Dict[ErrorKind, bool] = {
    ErrorKind.SERVICE_UNAVAILABLE: True,
    ErrorKind.RATE_LIMITED: True,
    ErrorKind.AUTH_ERROR: False,
    ErrorKind.TIMEOUT: True,
    ErrorKind.PARSE_ERROR: True,
    ErrorKind.UNKNOWN_ERROR: True,
}


@dataclass(frozen=True)
class ErrorRule:
    """Substrings that map a failure to an error kind"""
    kind: ErrorKind
    needles: Tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(needle in text for needle in self.needles)


ERROR_RULES: List[ErrorRule] = [
    ErrorRule(ErrorKind.TIMEOUT, ("deadline exceeded", "context canceled", "cancelled")),
    ErrorRule(ErrorKind.RATE_LIMITED, ("rate limit", "quota", "429", "resource exhausted", "too many requests")),
    ErrorRule(ErrorKind.AUTH_ERROR, ("401", "403", "invalid api key", "unauthorized", "authentication")),
    ErrorRule(ErrorKind.SERVICE_UNAVAILABLE, ("connection", "network", "dial", "timeout", "unavailable", "503")),
    ErrorRule(ErrorKind.PARSE_ERROR, ("parse", "json", "unmarshal", "decode")),
]

# Exception types that signal a deadline or cancellation regardless of message
_DEADLINE_TYPES = (asyncio.TimeoutError, TimeoutError, asyncio.CancelledError)


class ErrorClassifier:
    """
    Classifies job failures into ProcessingError values.

    Usage:
        classifier = ErrorClassifier(locale="en")
        error = classifier.classify(exc)
        if not error.retryable:
            ...
    """

    def __init__(self, locale: str = "en"):
        if locale not in ERROR_MESSAGES:
            logger.warning("unknown_error_locale", locale=locale, fallback="en")
            locale = "en"
        self.locale = locale

    def kind_of(self, error: BaseException) -> ErrorKind:
        """Return the error kind without building a ProcessingError."""
        if isinstance(error, ClassifierServiceError) and error.kind is not None:
            return error.kind

        if isinstance(error, _DEADLINE_TYPES):
            return ErrorKind.TIMEOUT

        text = str(error).lower()
        for rule in ERROR_RULES:
            if rule.matches(text):
                return rule.kind

        return ErrorKind.UNKNOWN_ERROR

    def is_rate_limited(self, error: BaseException) -> bool:
        return self.kind_of(error) == ErrorKind.RATE_LIMITED

    def message_for(self, kind: ErrorKind) -> str:
        return ERROR_MESSAGES[self.locale][kind]

    def build(self, kind: ErrorKind, saved_count: Optional[int] = None) -> ProcessingError:
        """
        Build the user-facing error for a kind.

        Args:
            kind: Error kind
            saved_count: Suggestions already persisted by this job (appended to the message if > 0)
        """
        message = self.message_for(kind)
        if saved_count:
            note = SAVED_SUGGESTIONS_NOTES[self.locale].format(count=saved_count)
            message = f"{message} {note}"

        return ProcessingError(
            code=kind,
            message=message,
            retryable=RETRYABLE[kind],
        )

    def classify(self, error: BaseException, saved_count: Optional[int] = None) -> ProcessingError:
        """Classify an arbitrary failure. Never raises."""
        try:
            kind = self.kind_of(error)
        except Exception:
            # str(error) itself can blow up on exotic exceptions
            logger.warning("error_classification_failed", error_type=type(error).__name__, exc_info=True)
            kind = ErrorKind.UNKNOWN_ERROR

        return self.build(kind, saved_count=saved_count)
