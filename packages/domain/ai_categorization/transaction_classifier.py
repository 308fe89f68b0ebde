"""
Transaction Classifier - Claude-backed batch categorization

One call per batch: the prompt lists the user's existing categories and the
batch's transactions, and Claude answers with a JSON array of suggestions
that group similar transactions under a keyword rule.

Failure surface:
- Missing API key          -> ClassifierServiceError(kind=AI_AUTH_ERROR)
- Anthropic SDK errors     -> ClassifierServiceError with a structured kind
- Undecodable response     -> ClassifierResponseError (AI_PARSE_ERROR)

Rate-limit errors carry the server's retry-after as "retry in Ns" so the
retry policy can honour it.
"""
import json
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

import anthropic
import structlog

from packages.domain.ai_categorization.exceptions import (
    ClassifierResponseError,
    ClassifierServiceError,
)
from packages.domain.ai_categorization.schemas import (
    CategoryForClassification,
    ClassificationResult,
    ErrorKind,
    MatchType,
    SuggestedNewCategory,
    TransactionForClassification,
)

logger = structlog.get_logger()

ICON_GROUPS = {
    "Finance": ["wallet", "credit-card", "bank", "receipt", "coins", "piggy-bank", "chart-line", "dollar-sign"],
    "Food": ["utensils", "coffee", "pizza", "apple", "wine"],
    "Transport": ["car", "bus", "plane", "train", "bike", "gas-pump"],
    "Home": ["home", "bed", "sofa", "lamp", "wrench"],
    "Entertainment": ["music", "film", "gamepad", "tv", "ticket"],
    "Health": ["heart", "medical", "pill", "dumbbell"],
    "Education": ["book", "graduation-cap", "pencil"],
    "Shopping": ["shopping-bag", "shopping-cart", "tag", "gift", "percent"],
    "Utilities": ["bolt", "wifi", "phone", "droplet", "flame"],
    "Other": ["briefcase", "globe", "star"],
}

ALLOWED_ICONS = frozenset(icon for icons in ICON_GROUPS.values() for icon in icons)
DEFAULT_ICON = "tag"
DEFAULT_COLOR = "#6366F1"

_MATCH_TYPES = {m.value: m for m in MatchType}


class AnthropicTransactionClassifier:
    """
    Classifies transaction batches with the Anthropic Messages API.

    Usage:
        classifier = AnthropicTransactionClassifier(api_key=settings.anthropic_api_key)
        results = await classifier.classify(user_id, batch, categories)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-5",
        max_tokens: int = 8192,
        temperature: float = 0.3,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

        if client is not None:
            self.client = client
        elif api_key:
            self.client = anthropic.AsyncAnthropic(api_key=api_key)
        else:
            self.client = None
            logger.warning("anthropic_api_key_missing",
                           message="ANTHROPIC_API_KEY not set, AI categorization will fail")

    @property
    def is_available(self) -> bool:
        return self.client is not None

    async def classify(
        self,
        user_id: UUID,
        transactions: Sequence[TransactionForClassification],
        categories: Sequence[CategoryForClassification],
    ) -> List[ClassificationResult]:
        if not self.is_available:
            raise ClassifierServiceError("anthropic api key is not configured",
                                         kind=ErrorKind.AUTH_ERROR)

        prompt = build_prompt(transactions, categories)

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[
                    {
                        "role": "user",
                        "content": prompt,
                    }
                ],
            )
        except anthropic.APIError as e:
            raise _service_error(e) from e

        logger.info("ai_classification_complete",
                    user_id=str(user_id),
                    transactions=len(transactions),
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens)

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise ClassifierResponseError("no text content in response")

        return parse_response(text)


def _service_error(error: anthropic.APIError) -> ClassifierServiceError:
    """Translate an SDK exception into a ClassifierServiceError with a known kind."""
    message = str(error)

    if isinstance(error, anthropic.APITimeoutError):
        return ClassifierServiceError(f"request timeout: {message}", kind=ErrorKind.TIMEOUT)
    if isinstance(error, anthropic.APIConnectionError):
        return ClassifierServiceError(f"connection error: {message}", kind=ErrorKind.SERVICE_UNAVAILABLE)
    if isinstance(error, anthropic.RateLimitError):
        retry_after = error.response.headers.get("retry-after")
        if retry_after:
            message = f"{message} (Please retry in {retry_after}s)"
        return ClassifierServiceError(f"rate limit exceeded: {message}", kind=ErrorKind.RATE_LIMITED)
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ClassifierServiceError(message, kind=ErrorKind.AUTH_ERROR)
    if isinstance(error, anthropic.InternalServerError):
        # 5xx, including 529 overloaded
        return ClassifierServiceError(f"service unavailable: {message}", kind=ErrorKind.SERVICE_UNAVAILABLE)

    return ClassifierServiceError(message)


def build_prompt(
    transactions: Sequence[TransactionForClassification],
    categories: Sequence[CategoryForClassification],
) -> str:
    """Render the categorization prompt for one batch."""
    icon_lines = "\n".join(f"{group}: {', '.join(icons)}" for group, icons in ICON_GROUPS.items())

    if categories:
        category_lines = "\n".join(
            f"- ID: {c.id}, Name: {c.name}, Type: {c.type}, Icon: {c.icon}" for c in categories
        )
    else:
        category_lines = "(no existing categories)"

    transaction_lines = "\n".join(
        f'- ID: {t.id}, Description: "{t.description}", Amount: {t.amount}, Date: {t.date}, Type: {t.type}'
        for t in transactions
    )

    return f"""You are an expert in categorizing personal finance transactions. Analyze the uncategorized transactions below and suggest a category for each group of similar transactions.

LANGUAGE:
- Category names and reasoning must be in Brazilian Portuguese
- Keep terms commonly used in English in Brazil: Pet Shop, Delivery, Drive Thru, Shopping, Fast Food, Streaming, Fitness, E-commerce, Marketplace, and app/service names (Uber, iFood, Rappi, Netflix, Spotify)

For each group of transactions:
1. Identify a keyword pattern that matches similar transactions
2. Suggest an existing category, or propose a new one
3. Pick the match type: "exact", "startsWith" or "contains"

RULES:
- Prefer existing categories when they fit
- New categories need a name, an icon from the list below and a hex color
- Keywords must be specific enough to avoid false positives but general enough to catch similar transactions
- Use "contains" for partial matches, "startsWith" for prefixes, "exact" for exact descriptions

AVAILABLE ICONS (use ONLY these exact names):
{icon_lines}

EXISTING CATEGORIES:
{category_lines}

TRANSACTIONS TO CATEGORIZE:
{transaction_lines}

Answer with a JSON array. Each item must be:
{{
  "transaction_id": "uuid of the main transaction",
  "suggested_category_id": "uuid of an existing category or null",
  "suggested_category_new": {{"name": "string", "icon": "icon from the list", "color": "#XXXXXX"}} or null,
  "match_type": "contains" | "startsWith" | "exact",
  "match_keyword": "keyword used for matching",
  "affected_transaction_ids": ["uuids of the other transactions matching the pattern"],
  "confidence": 0.0-1.0,
  "reasoning": "short explanation"
}}

RESPONSE FORMAT: return only the JSON array, no extra text.
"""


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if "```json" in text:
        text = text.split("```json", 1)[1].split("```", 1)[0]
    elif text.startswith("```"):
        text = text.split("```", 2)[1]
    return text.strip()


def _parse_uuid(value: Any) -> Optional[UUID]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


def _parse_new_category(raw: Any) -> Optional[SuggestedNewCategory]:
    if not isinstance(raw, dict) or not raw.get("name"):
        return None
    icon = raw.get("icon")
    color = raw.get("color")
    return SuggestedNewCategory(
        name=str(raw["name"]),
        icon=icon if isinstance(icon, str) and icon in ALLOWED_ICONS else DEFAULT_ICON,
        color=color if isinstance(color, str) and color.startswith("#") else DEFAULT_COLOR,
    )


def _parse_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return min(max(value, 0.0), 1.0)


def _parse_match_type(raw: Any) -> MatchType:
    if not isinstance(raw, str):
        return MatchType.CONTAINS
    return _MATCH_TYPES.get(raw, MatchType.CONTAINS)


def _parse_item(item: Dict[str, Any]) -> Optional[ClassificationResult]:
    transaction_id = _parse_uuid(item.get("transaction_id"))
    if transaction_id is None:
        return None

    # An existing category wins over a proposed new one
    category_id = _parse_uuid(item.get("suggested_category_id"))
    new_category = None if category_id else _parse_new_category(item.get("suggested_category_new"))

    raw_affected = item.get("affected_transaction_ids")
    affected = []
    for raw_id in raw_affected if isinstance(raw_affected, list) else []:
        parsed = _parse_uuid(raw_id)
        if parsed is not None:
            affected.append(parsed)

    return ClassificationResult(
        transaction_id=transaction_id,
        suggested_category_id=category_id,
        suggested_category_new=new_category,
        match_type=_parse_match_type(item.get("match_type")),
        match_keyword=str(item.get("match_keyword") or ""),
        affected_transaction_ids=affected,
        confidence=_parse_confidence(item.get("confidence")),
        reasoning=str(item.get("reasoning") or ""),
    )


def parse_response(text: str) -> List[ClassificationResult]:
    """
    Decode Claude's JSON array into classification results.

    Items with an invalid transaction id are skipped, invalid affected ids are
    dropped, unknown match types fall back to "contains", and fields of the
    wrong JSON type get the same defaults as missing ones.

    Raises:
        ClassifierResponseError: The text is not a JSON array
    """
    content = _strip_code_fence(text)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ClassifierResponseError(
            f"failed to parse JSON response: {e}, content: {content[:500]}"
        ) from e

    if not isinstance(data, list):
        raise ClassifierResponseError(
            f"failed to parse JSON response: expected an array, got {type(data).__name__}"
        )

    results = []
    skipped = 0
    for item in data:
        try:
            result = _parse_item(item) if isinstance(item, dict) else None
        except (TypeError, ValueError) as e:
            logger.warning("ai_classification_item_invalid", error=str(e))
            result = None
        if result is None:
            skipped += 1
            continue
        results.append(result)

    if skipped:
        logger.warning("ai_classification_items_skipped", skipped=skipped, kept=len(results))

    return results
