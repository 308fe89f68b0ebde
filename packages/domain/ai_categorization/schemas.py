"""
Data schemas for AI categorization jobs
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MatchType(str, Enum):
    """How a suggested keyword matches transaction descriptions"""
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    EXACT = "exact"


class SuggestionStatus(str, Enum):
    """Suggestion review states (only PENDING is produced here)"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class ErrorKind(str, Enum):
    """Closed taxonomy of job failures surfaced to the user"""
    SERVICE_UNAVAILABLE = "AI_SERVICE_UNAVAILABLE"
    RATE_LIMITED = "AI_RATE_LIMITED"
    AUTH_ERROR = "AI_AUTH_ERROR"
    TIMEOUT = "AI_TIMEOUT"
    PARSE_ERROR = "AI_PARSE_ERROR"
    UNKNOWN_ERROR = "AI_UNKNOWN_ERROR"


class OwnerType(str, Enum):
    """Category ownership"""
    USER = "user"
    GROUP = "group"


# ---- Collaborator records --------------------------------------------------------------

class TransactionRecord(BaseModel):
    """Persisted transaction as returned by the transaction source"""
    id: UUID
    description: str
    amount: Decimal
    date: date
    type: str = Field(..., description="expense or income")
    category_id: Optional[UUID] = None


class CategoryRecord(BaseModel):
    """Persisted category as returned by the category source"""
    id: UUID
    name: str
    type: str
    icon: str = "tag"
    color: str = "#6366F1"


# ---- Classifier payloads ---------------------------------------------------------------

class TransactionForClassification(BaseModel):
    """
    Read-only projection of a transaction sent to the remote classifier.

    Built once per job run and never mutated.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID
    description: str
    amount: str
    date: str
    type: str

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "TransactionForClassification":
        return cls(
            id=record.id,
            description=record.description,
            amount=str(record.amount),
            date=record.date.isoformat(),
            type=record.type,
        )


class CategoryForClassification(BaseModel):
    """Existing category offered to the classifier as a target"""
    model_config = ConfigDict(frozen=True)

    id: UUID
    name: str
    type: str
    icon: str
    color: str

    @classmethod
    def from_record(cls, record: CategoryRecord) -> "CategoryForClassification":
        return cls(
            id=record.id,
            name=record.name,
            type=record.type,
            icon=record.icon,
            color=record.color,
        )


class SuggestedNewCategory(BaseModel):
    """Category the classifier proposes creating"""
    model_config = ConfigDict(frozen=True)

    name: str
    icon: str
    color: str


class ClassificationResult(BaseModel):
    """One item of the remote classifier's response"""
    transaction_id: UUID
    suggested_category_id: Optional[UUID] = None
    suggested_category_new: Optional[SuggestedNewCategory] = None
    match_type: MatchType = MatchType.CONTAINS
    match_keyword: str
    affected_transaction_ids: List[UUID] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""


class ClassificationSuggestion(BaseModel):
    """
    Pending suggestion handed to the suggestion sink.

    Exactly one of suggested_category_id / suggested_category_new is set.
    """
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    transaction_id: UUID
    suggested_category_id: Optional[UUID] = None
    suggested_category_new: Optional[SuggestedNewCategory] = None
    match_type: MatchType
    match_keyword: str
    affected_transaction_ids: List[UUID] = Field(default_factory=list)
    status: SuggestionStatus = SuggestionStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_result(cls, user_id: UUID, result: ClassificationResult) -> Optional["ClassificationSuggestion"]:
        """Build a suggestion, or None when the result names no category at all."""
        if result.suggested_category_id is not None:
            return cls(
                user_id=user_id,
                transaction_id=result.transaction_id,
                suggested_category_id=result.suggested_category_id,
                match_type=result.match_type,
                match_keyword=result.match_keyword,
                affected_transaction_ids=list(result.affected_transaction_ids),
            )
        if result.suggested_category_new is not None:
            return cls(
                user_id=user_id,
                transaction_id=result.transaction_id,
                suggested_category_new=result.suggested_category_new,
                match_type=result.match_type,
                match_keyword=result.match_keyword,
                affected_transaction_ids=list(result.affected_transaction_ids),
            )
        return None


# ---- Job state -------------------------------------------------------------------------

class ProcessingError(BaseModel):
    """Terminal job error shown to the user via the status query"""
    model_config = ConfigDict(frozen=True)

    code: ErrorKind
    message: str
    retryable: bool
    timestamp: datetime = Field(default_factory=utc_now)


class ProcessingProgress(BaseModel):
    """Batch progress of a running job"""
    processed_count: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)
    current_batch: int = Field(default=0, ge=0)
    total_batches: int = Field(default=0, ge=0)


class JobState(BaseModel):
    """Per-user job state held by the job state store"""
    processing: bool = False
    job_id: str = ""
    progress: Optional[ProcessingProgress] = None
    last_error: Optional[ProcessingError] = None


class CategorizationJob(BaseModel):
    """Unit of background work; JSON-serializable so it can cross process boundaries"""
    user_id: UUID
    job_id: str
    transactions: List[TransactionForClassification]


# ---- Caller-facing results -------------------------------------------------------------

class StartCategorizationResult(BaseModel):
    """Returned synchronously by the orchestrator's start()"""
    job_id: str
    uncategorized_count: int
    message: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "job_id": "0b5f7c1e-6f0e-4d0c-9d3a-7f8f2f0c9b11",
                "uncategorized_count": 45,
                "message": "AI categorization started for 45 uncategorized transactions",
            }
        }
    )


class CategorizationStatus(BaseModel):
    """Status surface consumed by the API layer"""
    uncategorized_count: int
    is_processing: bool
    pending_suggestions_count: int
    job_id: Optional[str] = None
    has_error: bool = False
    error: Optional[ProcessingError] = None
    progress: Optional[ProcessingProgress] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "uncategorized_count": 45,
                "is_processing": True,
                "pending_suggestions_count": 12,
                "job_id": "0b5f7c1e-6f0e-4d0c-9d3a-7f8f2f0c9b11",
                "has_error": False,
                "error": None,
                "progress": {
                    "processed_count": 40,
                    "total_count": 45,
                    "current_batch": 2,
                    "total_batches": 2,
                },
            }
        }
    )
