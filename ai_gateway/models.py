from typing import List, Optional, Dict, Any, Union, Literal, Annotated
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, Discriminator, TypeAdapter, field_validator
from enum import Enum

from config.logging_config import get_logger

logger = get_logger(__name__)


# ============================================================================
# Subscription Tiers
# ============================================================================

class SubscriptionTier(str, Enum):
    """Subscription level of a billing tenant, ordered by capability."""
    FREE = "free"
    STARTER = "starter"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)

    def includes(self, other: "SubscriptionTier") -> bool:
        """True if this tier admits every capability of `other`."""
        return self.rank >= other.rank


TIER_ORDER = (
    SubscriptionTier.FREE,
    SubscriptionTier.STARTER,
    SubscriptionTier.PREMIUM,
    SubscriptionTier.ENTERPRISE,
)


# ============================================================================
# Provider content blocks
# ============================================================================

class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Union[str, List[Dict[str, Any]]] = ""
    is_error: bool = False


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock],
    Discriminator("type")
]


class NormalizedMessage(BaseModel):
    """Provider-neutral conversation turn."""
    role: Literal["user", "assistant"]
    content: Union[str, List[ContentBlock]]

    def to_provider(self) -> Dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {
            "role": self.role,
            "content": [block.model_dump() for block in self.content],
        }


class ToolCall(BaseModel):
    """A tool invocation requested by the model, executed by the caller."""
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class TokenUsage(BaseModel):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


# ============================================================================
# Exchange requests (one variant per action)
# ============================================================================

class CallerMessage(BaseModel):
    """Message as sent by the caller; system entries are dropped later."""
    model_config = ConfigDict(extra="ignore")

    role: Literal["system", "user", "assistant"]
    content: Union[str, List[Dict[str, Any]]]


class ToolResultInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tool_use_id: str
    content: Any = ""
    is_error: bool = False


class ExchangeBase(BaseModel):
    """Fields shared by every action."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    model: Optional[str] = None
    system: Optional[str] = None
    messages: Optional[List[CallerMessage]] = None
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[Dict[str, Any]] = None
    tool_results: Optional[List[ToolResultInput]] = None
    assistant_raw_content: Optional[Union[str, List[Dict[str, Any]]]] = None
    stream: bool = False
    max_tokens: Optional[int] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("maxTokens", "max_tokens"),
    )
    temperature: Optional[float] = Field(default=None, ge=0, le=1)
    organization_id: Optional[str] = None

    @property
    def feature(self) -> str:
        """Billing feature this request counts against."""
        return self.action

    @property
    def wants_stream(self) -> bool:
        return self.stream

    @property
    def is_tool_continuation(self) -> bool:
        return bool(self.tool_results) and self.assistant_raw_content is not None


# Action fields are read leniently: a value of the wrong shape falls back to
# the action default instead of failing the request

def loose_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return None


def loose_grade(value: Any) -> Optional[Union[int, str]]:
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        return int(value) if value.is_integer() else str(value)
    if isinstance(value, (int, str)):
        return value
    return None


def loose_positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = int(float(value))
    except (ValueError, OverflowError):
        return None
    return number if number > 0 else None


def loose_text_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [text for text in (loose_text(item) for item in value) if text]


class LessonGenerationRequest(ExchangeBase):
    action: Literal["lesson_generation"]
    topic: Optional[str] = None
    subject: Optional[str] = None
    grade_level: Optional[Union[int, str]] = Field(
        default=None, validation_alias=AliasChoices("gradeLevel", "grade_level")
    )
    duration: Optional[int] = None
    objectives: Optional[List[str]] = Field(
        default=None, validation_alias=AliasChoices("objectives", "learningObjectives")
    )

    lenient_text = field_validator("topic", "subject", mode="before")(loose_text)
    lenient_grade = field_validator("grade_level", mode="before")(loose_grade)
    lenient_duration = field_validator("duration", mode="before")(loose_positive_int)
    lenient_objectives = field_validator("objectives", mode="before")(loose_text_list)


class HomeworkHelpRequest(ExchangeBase):
    action: Literal["homework_help"]
    question: Optional[str] = None
    context: Optional[str] = None
    grade_level: Optional[Union[int, str]] = Field(
        default=None, validation_alias=AliasChoices("gradeLevel", "grade_level", "grade")
    )

    lenient_text = field_validator("question", "context", mode="before")(loose_text)
    lenient_grade = field_validator("grade_level", mode="before")(loose_grade)


class GradingAssistanceRequest(ExchangeBase):
    action: Literal["grading_assistance", "grading_assistance_stream"]
    submission: Optional[str] = None
    rubric: Optional[List[str]] = None
    grade_level: Optional[Union[int, str]] = Field(
        default=None, validation_alias=AliasChoices("gradeLevel", "grade_level")
    )

    lenient_text = field_validator("submission", mode="before")(loose_text)
    lenient_grade = field_validator("grade_level", mode="before")(loose_grade)
    lenient_rubric = field_validator("rubric", mode="before")(loose_text_list)

    @property
    def feature(self) -> str:
        return "grading_assistance"

    @property
    def wants_stream(self) -> bool:
        return self.stream or self.action == "grading_assistance_stream"


class GeneralAssistanceRequest(ExchangeBase):
    action: Literal["general_assistance", "chat"]
    content: Optional[str] = None
    question: Optional[str] = None

    lenient_text = field_validator("content", "question", mode="before")(loose_text)

    @property
    def feature(self) -> str:
        return "general_assistance"


class HealthRequest(ExchangeBase):
    action: Literal["health"]


ExchangeRequest = Annotated[
    Union[
        LessonGenerationRequest,
        HomeworkHelpRequest,
        GradingAssistanceRequest,
        GeneralAssistanceRequest,
        HealthRequest,
    ],
    Discriminator("action"),
]

exchange_request_adapter: TypeAdapter = TypeAdapter(ExchangeRequest)

# Validation error types pydantic raises when the discriminator is missing or unknown
UNKNOWN_ACTION_ERROR_TYPES = {"union_tag_invalid", "union_tag_not_found"}


# ============================================================================
# Responses
# ============================================================================

class ExchangeResponse(BaseModel):
    """Buffered response envelope returned to the caller."""
    content: str
    usage: Optional[TokenUsage] = None
    cost: Optional[float] = None
    tool_calls: Optional[List[ToolCall]] = None
    raw_content: Optional[List[Dict[str, Any]]] = None
    stop_reason: Optional[str] = None
    provider_error: Optional[Dict[str, Any]] = None

    def to_body(self) -> Dict[str, Any]:
        """Serialize; `usage` and `cost` are always present, the rest only when set."""
        body = self.model_dump(
            exclude={"usage", "cost"},
            exclude_none=True,
        )
        body["usage"] = self.usage.model_dump() if self.usage else None
        body["cost"] = self.cost
        return body


class CallerIdentity(BaseModel):
    """Authenticated caller and the billing tenant they belong to."""
    user_id: str
    tenant_id: Optional[str] = None
