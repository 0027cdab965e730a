from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes with camelCase keys, accepts both camelCase and snake_case"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


ReasoningLevel = Literal["low", "medium", "high"]

# Number of SQL candidates generated per reasoning level when voting is on
REASONING_TO_CANDIDATES: Dict[str, int] = {
    "low": 1,
    "medium": 2,
    "high": 3,
}


class ConversationMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: str


class ProcessOptions(CamelModel):
    """Per-job options, resolved once at submission and never mutated afterwards"""
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore"
    )

    use_consistency: bool = False
    debug: bool = False
    model: Optional[str] = None
    reasoning_level: ReasoningLevel = "high"

    @property
    def candidate_count(self) -> int:
        if not self.use_consistency:
            return 1
        return REASONING_TO_CANDIDATES[self.reasoning_level]


class ChatRequest(CamelModel):
    messages: List[ConversationMessage] = Field(..., min_length=1)
    options: Optional[ProcessOptions] = None

    @property
    def last_user_message(self) -> Optional[ConversationMessage]:
        for message in reversed(self.messages):
            if message.role == "user" and message.content.strip():
                return message
        return None


# This is what we return immediately (The Receipt)
class ChatJobResponse(CamelModel):
    process_id: str


class ChartType(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"


class ChartConfig(CamelModel):
    x_key: Optional[str] = None
    y_key: Optional[str] = None
    columns: Optional[List[str]] = None


class ChartData(CamelModel):
    type: ChartType
    data: List[Dict[str, Any]]
    config: Optional[ChartConfig] = None


class DebugInfo(CamelModel):
    linked_schema: Any
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    candidate_count: Optional[int] = None
    successful_executions: Optional[int] = None
    refined_candidates: Optional[int] = None


# This is the structure of the FINAL result stored in the process store
class ProcessedMessage(CamelModel):
    content: str
    charts: List[ChartData] = Field(default_factory=list)
    sql: Optional[str] = None
    debug: Optional[DebugInfo] = None
