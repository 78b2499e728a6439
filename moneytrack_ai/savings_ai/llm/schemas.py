from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Intensity(str, Enum):
    JUST_STARTING = "Just starting out"
    IDEAL = "Ideal target"
    MUST_ACHIEVE = "Must achieve"


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    goal: str = Field(..., min_length=1)
    target_monthly_savings: Optional[float] = Field(None, gt=0)
    intensity: Intensity
    notes: Optional[str] = None
    duration_months: Optional[int] = Field(None, ge=1, le=600)
    requester_id: str


class ToolCall(BaseModel):
    id: str
    name: str
    arguments_text: str = ""

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_text or "{}"},
        }


class Message(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_wire(self) -> dict:
        out: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            out["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id:
            out["tool_call_id"] = self.tool_call_id
        if self.name:
            out["name"] = self.name
        return out


class ToolResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None


class ProposedGoal(BaseModel):
    name: str = Field(..., min_length=1)
    target: float = Field(..., ge=0)
    priority: Literal["low", "medium", "high"] = "medium"
    duration: Optional[int] = Field(None, ge=1)


class ProposedBudgetLimit(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category: str = Field(..., min_length=1)
    suggested_limit: float = Field(..., ge=0, alias="suggestedLimit")
    reasoning: Optional[str] = None
    current_limit: Optional[float] = Field(None, alias="currentLimit")

    def to_public(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
