"""
API request and response schemas.
What it defines:
- Input payloads
- Response formats
- Validation rules

And, the main purpose:
Ensure structured communication between client and server.
"""


from typing import Optional

from pydantic import BaseModel, Field

from savings_ai.llm.schemas import GenerationRequest, Intensity

class GeneratePlanRequest(BaseModel):
    user_id: str = Field(..., description="Your app user identifier")
    goal: str = Field(..., min_length=1)
    savings_goal: Optional[float] = Field(None, gt=0, description="Target monthly saving (VND)")
    intensity: Intensity
    notes: Optional[str] = None
    duration: Optional[int] = Field(None, ge=1, le=600, description="Plan length in months")

    def to_generation_request(self) -> GenerationRequest:
        return GenerationRequest(
            goal=self.goal,
            target_monthly_savings=self.savings_goal,
            intensity=self.intensity,
            notes=self.notes,
            duration_months=self.duration,
            requester_id=self.user_id,
        )

class GeneratePlanResponse(BaseModel):
    plan_id: str
    status: str
    message: str
    stream_url: str
