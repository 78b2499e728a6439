from typing import Any, Optional

from savings_ai.llm.schemas import ProposedBudgetLimit, ProposedGoal
from savings_ai.tools.registry import ToolArgumentError, ToolContext, register


GOAL_PROPOSAL = "goal_proposal"
BUDGET_PROPOSALS = "budget_proposals"


@register(
    "propose_saving_goal",
    "Propose a new saving goal for the user. It is shown to the user for acceptance, nothing is saved.",
    {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Name of the saving goal"},
            "target": {"type": "number", "description": "Target amount for the saving goal"},
            "priority": {
                "type": "string",
                "enum": ["low", "medium", "high"],
                "description": "Priority level of the goal",
            },
            "duration": {"type": "integer", "description": "Months to reach the target"},
        },
        "required": ["name", "target", "priority"],
    },
)
async def propose_saving_goal(
    ctx: ToolContext,
    name: str,
    target: float,
    priority: str = "medium",
    duration: Optional[int] = None,
) -> dict:
    goal = ProposedGoal(name=name, target=target, priority=priority, duration=duration)
    return {"type": GOAL_PROPOSAL, "proposal": goal.model_dump(exclude_none=True)}


@register(
    "propose_budget_limits",
    "Propose new monthly budget limits for one or more categories. They are shown to the user for review.",
    {
        "type": "object",
        "properties": {
            "limits": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "category": {"type": "string", "description": "Budget category name"},
                        "suggestedLimit": {"type": "number", "description": "Suggested monthly limit"},
                        "reasoning": {"type": "string", "description": "Brief explanation for this limit"},
                    },
                    "required": ["category", "suggestedLimit"],
                },
                "description": "Array of budget limit proposals",
            }
        },
        "required": ["limits"],
    },
)
async def propose_budget_limits(ctx: ToolContext, limits: Any) -> dict:
    if not isinstance(limits, list) or not limits:
        raise ToolArgumentError("limits must be a non-empty array")
    proposals = [ProposedBudgetLimit.model_validate(item) for item in limits]
    return {"type": BUDGET_PROPOSALS, "proposals": [p.to_public() for p in proposals]}
