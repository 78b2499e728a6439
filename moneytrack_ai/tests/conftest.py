"""Shared fakes for the generation engine tests.

The chat service, finance data and plan store are replaced by in-memory
stand-ins so the loop can be driven turn by turn.
"""

import copy
from typing import Any, Optional

import pytest

import savings_ai.tools.finance  # noqa: F401  registers read tools
import savings_ai.tools.proposals  # noqa: F401  registers propose tools
from savings_ai.agent.orchestrator import GenerationOrchestrator
from savings_ai.agent.sessions import SessionRegistry
from savings_ai.llm.schemas import GenerationRequest, Intensity
from savings_ai.llm.stream import ContentDelta, FinishSignal, ToolCallDelta
from savings_ai.tools.registry import ToolExecutor

TAG = "BudgetLim_test01"

ADVICE_TEXT = (
    "## Your plan\n"
    "Your income covers your expenses comfortably.\n"
    "Recommended saving: 1,000,000 VND per month.\n\n"
    f"<{TAG}>"
    '[{"category": "Food & Drinks", "suggestedLimit": 500000, "reasoning": "Cut eating out"}]'
    f"</{TAG}>"
)


class FakeFinanceStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    def _touch(self, name: str, user_id: str):
        self.calls.append((name, user_id))
        if self.fail:
            raise ConnectionError("finance database unavailable")

    async def read_transactions(self, user_id: str) -> list:
        self._touch("read_transactions", user_id)
        return [
            {"id": "t1", "title": "Salary", "category": "Income", "amount": 15000000, "type": "income"},
            {"id": "t2", "title": "Highlands Coffee", "category": "Food & Drinks", "amount": 52000, "type": "expense"},
        ]

    async def read_goals(self, user_id: str) -> list:
        self._touch("read_goals", user_id)
        return [{"id": "g1", "name": "Buy a laptop", "target": 12000000, "current": 4200000}]

    async def read_budgets(self, user_id: str) -> list:
        self._touch("read_budgets", user_id)
        return [{"id": "b1", "category": "Food & Drinks", "limit": 2000000, "spent": 850000}]

    async def get_financial_summary(self, user_id: str) -> dict:
        self._touch("get_financial_summary", user_id)
        return {
            "balance": 9000000,
            "totalIncome": 15000000,
            "totalExpenses": 6000000,
            "categorySpending": {"Food & Drinks": 2500000, "Transport": 900000},
            "savingRate": 60.0,
        }


class FakePlanStore:
    def __init__(self):
        self.plans: dict[str, dict] = {}
        self.updates: list[tuple[str, dict]] = []
        self.events: list[tuple[str, str, dict]] = []

    async def create(self, plan_id: str, request: GenerationRequest, **fields) -> dict:
        self.plans[plan_id] = {"id": plan_id, "user_id": request.requester_id, **fields}
        return copy.deepcopy(self.plans[plan_id])

    async def update(self, plan_id: str, **fields) -> Optional[dict]:
        self.updates.append((plan_id, fields))
        self.plans.setdefault(plan_id, {"id": plan_id}).update(copy.deepcopy(fields))
        return copy.deepcopy(self.plans[plan_id])

    async def get_by_id(self, plan_id: str) -> Optional[dict]:
        plan = self.plans.get(plan_id)
        return copy.deepcopy(plan) if plan else None

    async def list_for_user(self, user_id: str) -> list[dict]:
        return [copy.deepcopy(p) for p in reversed(self.plans.values()) if p.get("user_id") == user_id]

    async def latest_for_user(self, user_id: str) -> Optional[dict]:
        plans = await self.list_for_user(user_id)
        return plans[0] if plans else None

    async def delete(self, plan_id: str) -> None:
        self.plans.pop(plan_id, None)
        self.events = [e for e in self.events if e[0] != plan_id]

    async def record_event(self, plan_id: str, event_type: str, payload: dict) -> None:
        self.events.append((plan_id, event_type, payload))

    async def list_events(self, plan_id: str) -> list[dict]:
        return [{"type": t, "payload": p} for pid, t, p in self.events if pid == plan_id]

    def status(self, plan_id: str) -> Optional[str]:
        return self.plans.get(plan_id, {}).get("streaming_status")


class ScriptedChatClient:
    """Plays back one scripted turn per stream() call.

    A turn is a list of stream events; an Exception instance inside the list
    is raised at that point, simulating a dropped connection. When the
    script runs out, the last turn repeats.
    """

    def __init__(self, turns: list[list[Any]]):
        self.turns = turns
        self.requests: list[list[dict]] = []
        self.tools_seen: list[list[dict]] = []

    async def stream(self, messages: list[dict], tools: list[dict]):
        self.requests.append(copy.deepcopy(messages))
        self.tools_seen.append(tools)
        turn = self.turns[min(len(self.requests) - 1, len(self.turns) - 1)]
        for item in turn:
            if isinstance(item, Exception):
                raise item
            yield item


def content_turn(text: str, size: int = 17) -> list:
    return [ContentDelta(text[i : i + size]) for i in range(0, len(text), size)] + [FinishSignal("stop")]


def tool_turn(name: str, arguments: str = "{}", call_id: str = "call_1", index: int = 0) -> list:
    half = len(arguments) // 2
    return [
        ToolCallDelta(index=index, id=call_id, name=name, arguments=arguments[:half]),
        ToolCallDelta(index=index, arguments=arguments[half:]),
        FinishSignal("tool_calls"),
    ]


@pytest.fixture
def finance_store():
    return FakeFinanceStore()


@pytest.fixture
def plan_store():
    return FakePlanStore()


@pytest.fixture
def registry():
    return SessionRegistry(completed_ttl=300, failed_ttl=60)


@pytest.fixture
def make_request():
    def _make(**overrides) -> GenerationRequest:
        fields = {
            "goal": "Emergency fund",
            "intensity": Intensity.IDEAL,
            "requester_id": "user-1",
        }
        fields.update(overrides)
        return GenerationRequest(**fields)

    return _make


@pytest.fixture
def make_orchestrator(finance_store, plan_store):
    def _make(client, **kwargs) -> GenerationOrchestrator:
        kwargs.setdefault("tag_factory", lambda: TAG)
        return GenerationOrchestrator(client, ToolExecutor(finance_store), plan_store, **kwargs)

    return _make
