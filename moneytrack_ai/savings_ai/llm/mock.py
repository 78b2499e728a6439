"""
Offline chat provider used when LLM_PROVIDER=mock or no API key is set.

It follows the same stream() contract as ChatStreamClient: the first turn asks
for get_financial_summary, the second turn streams markdown advice built from
that tool result and closes with the tagged budget proposal.
"""


import asyncio
import json
import re
from typing import AsyncIterator

from savings_ai.llm.stream import ContentDelta, FinishSignal, StreamEvent, ToolCallDelta

_TAG = re.compile(r"<(BudgetLim_[0-9a-zA-Z]+)>")
_REDUCTION = {"Just starting out": 0.12, "Ideal target": 0.2, "Must achieve": 0.3}


def _chunks(text: str, size: int = 48):
    for i in range(0, len(text), size):
        yield text[i : i + size]


class MockChatClient:
    def __init__(self, chunk_size: int = 48):
        self.chunk_size = chunk_size

    async def stream(self, messages: list[dict], tools: list[dict]) -> AsyncIterator[StreamEvent]:
        system = next((m["content"] for m in messages if m["role"] == "system"), "")
        tool_msgs = [m for m in messages if m["role"] == "tool"]
        tool_names = {t["function"]["name"] for t in tools}

        if not tool_msgs and "get_financial_summary" in tool_names:
            yield ToolCallDelta(index=0, id="call_mock_0", name="get_financial_summary", arguments="")
            yield ToolCallDelta(index=0, arguments="{}")
            yield FinishSignal("tool_calls")
            return

        summary = {}
        try:
            result = json.loads(tool_msgs[-1]["content"]) if tool_msgs else {}
            summary = result.get("data") or {}
        except (ValueError, AttributeError):
            summary = {}

        for piece in _chunks(self._advice(system, summary), self.chunk_size):
            await asyncio.sleep(0)
            yield ContentDelta(piece)
        yield FinishSignal("stop")

    def _advice(self, system: str, summary: dict) -> str:
        m = _TAG.search(system)
        tag = m.group(1) if m else "BudgetLim_mock"
        reduction = next((v for k, v in _REDUCTION.items() if f"Intensity: {k}" in system), 0.2)

        income = float(summary.get("totalIncome") or 0)
        expenses = float(summary.get("totalExpenses") or 0)
        spending = summary.get("categorySpending") or {}
        top = sorted(spending.items(), key=lambda kv: abs(kv[1]), reverse=True)[:3]

        monthly = round(max(income - expenses, 0) * 0.2 + expenses * reduction, -3) or 500000

        lines = [
            "## Your saving plan",
            "",
            f"- Income recorded: {income:,.0f} VND",
            f"- Expenses recorded: {expenses:,.0f} VND",
            f"- Recommended saving: {monthly:,.0f} VND per month",
            "",
            "## Where to cut",
        ]
        proposals = []
        for category, amount in top:
            amount = abs(float(amount))
            limit = round(amount * (1 - reduction), -3)
            lines.append(f"- **{category}**: spend at most {limit:,.0f} VND (now {amount:,.0f} VND)")
            proposals.append(
                {
                    "category": category,
                    "suggestedLimit": limit,
                    "reasoning": f"Current spending is {amount:,.0f} VND; a {reduction:.0%} reduction fits your intensity.",
                }
            )
        if not proposals:
            lines.append("- Record a few weeks of expenses so limits can be tailored.")

        lines += ["", f"<{tag}>", json.dumps(proposals, ensure_ascii=False, indent=2), f"</{tag}>"]
        return "\n".join(lines)
