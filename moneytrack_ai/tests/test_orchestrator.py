import json

import pytest

from conftest import ADVICE_TEXT as ADVICE, TAG, ScriptedChatClient, content_turn, tool_turn
from savings_ai.agent.orchestrator import DONE_MESSAGE
from savings_ai.agent.sessions import GenerationSession, SessionStatus
from savings_ai.llm.stream import ContentDelta, TransportError


def _session(plan_id: str = "plan_1") -> GenerationSession:
    return GenerationSession(plan_id)


@pytest.mark.asyncio
async def test_single_turn_without_tools_completes(make_orchestrator, make_request, plan_store):
    client = ScriptedChatClient([content_turn(ADVICE)])
    orch = make_orchestrator(client)
    session = _session()

    outcome = await orch.run(session, make_request())

    assert outcome.status == SessionStatus.COMPLETED
    assert outcome.iterations == 1
    assert outcome.cap_reached is False
    assert outcome.extraction.strategy == "strict"
    assert session.status == SessionStatus.COMPLETED
    assert session.proposed_budget_limits == [
        {"category": "Food & Drinks", "suggestedLimit": 500000.0, "reasoning": "Cut eating out"}
    ]
    assert session.suggested_savings == 1000000.0
    assert TAG not in session.markdown_advice
    assert session.markdown_advice.startswith("## Your plan")
    assert session.latest_progress == DONE_MESSAGE
    assert plan_store.status("plan_1") == "completed"
    assert plan_store.plans["plan_1"]["iterations"] == 1


@pytest.mark.asyncio
async def test_emergency_fund_scenario(make_orchestrator, make_request, plan_store, finance_store):
    client = ScriptedChatClient([tool_turn("get_financial_summary"), content_turn(ADVICE)])
    orch = make_orchestrator(client)
    session = _session()
    request = make_request(target_monthly_savings=1_000_000)

    outcome = await orch.run(session, request)

    assert outcome.status == SessionStatus.COMPLETED
    assert outcome.iterations == 2
    assert finance_store.calls == [("get_financial_summary", "user-1")]

    # second request carries the assistant tool call and the tool result
    second = client.requests[1]
    assert second[-2]["role"] == "assistant"
    assert second[-2]["tool_calls"][0]["function"]["name"] == "get_financial_summary"
    assert second[-1]["role"] == "tool"
    assert second[-1]["tool_call_id"] == "call_1"
    assert json.loads(second[-1]["content"])["data"]["totalIncome"] == 15000000

    plan = plan_store.plans["plan_1"]
    assert plan["streaming_status"] == "completed"
    assert plan["suggested_savings"] == 1000000.0
    assert plan["proposed_goal"] == {
        "name": "Emergency fund",
        "target": 12_000_000,
        "priority": "medium",
        "duration": 12,
    }
    assert plan["proposed_budget_limits"][0]["category"] == "Food & Drinks"
    assert plan["proposed_budget_limits"][0]["suggestedLimit"] == 500000.0
    assert "Tool get_financial_summary finished" in session.progress_log


@pytest.mark.asyncio
async def test_always_calling_tools_stops_at_cap_as_completed(make_orchestrator, make_request, plan_store):
    client = ScriptedChatClient([tool_turn("read_goals")])
    orch = make_orchestrator(client, max_iterations=3)
    session = _session()

    outcome = await orch.run(session, make_request())

    assert outcome.status == SessionStatus.COMPLETED
    assert outcome.cap_reached is True
    assert outcome.iterations == 3
    assert len(client.requests) == 3
    assert session.status == SessionStatus.COMPLETED
    assert "Iteration cap reached after 3 steps; parsing partial results..." in session.progress_log
    assert "iteration cap reached" in session.latest_progress
    assert plan_store.status("plan_1") == "completed"
    # nothing streamed, nothing extracted: fallback savings and no proposals
    assert session.proposed_budget_limits is None
    assert session.suggested_savings == 500000.0
    completed = [e for e in plan_store.events if e[1] == "completed"]
    assert completed[0][2]["cap_reached"] is True


@pytest.mark.asyncio
async def test_invalid_tool_arguments_do_not_abort(make_orchestrator, make_request):
    client = ScriptedChatClient(
        [tool_turn("propose_budget_limits", '{"limits": [oops'), content_turn(ADVICE)]
    )
    orch = make_orchestrator(client)
    session = _session()

    outcome = await orch.run(session, make_request())

    assert outcome.status == SessionStatus.COMPLETED
    tool_msg = client.requests[1][-1]
    assert tool_msg["role"] == "tool"
    payload = json.loads(tool_msg["content"])
    assert payload["success"] is False
    assert "Invalid JSON arguments" in payload["error"]
    assert any(line.startswith("Tool propose_budget_limits failed") for line in session.progress_log)
    # proposals still recovered from the final text
    assert session.proposed_budget_limits[0]["category"] == "Food & Drinks"


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_back_to_the_model(make_orchestrator, make_request):
    client = ScriptedChatClient([tool_turn("transfer_money"), content_turn("Done.")])
    orch = make_orchestrator(client)

    outcome = await orch.run(_session(), make_request())

    assert outcome.status == SessionStatus.COMPLETED
    payload = json.loads(client.requests[1][-1]["content"])
    assert payload == {"success": False, "data": None, "error": "Unknown tool: transfer_money"}


@pytest.mark.asyncio
async def test_propose_tools_take_precedence_over_text(make_orchestrator, make_request):
    limits = json.dumps({"limits": [{"category": "Shopping", "suggestedLimit": 300000}]})
    goal = json.dumps({"name": "Trip to Da Nang", "target": 6000000, "priority": "high", "duration": 6})
    client = ScriptedChatClient(
        [
            tool_turn("propose_budget_limits", limits),
            tool_turn("propose_saving_goal", goal, call_id="call_2"),
            content_turn(ADVICE),
        ]
    )
    orch = make_orchestrator(client)
    session = _session()

    outcome = await orch.run(session, make_request())

    assert outcome.extraction is None
    assert session.proposed_budget_limits == [{"category": "Shopping", "suggestedLimit": 300000.0}]
    assert session.proposed_goal == {
        "name": "Trip to Da Nang",
        "target": 6000000.0,
        "priority": "high",
        "duration": 6,
    }


@pytest.mark.asyncio
async def test_transport_drop_fails_the_plan(make_orchestrator, make_request, plan_store):
    client = ScriptedChatClient(
        [
            tool_turn("read_budgets"),
            [ContentDelta("Looking at your budg"), TransportError("Chat service connection failed: ReadError()")],
        ]
    )
    orch = make_orchestrator(client)
    session = _session()

    outcome = await orch.run(session, make_request())

    assert outcome.status == SessionStatus.FAILED
    assert outcome.iterations == 2
    assert session.status == SessionStatus.FAILED
    assert "ReadError" in session.error
    assert session.events[-1].type == "error"
    plan = plan_store.plans["plan_1"]
    assert plan["streaming_status"] == "failed"
    assert plan["generation_progress"].startswith("Error: ")
    assert plan_store.events[-1][1] == "failed"


@pytest.mark.asyncio
async def test_finance_store_failure_becomes_tool_error(make_request, plan_store):
    from conftest import FakeFinanceStore
    from savings_ai.agent.orchestrator import GenerationOrchestrator
    from savings_ai.tools.registry import ToolExecutor

    client = ScriptedChatClient([tool_turn("read_transactions"), content_turn("No data available.")])
    orch = GenerationOrchestrator(
        client, ToolExecutor(FakeFinanceStore(fail=True)), plan_store, tag_factory=lambda: TAG
    )
    session = _session()

    outcome = await orch.run(session, make_request())

    assert outcome.status == SessionStatus.COMPLETED
    payload = json.loads(client.requests[1][-1]["content"])
    assert payload["success"] is False
    assert "finance database unavailable" in payload["error"]


@pytest.mark.asyncio
async def test_system_prompt_carries_tag_and_request(make_orchestrator, make_request):
    client = ScriptedChatClient([content_turn("ok")])
    orch = make_orchestrator(client)

    await orch.run(_session(), make_request(notes="Rent is due on the 5th", duration_months=6))

    system = client.requests[0][0]
    assert system["role"] == "system"
    assert f"<{TAG}>" in system["content"]
    assert "Emergency fund" in system["content"]
    assert "Rent is due on the 5th" in system["content"]
    assert client.requests[0][1]["role"] == "user"
    names = {t["function"]["name"] for t in client.tools_seen[0]}
    assert {"read_transactions", "get_financial_summary", "propose_budget_limits"} <= names


@pytest.mark.asyncio
async def test_session_and_store_converge(make_orchestrator, make_request, plan_store):
    client = ScriptedChatClient([tool_turn("read_goals"), content_turn(ADVICE)])
    orch = make_orchestrator(client)
    session = _session()

    await orch.run(session, make_request())

    plan = plan_store.plans["plan_1"]
    assert plan["streaming_status"] == session.status.value
    assert plan["generation_progress"] == session.latest_progress
    assert plan["proposed_budget_limits"] == session.proposed_budget_limits
    assert plan["suggested_savings"] == session.suggested_savings
    statuses = [u["streaming_status"] for _, u in plan_store.updates if "streaming_status" in u]
    assert statuses == ["streaming", "completed"]


def test_rejects_non_positive_iteration_cap(make_orchestrator):
    with pytest.raises(ValueError):
        make_orchestrator(ScriptedChatClient([content_turn("x")]), max_iterations=0)


@pytest.mark.asyncio
async def test_unparseable_nested_output_still_completes(make_orchestrator, make_request, plan_store):
    text = "Here is a thought.\n" + "[" * 3000 + "]" * 3000
    client = ScriptedChatClient([content_turn(text, size=500)])
    orch = make_orchestrator(client)
    session = _session()

    outcome = await orch.run(session, make_request())

    assert outcome.status == SessionStatus.COMPLETED
    assert outcome.extraction.found is False
    assert session.proposed_budget_limits is None
    assert plan_store.status("plan_1") == "completed"
