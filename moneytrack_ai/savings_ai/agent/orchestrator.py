"""
Runs ONE savings-plan generation to a terminal state.
What it does:
- Seeds the transcript (system prompt with a fresh payload tag + user turn)
- Streams each assistant turn, collecting content and tool-call fragments
- Executes requested tools and feeds their results back, up to a cap
- Recovers proposals from the final text when no propose tool was used
- Mirrors every step into the live session and the persisted plan

And, the main purpose:
Turn a free-text, tool-calling model conversation into a reliable,
pollable result. Only TransportError ends a run early (-> failed);
tool errors and extraction misses are absorbed and logged.
"""


from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import ValidationError

from savings_ai.agent.sessions import GenerationSession, SessionStatus
from savings_ai.core.ids import new_payload_tag
from savings_ai.core.logging import get_logger
from savings_ai.llm.accumulator import ToolCallAccumulator
from savings_ai.llm.extraction import (
    ExtractionResult,
    extract,
    parse_suggested_savings,
    strip_tagged_section,
)
from savings_ai.llm.prompts import USER_KICKOFF, build_system_prompt
from savings_ai.llm.schemas import (
    GenerationRequest,
    Intensity,
    Message,
    ProposedBudgetLimit,
    ToolCall,
    ToolResult,
)
from savings_ai.llm.stream import ContentDelta, FinishSignal, ToolCallDelta, TransportError
from savings_ai.tools.proposals import BUDGET_PROPOSALS, GOAL_PROPOSAL
from savings_ai.tools.registry import ToolExecutor, tool_definitions
import savings_ai.tools.finance  # noqa: F401
import savings_ai.tools.proposals  # noqa: F401

log = get_logger("agent.orchestrator")

DONE_MESSAGE = "Plan generation completed!"

_PRIORITY_BY_INTENSITY = {
    Intensity.JUST_STARTING: "low",
    Intensity.IDEAL: "medium",
    Intensity.MUST_ACHIEVE: "high",
}


@dataclass
class GenerationOutcome:
    status: SessionStatus
    iterations: int
    cap_reached: bool = False
    error: Optional[str] = None
    transcript: list[Message] = field(default_factory=list)
    extraction: Optional[ExtractionResult] = None


def _normalize_limits(items: list) -> Optional[list[dict]]:
    limits = []
    for item in items:
        try:
            limits.append(ProposedBudgetLimit.model_validate(item).to_public())
        except ValidationError as e:
            log.warning(f"Skipping malformed budget proposal {item!r}: {e.error_count()} errors")
    return limits or None


class GenerationOrchestrator:
    def __init__(
        self,
        client: Any,
        executor: ToolExecutor,
        plan_store: Any,
        *,
        max_iterations: int = 10,
        default_duration: int = 12,
        fallback_savings: float = 500000.0,
        tag_factory: Callable[[], str] = new_payload_tag,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.client = client
        self.executor = executor
        self.plan_store = plan_store
        self.max_iterations = max_iterations
        self.default_duration = default_duration
        self.fallback_savings = fallback_savings
        self.tag_factory = tag_factory

    # --------------------------------------------------
    # Session + store mirroring
    # --------------------------------------------------

    async def _progress(self, session: GenerationSession, message: str, **fields) -> None:
        session.add_message(message)
        await self.plan_store.update(session.plan_id, generation_progress=message, **fields)

    async def _fail(self, session: GenerationSession, error: str, iterations: int) -> None:
        session.fail(error)
        await self.plan_store.update(
            session.plan_id,
            streaming_status=SessionStatus.FAILED.value,
            generation_progress=f"Error: {error}",
            error=error,
            iterations=iterations,
        )
        await self.plan_store.record_event(session.plan_id, "failed", {"error": error, "iterations": iterations})

    # --------------------------------------------------
    # Loop pieces
    # --------------------------------------------------

    async def _stream_turn(
        self, session: GenerationSession, transcript: list[Message], tools: list[dict]
    ) -> tuple[str, list[ToolCall]]:
        acc = ToolCallAccumulator()
        parts: list[str] = []
        wire = [m.to_wire() for m in transcript]

        async with aclosing(self.client.stream(wire, tools)) as stream:
            async for event in stream:
                if isinstance(event, ContentDelta):
                    parts.append(event.text)
                    session.add_delta(event.text)
                elif isinstance(event, ToolCallDelta):
                    acc.feed(event)
                elif isinstance(event, FinishSignal):
                    break

        return "".join(parts), acc.finish()

    def _stash_proposal(self, session: GenerationSession, result: ToolResult) -> dict:
        if not result.success or not isinstance(result.data, dict):
            return {}
        kind = result.data.get("type")
        if kind == GOAL_PROPOSAL:
            session.proposed_goal = result.data.get("proposal")
            return {"proposed_goal": session.proposed_goal}
        if kind == BUDGET_PROPOSALS:
            session.proposed_budget_limits = result.data.get("proposals") or None
            return {"proposed_budget_limits": session.proposed_budget_limits}
        return {}

    async def _run_tool(
        self,
        session: GenerationSession,
        request: GenerationRequest,
        call: ToolCall,
        transcript: list[Message],
    ) -> ToolResult:
        result = await self.executor.execute(call.name, call.arguments_text, request.requester_id)
        transcript.append(
            Message(
                role="tool",
                content=result.model_dump_json(),
                tool_call_id=call.id,
                name=call.name,
            )
        )

        stashed = self._stash_proposal(session, result)
        if result.success:
            line = f"Tool {call.name} finished"
        else:
            line = f"Tool {call.name} failed: {result.error}"
        await self._progress(session, line, **stashed)
        await self.plan_store.record_event(
            session.plan_id,
            "tool",
            {
                "tool": call.name,
                "arguments": call.arguments_text,
                "success": result.success,
                "error": result.error,
            },
        )
        return result

    # --------------------------------------------------
    # Result assembly
    # --------------------------------------------------

    def _goal_from_request(self, request: GenerationRequest, duration: int) -> Optional[dict]:
        # mirror what the user asked for instead of letting the model invent it
        if not request.target_monthly_savings:
            return None
        return {
            "name": request.goal,
            "target": request.target_monthly_savings * duration,
            "priority": _PRIORITY_BY_INTENSITY[request.intensity],
            "duration": duration,
        }

    def _suggested_savings(
        self, request: GenerationRequest, advice: str, goal: Optional[dict], duration: int
    ) -> float:
        if request.target_monthly_savings:
            return float(request.target_monthly_savings)
        parsed = parse_suggested_savings(advice)
        if parsed:
            return parsed
        if goal and goal.get("target"):
            return float(round(goal["target"] / (goal.get("duration") or duration)))
        return float(self.fallback_savings)

    # --------------------------------------------------
    # Main entry
    # --------------------------------------------------

    async def run(self, session: GenerationSession, request: GenerationRequest) -> GenerationOutcome:
        plan_id = session.plan_id
        tag = self.tag_factory()
        duration = request.duration_months or self.default_duration
        transcript = [
            Message(role="system", content=build_system_prompt(request, tag, duration)),
            Message(role="user", content=USER_KICKOFF),
        ]
        tools = tool_definitions()

        session.start_streaming("Preparing AI prompt...")
        await self.plan_store.update(
            plan_id,
            streaming_status=SessionStatus.STREAMING.value,
            generation_progress=session.latest_progress,
        )

        contents: list[str] = []
        iterations = 0
        finished = False

        try:
            for iteration in range(1, self.max_iterations + 1):
                iterations = iteration
                await self._progress(session, f"AI is analyzing your finances (step {iteration})...")

                content, calls = await self._stream_turn(session, transcript, tools)
                contents.append(content)
                transcript.append(Message(role="assistant", content=content, tool_calls=calls or None))

                if not calls:
                    finished = True
                    break

                log.info(f"[{plan_id}] step {iteration}: {len(calls)} tool call(s): {[c.name for c in calls]}")
                for call in calls:
                    await self._run_tool(session, request, call, transcript)

        except TransportError as e:
            log.error(f"[{plan_id}] transport failure on step {iterations}: {e}")
            await self._fail(session, str(e), iterations)
            return GenerationOutcome(
                status=SessionStatus.FAILED, iterations=iterations, error=str(e), transcript=transcript
            )

        if finished:
            await self._progress(session, "AI generation complete! Parsing results...")
        else:
            log.warning(f"[{plan_id}] iteration cap {self.max_iterations} reached, completing with partial output")
            await self._progress(
                session,
                f"Iteration cap reached after {iterations} steps; parsing partial results...",
            )

        full_text = "\n\n".join(c for c in contents if c.strip())

        extraction: Optional[ExtractionResult] = None
        budget_limits = session.proposed_budget_limits
        if budget_limits is None:
            extraction = extract(full_text, tag)
            if extraction.found:
                budget_limits = _normalize_limits(extraction.proposals)

        goal = session.proposed_goal or self._goal_from_request(request, duration)
        advice = strip_tagged_section(full_text, tag)
        suggested = self._suggested_savings(request, advice, goal, duration)

        result = {
            "suggested_savings": suggested,
            "markdown_advice": advice,
            "proposed_goal": goal,
            "proposed_budget_limits": budget_limits,
        }
        done_message = DONE_MESSAGE if finished else f"{DONE_MESSAGE} (iteration cap reached, partial results)"

        session.complete(result, done_message)
        await self.plan_store.update(
            plan_id,
            streaming_status=SessionStatus.COMPLETED.value,
            generation_progress=done_message,
            iterations=iterations,
            **result,
        )
        await self.plan_store.record_event(
            plan_id,
            "completed",
            {
                "iterations": iterations,
                "cap_reached": not finished,
                "extraction_strategy": extraction.strategy if extraction else "tool",
                "budget_limits": len(budget_limits or []),
            },
        )
        return GenerationOutcome(
            status=SessionStatus.COMPLETED,
            iterations=iterations,
            cap_reached=not finished,
            transcript=transcript,
            extraction=extraction,
        )
