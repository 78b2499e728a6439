"""
Starts plan generations in the background.
What it does:
- Creates the durable plan record (pending) and the matching live session
- Schedules the orchestrator as its own asyncio task and returns at once
- Converts anything that escapes the orchestrator into a failed plan
- Lets shutdown wait for in-flight generations

And, the main purpose:
Drive request -> background generation -> terminal state.
"""


import asyncio
from typing import Any, Optional

from savings_ai.agent.orchestrator import GenerationOrchestrator
from savings_ai.agent.sessions import GenerationSession, SessionRegistry, SessionStatus
from savings_ai.core.config import settings
from savings_ai.core.ids import new_id
from savings_ai.core.logging import get_logger
from savings_ai.llm.schemas import GenerationRequest

log = get_logger("agent.runner")

START_MESSAGE = "Starting AI generation..."


class PlanGenerationService:
    def __init__(self, *, registry: SessionRegistry, plan_store: Any, orchestrator: GenerationOrchestrator):
        self.registry = registry
        self.plan_store = plan_store
        self.orchestrator = orchestrator
        self._tasks: set[asyncio.Task] = set()

    async def start(self, request: GenerationRequest, plan_id: Optional[str] = None) -> str:
        plan_id = plan_id or new_id("plan")
        # claimed before the first await so a concurrent start for the same id fails fast
        session = self.registry.start(plan_id)
        try:
            await self.plan_store.create(
                plan_id,
                request,
                streaming_status=SessionStatus.PENDING.value,
                generation_progress=START_MESSAGE,
            )
        except Exception:
            self.registry.discard(session)
            raise
        session.add_message(START_MESSAGE)

        task = asyncio.create_task(self._run(session, request), name=f"plan-{plan_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log.info(f"Started generation {plan_id} for user {request.requester_id}")
        return plan_id

    async def _run(self, session: GenerationSession, request: GenerationRequest) -> None:
        try:
            outcome = await self.orchestrator.run(session, request)
            log.info(
                f"Generation {session.plan_id} ended {outcome.status.value} "
                f"after {outcome.iterations} step(s)"
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            if session.is_terminal:
                # the outcome stands; the store is re-synced to it, never overwritten
                log.exception(f"Generation {session.plan_id} errored after reaching {session.status.value}")
                fields = {"generation_progress": session.latest_progress}
                if session.error:
                    fields["error"] = session.error
            else:
                log.exception(f"Generation {session.plan_id} crashed")
                session.fail(error)
                fields = {"generation_progress": f"Error: {error}", "error": error}
            try:
                await self.plan_store.update(session.plan_id, streaming_status=session.status.value, **fields)
            except Exception:
                log.exception(f"Could not persist final status of {session.plan_id}")

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._tasks:
            return
        log.info(f"Waiting for {len(self._tasks)} generation(s) to finish")
        await asyncio.wait(set(self._tasks), timeout=timeout)


def build_service(session_factory=None) -> PlanGenerationService:
    from savings_ai.db.repo import FinanceStore, PlanStore
    from savings_ai.llm.stream import build_chat_client
    from savings_ai.tools.registry import ToolExecutor

    if session_factory is None:
        from savings_ai.db.session import SessionLocal

        session_factory = SessionLocal

    plan_store = PlanStore(session_factory)
    finance_store = FinanceStore(session_factory, transaction_limit=settings.TRANSACTION_READ_LIMIT)
    orchestrator = GenerationOrchestrator(
        build_chat_client(),
        ToolExecutor(finance_store),
        plan_store,
        max_iterations=settings.MAX_TOOL_ITERATIONS,
        default_duration=settings.DEFAULT_DURATION_MONTHS,
        fallback_savings=settings.FALLBACK_SUGGESTED_SAVINGS,
    )
    registry = SessionRegistry(
        completed_ttl=settings.SESSION_TTL_COMPLETED,
        failed_ttl=settings.SESSION_TTL_FAILED,
    )
    return PlanGenerationService(registry=registry, plan_store=plan_store, orchestrator=orchestrator)
