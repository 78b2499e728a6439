import asyncio
import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from savings_ai.agent.runner import PlanGenerationService, build_service
from savings_ai.agent.sessions import TERMINAL, SessionStatus
from savings_ai.api.types import GeneratePlanRequest, GeneratePlanResponse
from savings_ai.core.config import settings


"""
FastAPI routes for savings-plan generation.
What it provides:
- Start generation endpoint (returns a plan id at once)
- Poll plan snapshot / list / latest
- SSE progress stream (live session, or store polling once it expired)
- Plan event trace + delete

And, the main purpose:
Expose the generation engine over HTTP.
"""

router = APIRouter()

_service: Optional[PlanGenerationService] = None

def get_service() -> PlanGenerationService:
    global _service
    if _service is None:
        _service = build_service()
    return _service


_TERMINAL_VALUES = {s.value for s in TERMINAL}


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"


async def _owned_plan(service: PlanGenerationService, plan_id: str, user_id: str) -> dict:
    plan = await service.plan_store.get_by_id(plan_id)
    if not plan:
        raise HTTPException(404, "savings plan not found")
    if plan["user_id"] != user_id:
        raise HTTPException(403, "user mismatch")
    return plan


@router.post("/plans/generate", status_code=202, response_model=GeneratePlanResponse)
async def api_generate(req: GeneratePlanRequest, service: PlanGenerationService = Depends(get_service)):
    plan_id = await service.start(req.to_generation_request())
    return GeneratePlanResponse(
        plan_id=plan_id,
        status=SessionStatus.PENDING.value,
        message=f"AI generation started. Use /v1/plans/{plan_id}/stream to follow progress.",
        stream_url=f"/v1/plans/{plan_id}/stream?user_id={req.user_id}",
    )

@router.get("/plans")
async def api_list_plans(user_id: str, service: PlanGenerationService = Depends(get_service)):
    return await service.plan_store.list_for_user(user_id)

@router.get("/plans/latest")
async def api_latest_plan(user_id: str, service: PlanGenerationService = Depends(get_service)):
    plan = await service.plan_store.latest_for_user(user_id)
    if not plan:
        raise HTTPException(404, "no savings plan found")
    return plan

@router.get("/plans/{plan_id}")
async def api_get_plan(plan_id: str, user_id: str, service: PlanGenerationService = Depends(get_service)):
    plan = await _owned_plan(service, plan_id, user_id)
    session = service.registry.get(plan_id)
    plan["progress_log"] = session.progress_log if session else None
    return plan

@router.get("/plans/{plan_id}/events")
async def api_plan_events(plan_id: str, user_id: str, service: PlanGenerationService = Depends(get_service)):
    await _owned_plan(service, plan_id, user_id)
    return await service.plan_store.list_events(plan_id)

@router.get("/plans/{plan_id}/stream")
async def api_stream_plan(plan_id: str, user_id: str, service: PlanGenerationService = Depends(get_service)):
    plan = await _owned_plan(service, plan_id, user_id)

    async def live(events) -> AsyncIterator[str]:
        async for event in events:
            yield _sse(event.to_dict())

    async def polled(snapshot: dict) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        last_change = loop.time()
        yield _sse({"type": "status", "status": snapshot["streaming_status"], "message": snapshot["generation_progress"]})
        while snapshot["streaming_status"] not in _TERMINAL_VALUES:
            if loop.time() - last_change > settings.STREAM_IDLE_TIMEOUT:
                # no live session and no store progress: the run was lost (e.g. a restart)
                yield _sse({"type": "error", "error": f"no progress for {settings.STREAM_IDLE_TIMEOUT:.0f}s, generation was interrupted"})
                return
            await asyncio.sleep(settings.STREAM_POLL_INTERVAL)
            latest = await service.plan_store.get_by_id(plan_id)
            if latest is None:
                yield _sse({"type": "error", "error": "savings plan was deleted"})
                return
            if (latest["streaming_status"], latest["generation_progress"]) != (
                snapshot["streaming_status"],
                snapshot["generation_progress"],
            ):
                yield _sse({"type": "status", "status": latest["streaming_status"], "message": latest["generation_progress"]})
                last_change = loop.time()
            snapshot = latest
        yield _sse({"type": "complete", "plan": snapshot})

    events = service.registry.subscribe(plan_id)
    body = live(events) if events is not None else polled(plan)
    return StreamingResponse(
        body,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )

@router.delete("/plans/{plan_id}")
async def api_delete_plan(plan_id: str, user_id: str, service: PlanGenerationService = Depends(get_service)):
    await _owned_plan(service, plan_id, user_id)
    session = service.registry.get(plan_id)
    if session and not session.is_terminal:
        raise HTTPException(409, "generation still running")
    await service.plan_store.delete(plan_id)
    return {"ok": True}
