import asyncio

import pytest

from savings_ai.agent.sessions import (
    GenerationSession,
    InvalidTransitionError,
    SessionExistsError,
    SessionRegistry,
    SessionStatus,
)


def test_duplicate_start_is_rejected(registry):
    registry.start("plan_1")
    with pytest.raises(SessionExistsError):
        registry.start("plan_1")
    assert len(registry) == 1


def test_status_only_moves_forward():
    session = GenerationSession("plan_1")
    with pytest.raises(InvalidTransitionError):
        session.complete({}, "done")

    session.start_streaming("Preparing AI prompt...")
    session.complete({"suggested_savings": 1.0}, "done")

    with pytest.raises(InvalidTransitionError):
        session.fail("late failure")
    with pytest.raises(InvalidTransitionError):
        session.start_streaming("again")
    assert session.status == SessionStatus.COMPLETED


def test_pending_session_can_fail():
    session = GenerationSession("plan_1")
    session.fail("store unavailable")
    assert session.status == SessionStatus.FAILED
    assert session.progress_log == ["Error: store unavailable"]
    assert session.events[-1].to_dict() == {"type": "error", "error": "store unavailable"}


def test_progress_log_excludes_deltas():
    session = GenerationSession("plan_1")
    session.add_message("Starting AI generation...")
    session.start_streaming("Preparing AI prompt...")
    session.add_delta("Hel")
    session.add_delta("lo")

    assert session.progress_log == ["Starting AI generation...", "Preparing AI prompt..."]
    assert session.latest_progress == "Preparing AI prompt..."
    assert [e.type for e in session.events] == ["message", "message", "delta", "delta"]


@pytest.mark.asyncio
async def test_subscriber_gets_replay_then_live_in_order(registry):
    session = registry.start("plan_1")
    session.add_message("Starting AI generation...")
    session.start_streaming("Preparing AI prompt...")

    received = []

    async def consume():
        async for event in registry.subscribe("plan_1"):
            received.append(event.to_dict())

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0)

    session.add_delta("Saving tips")
    session.add_message("AI generation complete! Parsing results...")
    session.complete({"suggested_savings": 500000.0}, "Plan generation completed!")

    await asyncio.wait_for(consumer, timeout=1)

    assert [e.get("message") for e in received[:-1]] == [
        "Starting AI generation...",
        "Preparing AI prompt...",
        "Saving tips",
        "AI generation complete! Parsing results...",
        "Plan generation completed!",
    ]
    assert received[-1] == {"type": "complete", "data": {"suggested_savings": 500000.0}}


@pytest.mark.asyncio
async def test_late_subscriber_after_terminal_gets_full_replay(registry):
    session = registry.start("plan_1")
    session.start_streaming("Preparing AI prompt...")
    session.fail("Chat service error 500")

    events = [e async for e in registry.subscribe("plan_1")]

    assert [e.type for e in events] == ["message", "message", "error"]
    assert session._subscribers == []


def test_subscribe_unknown_plan_returns_none(registry):
    assert registry.subscribe("nope") is None


@pytest.mark.asyncio
async def test_terminal_sessions_expire_after_ttl():
    registry = SessionRegistry(completed_ttl=0.05, failed_ttl=0.01)
    done = registry.start("plan_done")
    failed = registry.start("plan_failed")
    registry.start("plan_running")

    done.start_streaming("Preparing AI prompt...")
    done.complete({}, "Plan generation completed!")
    failed.fail("boom")

    assert done.expires_at is not None
    assert "plan_done" in registry

    await asyncio.sleep(0.1)

    assert "plan_done" not in registry
    assert "plan_failed" not in registry
    assert "plan_running" in registry


@pytest.mark.asyncio
async def test_expiry_does_not_remove_a_newer_session():
    registry = SessionRegistry(completed_ttl=0.02)
    old = registry.start("plan_1")
    old.start_streaming("Preparing AI prompt...")
    old.complete({}, "done")
    registry.discard(old)
    newer = registry.start("plan_1")

    await asyncio.sleep(0.05)

    assert registry.get("plan_1") is newer


def test_snapshot_reports_current_state():
    session = GenerationSession("plan_1")
    session.start_streaming("Preparing AI prompt...")
    snap = session.snapshot()
    assert snap["plan_id"] == "plan_1"
    assert snap["status"] == "streaming"
    assert snap["progress_log"] == ["Preparing AI prompt..."]
    assert snap["error"] is None
