"""
Live generation sessions.
What it provides:
- GenerationSession: status + ordered event log of one plan, owned by the
  orchestrator task running for it
- Subscriber channels (asyncio.Queue) that replay the log then follow it live
- SessionRegistry: plan_id -> session lookup with one-session-per-plan
  guard and TTL purge after a terminal state

All mutations are plain (non-async) methods, so each one runs atomically
on the event loop.
"""


import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional

from savings_ai.core.logging import get_logger

log = get_logger("agent.sessions")


class SessionStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL = {SessionStatus.COMPLETED, SessionStatus.FAILED}

_ALLOWED = {
    SessionStatus.PENDING: {SessionStatus.STREAMING, SessionStatus.FAILED},
    SessionStatus.STREAMING: {SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.FAILED: set(),
}


class SessionExistsError(RuntimeError):
    pass


class InvalidTransitionError(RuntimeError):
    pass


@dataclass(frozen=True)
class SessionEvent:
    type: str  # message | delta | complete | error
    message: Optional[str] = None
    data: Optional[dict] = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"type": self.type}
        if self.message is not None:
            out["message" if self.type != "error" else "error"] = self.message
        if self.data is not None:
            out["data"] = self.data
        return out


class GenerationSession:
    def __init__(self, plan_id: str, on_terminal: Optional[Callable[["GenerationSession"], None]] = None):
        self.plan_id = plan_id
        self.status = SessionStatus.PENDING
        self.events: list[SessionEvent] = []
        self.proposed_goal: Optional[dict] = None
        self.proposed_budget_limits: Optional[list] = None
        self.suggested_savings: Optional[float] = None
        self.markdown_advice: Optional[str] = None
        self.error: Optional[str] = None
        self.created_at = time.time()
        self.expires_at: Optional[float] = None
        self._subscribers: list[asyncio.Queue] = []
        self._on_terminal = on_terminal

    @property
    def progress_log(self) -> list[str]:
        return [e.message for e in self.events if e.type == "message" and e.message is not None]

    @property
    def latest_progress(self) -> str:
        log_lines = self.progress_log
        return log_lines[-1] if log_lines else ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    def _publish(self, event: SessionEvent) -> None:
        self.events.append(event)
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    def _transition(self, new: SessionStatus) -> None:
        if new not in _ALLOWED[self.status]:
            raise InvalidTransitionError(f"{self.plan_id}: {self.status.value} -> {new.value}")
        self.status = new

    def add_message(self, message: str) -> None:
        self._publish(SessionEvent("message", message=message))

    def add_delta(self, text: str) -> None:
        self._publish(SessionEvent("delta", message=text))

    def start_streaming(self, message: str) -> None:
        self._transition(SessionStatus.STREAMING)
        self.add_message(message)

    def complete(self, result: dict, message: str) -> None:
        self._transition(SessionStatus.COMPLETED)
        self.proposed_goal = result.get("proposed_goal")
        self.proposed_budget_limits = result.get("proposed_budget_limits")
        self.suggested_savings = result.get("suggested_savings")
        self.markdown_advice = result.get("markdown_advice")
        self.add_message(message)
        self._publish(SessionEvent("complete", data=result))
        self._finish()

    def fail(self, error: str) -> None:
        self._transition(SessionStatus.FAILED)
        self.error = error
        self.add_message(f"Error: {error}")
        self._publish(SessionEvent("error", message=error))
        self._finish()

    def _finish(self) -> None:
        if self._on_terminal is not None:
            self._on_terminal(self)

    async def subscribe(self) -> AsyncIterator[SessionEvent]:
        """Replay everything so far, then follow live until complete/error."""
        queue: asyncio.Queue = asyncio.Queue()
        # snapshot + registration happen without an await in between
        for event in self.events:
            queue.put_nowait(event)
        if not self.is_terminal:
            self._subscribers.append(queue)
        try:
            while True:
                event = await queue.get()
                yield event
                if event.type in ("complete", "error"):
                    return
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def snapshot(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "status": self.status.value,
            "progress_log": self.progress_log,
            "proposed_goal": self.proposed_goal,
            "proposed_budget_limits": self.proposed_budget_limits,
            "suggested_savings": self.suggested_savings,
            "markdown_advice": self.markdown_advice,
            "error": self.error,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


class SessionRegistry:
    def __init__(self, completed_ttl: float = 300.0, failed_ttl: float = 60.0):
        self.completed_ttl = completed_ttl
        self.failed_ttl = failed_ttl
        self._sessions: dict[str, GenerationSession] = {}

    def start(self, plan_id: str) -> GenerationSession:
        if plan_id in self._sessions:
            raise SessionExistsError(f"Generation already running for plan {plan_id}")
        session = GenerationSession(plan_id, on_terminal=self._schedule_expiry)
        self._sessions[plan_id] = session
        return session

    def get(self, plan_id: str) -> Optional[GenerationSession]:
        return self._sessions.get(plan_id)

    def subscribe(self, plan_id: str) -> Optional[AsyncIterator[SessionEvent]]:
        session = self._sessions.get(plan_id)
        return session.subscribe() if session else None

    def discard(self, session: GenerationSession) -> None:
        if self._sessions.get(session.plan_id) is session:
            del self._sessions[session.plan_id]

    def __contains__(self, plan_id: str) -> bool:
        return plan_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def _schedule_expiry(self, session: GenerationSession) -> None:
        ttl = self.completed_ttl if session.status == SessionStatus.COMPLETED else self.failed_ttl
        session.expires_at = time.time() + ttl
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._expire(session)
            return
        loop.call_later(ttl, self._expire, session)

    def _expire(self, session: GenerationSession) -> None:
        # a newer session under the same id must survive
        if self._sessions.get(session.plan_id) is session:
            self.discard(session)
            log.info(f"Session {session.plan_id} expired ({session.status.value})")
