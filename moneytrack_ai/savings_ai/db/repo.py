# savings_ai/db/repo.py

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from savings_ai.core.ids import new_id
from savings_ai.db.models import SavingsPlan, PlanEvent, Transaction, Goal, Budget
from savings_ai.llm.schemas import GenerationRequest


_JSON_FIELDS = {"proposed_goal", "proposed_budget_limits"}
_PLAN_FIELDS = {
    "streaming_status",
    "generation_progress",
    "suggested_savings",
    "markdown_advice",
    "proposed_goal",
    "proposed_budget_limits",
    "error",
    "iterations",
}


def _serialize_sqlite_value(value: Any) -> Any:
    """
    SQLite cannot bind dict/list directly into TEXT parameters.
    Convert dict/list to JSON string so commit never fails.
    """
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


def load_json(value: Optional[str]) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return None


def plan_to_dict(plan: SavingsPlan) -> dict:
    return {
        "id": plan.id,
        "user_id": plan.user_id,
        "goal": plan.goal,
        "savings_goal": plan.savings_goal,
        "intensity": plan.intensity,
        "notes": plan.notes,
        "duration_months": plan.duration_months,
        "streaming_status": plan.streaming_status,
        "generation_progress": plan.generation_progress,
        "suggested_savings": plan.suggested_savings,
        "markdown_advice": plan.markdown_advice,
        "proposed_goal": load_json(plan.proposed_goal),
        "proposed_budget_limits": load_json(plan.proposed_budget_limits),
        "error": plan.error,
        "iterations": plan.iterations,
        "created_at": plan.created_at.isoformat() if plan.created_at else None,
        "updated_at": plan.updated_at.isoformat() if plan.updated_at else None,
    }


# --------------------------------------------------
# Savings plans
# --------------------------------------------------

async def create_plan(db: AsyncSession, plan: SavingsPlan) -> SavingsPlan:
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    return plan


async def get_plan(db: AsyncSession, plan_id: str) -> SavingsPlan | None:
    res = await db.execute(select(SavingsPlan).where(SavingsPlan.id == plan_id))
    return res.scalar_one_or_none()


async def update_plan(db: AsyncSession, plan_id: str, fields: dict) -> SavingsPlan | None:
    unknown = set(fields) - _PLAN_FIELDS
    if unknown:
        raise ValueError(f"Unknown plan fields: {sorted(unknown)}")
    plan = await get_plan(db, plan_id)
    if plan is None:
        return None
    for key, value in fields.items():
        setattr(plan, key, _serialize_sqlite_value(value) if key in _JSON_FIELDS else value)
    plan.updated_at = datetime.utcnow()
    await db.commit()
    await db.refresh(plan)
    return plan


async def list_plans(db: AsyncSession, user_id: str) -> list[SavingsPlan]:
    res = await db.execute(
        select(SavingsPlan)
        .where(SavingsPlan.user_id == user_id)
        .order_by(SavingsPlan.created_at.desc())
    )
    return list(res.scalars().all())


async def delete_plan(db: AsyncSession, plan_id: str) -> None:
    await db.execute(delete(PlanEvent).where(PlanEvent.plan_id == plan_id))
    await db.execute(delete(SavingsPlan).where(SavingsPlan.id == plan_id))
    await db.commit()


async def add_event(db: AsyncSession, ev: PlanEvent) -> PlanEvent:
    ev.payload = _serialize_sqlite_value(ev.payload)
    db.add(ev)
    await db.commit()
    await db.refresh(ev)
    return ev


async def get_events(db: AsyncSession, plan_id: str) -> list[PlanEvent]:
    res = await db.execute(
        select(PlanEvent)
        .where(PlanEvent.plan_id == plan_id)
        .order_by(PlanEvent.created_at)
    )
    return list(res.scalars().all())


class PlanStore:
    """Durable twin of the in-memory sessions; one short DB session per call."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create(self, plan_id: str, request: GenerationRequest, **fields) -> dict:
        plan = SavingsPlan(
            id=plan_id,
            user_id=request.requester_id,
            goal=request.goal,
            savings_goal=request.target_monthly_savings,
            intensity=request.intensity.value,
            notes=request.notes,
            duration_months=request.duration_months,
            streaming_status=fields.pop("streaming_status", "pending"),
            generation_progress=fields.pop("generation_progress", ""),
        )
        async with self.session_factory() as db:
            await create_plan(db, plan)
            if fields:
                plan = await update_plan(db, plan_id, fields)
            return plan_to_dict(plan)

    async def update(self, plan_id: str, **fields) -> Optional[dict]:
        async with self.session_factory() as db:
            plan = await update_plan(db, plan_id, fields)
            return plan_to_dict(plan) if plan else None

    async def get_by_id(self, plan_id: str) -> Optional[dict]:
        async with self.session_factory() as db:
            plan = await get_plan(db, plan_id)
            return plan_to_dict(plan) if plan else None

    async def list_for_user(self, user_id: str) -> list[dict]:
        async with self.session_factory() as db:
            return [plan_to_dict(p) for p in await list_plans(db, user_id)]

    async def latest_for_user(self, user_id: str) -> Optional[dict]:
        plans = await self.list_for_user(user_id)
        return plans[0] if plans else None

    async def delete(self, plan_id: str) -> None:
        async with self.session_factory() as db:
            await delete_plan(db, plan_id)

    async def record_event(self, plan_id: str, event_type: str, payload: dict) -> None:
        async with self.session_factory() as db:
            await add_event(
                db,
                PlanEvent(id=new_id("ev"), plan_id=plan_id, event_type=event_type, payload=payload),
            )

    async def list_events(self, plan_id: str) -> list[dict]:
        async with self.session_factory() as db:
            return [
                {
                    "id": ev.id,
                    "type": ev.event_type,
                    "payload": load_json(ev.payload),
                    "at": ev.created_at.isoformat(),
                }
                for ev in await get_events(db, plan_id)
            ]


# --------------------------------------------------
# Finance data (read-only)
# --------------------------------------------------

async def read_transactions(db: AsyncSession, user_id: str, limit: int = 100) -> list[Transaction]:
    res = await db.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.date.desc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def read_goals(db: AsyncSession, user_id: str) -> list[Goal]:
    res = await db.execute(select(Goal).where(Goal.user_id == user_id))
    return list(res.scalars().all())


async def read_budgets(db: AsyncSession, user_id: str) -> list[Budget]:
    res = await db.execute(select(Budget).where(Budget.user_id == user_id))
    return list(res.scalars().all())


def summarize(transactions: list[Transaction], goals: int, budgets: int) -> dict:
    total_income = 0.0
    total_expenses = 0.0
    category_spending: dict[str, float] = {}
    for t in transactions:
        amount = abs(t.amount)
        if t.type == "income":
            total_income += amount
        else:
            total_expenses += amount
            category_spending[t.category] = category_spending.get(t.category, 0.0) + amount

    return {
        "balance": total_income - total_expenses,
        "totalIncome": total_income,
        "totalExpenses": total_expenses,
        "categorySpending": category_spending,
        "goals": goals,
        "budgets": budgets,
        "savingRate": ((total_income - total_expenses) / total_income) * 100 if total_income > 0 else 0.0,
    }


class FinanceStore:
    """Read-only view of a user's transactions, goals and budgets."""

    def __init__(self, session_factory: async_sessionmaker, transaction_limit: int = 100):
        self.session_factory = session_factory
        self.transaction_limit = transaction_limit

    async def read_transactions(self, user_id: str) -> list[dict]:
        async with self.session_factory() as db:
            rows = await read_transactions(db, user_id, self.transaction_limit)
        return [
            {
                "id": t.id,
                "title": t.title,
                "category": t.category,
                "amount": t.amount,
                "type": t.type,
                "date": t.date.isoformat(),
            }
            for t in rows
        ]

    async def read_goals(self, user_id: str) -> list[dict]:
        async with self.session_factory() as db:
            rows = await read_goals(db, user_id)
        return [
            {
                "id": g.id,
                "name": g.name,
                "target": g.target,
                "current": g.current,
                "priority": g.priority,
                "progress": (g.current / g.target) * 100 if g.target > 0 else 0.0,
            }
            for g in rows
        ]

    async def read_budgets(self, user_id: str) -> list[dict]:
        async with self.session_factory() as db:
            rows = await read_budgets(db, user_id)
        return [
            {
                "id": b.id,
                "category": b.category,
                "limit": b.limit,
                "spent": b.spent,
                "month": b.month,
                "utilization": (b.spent / b.limit) * 100 if b.limit > 0 else 0.0,
            }
            for b in rows
        ]

    async def get_financial_summary(self, user_id: str) -> dict:
        async with self.session_factory() as db:
            res = await db.execute(select(Transaction).where(Transaction.user_id == user_id))
            transactions = list(res.scalars().all())
            goals = await read_goals(db, user_id)
            budgets = await read_budgets(db, user_id)
        return summarize(transactions, len(goals), len(budgets))
