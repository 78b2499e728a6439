"""
Database table definitions and it stores:
- Savings plans (durable twin of a generation session)
- Plan events (tool executions + outcomes)
- Transactions, goals, budgets (owned by the CRUD side, read here)
Main purpose:
Define persistent data structure.
"""



from sqlalchemy import String, Text, Integer, Float, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from typing import Optional
from savings_ai.db.base import Base

class SavingsPlan(Base):
    __tablename__ = "savings_plans"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    goal: Mapped[str] = mapped_column(Text)
    savings_goal: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    intensity: Mapped[str] = mapped_column(String)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_months: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    streaming_status: Mapped[str] = mapped_column(String, default="pending")  # pending|streaming|completed|failed
    generation_progress: Mapped[str] = mapped_column(Text, default="")
    suggested_savings: Mapped[float] = mapped_column(Float, default=0.0)
    markdown_advice: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    proposed_goal: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON
    proposed_budget_limits: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    iterations: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    events = relationship("PlanEvent", back_populates="plan", cascade="all, delete-orphan")

class PlanEvent(Base):
    __tablename__ = "plan_events"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    plan_id: Mapped[str] = mapped_column(String, ForeignKey("savings_plans.id"), index=True)
    event_type: Mapped[str] = mapped_column(String)  # tool|completed|failed
    payload: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    plan = relationship("SavingsPlan", back_populates="events")


class Transaction(Base):
    __tablename__ = "transactions"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    title: Mapped[str] = mapped_column(String)
    category: Mapped[str] = mapped_column(String)
    amount: Mapped[float] = mapped_column(Float)
    type: Mapped[str] = mapped_column(String)  # income|expense
    date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

class Goal(Base):
    __tablename__ = "goals"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    target: Mapped[float] = mapped_column(Float)
    current: Mapped[float] = mapped_column(Float, default=0.0)
    priority: Mapped[str] = mapped_column(String, default="medium")

class Budget(Base):
    __tablename__ = "budgets"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    category: Mapped[str] = mapped_column(String)
    limit: Mapped[float] = mapped_column(Float)
    spent: Mapped[float] = mapped_column(Float, default=0.0)
    month: Mapped[str] = mapped_column(String)  # YYYY-MM
