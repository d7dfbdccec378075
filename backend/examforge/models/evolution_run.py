from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, Float, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from examforge.db.base import Base


class EvolutionRunStatus(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


class EvolutionRun(Base):
    __tablename__ = "evolution_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status: Mapped[EvolutionRunStatus] = mapped_column(
        SAEnum(EvolutionRunStatus, name="evolution_run_status"),
        nullable=False,
        default=EvolutionRunStatus.running,
        index=True,
    )
    settings_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    exam_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    initial_best_fitness: Mapped[float | None] = mapped_column(Float, nullable=True)
    best_fitness: Mapped[float | None] = mapped_column(Float, nullable=True)
    convergence_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    best_chromosome_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stop_reason: Mapped[str | None] = mapped_column(String(40), nullable=True)
    error_message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    runtime_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    history: Mapped[list["FitnessHistoryEntry"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="FitnessHistoryEntry.id",
    )


class FitnessHistoryEntry(Base):
    __tablename__ = "fitness_history_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(ForeignKey("evolution_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    chromosome_id: Mapped[int] = mapped_column(Integer, nullable=False)
    hard_scores: Mapped[list[float]] = mapped_column(JSON, nullable=False, default=list)
    soft_scores: Mapped[list[float]] = mapped_column(JSON, nullable=False, default=list)
    raw_fitness: Mapped[float] = mapped_column(Float, nullable=False)
    combined_score: Mapped[float] = mapped_column(Float, nullable=False)

    run: Mapped[EvolutionRun] = relationship(back_populates="history")
