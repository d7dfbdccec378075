from __future__ import annotations

from datetime import datetime, timezone
import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from examforge.models.evolution_run import EvolutionRun, EvolutionRunStatus, FitnessHistoryEntry
from examforge.schemas.generator import EvolutionSettings, GenerationHistoryPoint
from examforge.services.genetic_algorithm import EvolutionResult, GenerationReport

logger = logging.getLogger(__name__)


def start_run(db: Session, *, settings: EvolutionSettings, exam_count: int) -> EvolutionRun:
    run = EvolutionRun(
        status=EvolutionRunStatus.running,
        settings_snapshot=settings.model_dump(mode="json"),
        exam_count=exam_count,
    )
    db.add(run)
    db.flush()
    return run


def complete_run(db: Session, run: EvolutionRun, result: EvolutionResult) -> EvolutionRun:
    run.status = EvolutionRunStatus.completed
    run.generations = result.generations
    run.initial_best_fitness = result.initial_best_fitness
    run.best_fitness = result.best_fitness
    run.convergence_rate = result.convergence_rate
    run.best_chromosome_id = result.best_chromosome.chromosome_id
    run.stop_reason = result.stop_reason
    run.runtime_ms = result.runtime_ms
    run.finished_at = datetime.now(timezone.utc)
    db.flush()
    return run


def fail_run(db: Session, run: EvolutionRun, message: str) -> EvolutionRun:
    run.status = EvolutionRunStatus.failed
    run.error_message = message[:500]
    run.finished_at = datetime.now(timezone.utc)
    db.flush()
    return run


class FitnessHistoryRecorder:
    """Generation observer writing one row per chromosome per generation.

    Runs on the controller thread after the fitness tables are final, so it
    only ever reads a finished generation.
    """

    def __init__(self, db: Session, run: EvolutionRun) -> None:
        self.db = db
        self.run_id = run.id
        self.rows_written = 0

    def __call__(self, report: GenerationReport) -> None:
        tables = report.tables
        entries = [
            FitnessHistoryEntry(
                run_id=self.run_id,
                generation=report.generation,
                chromosome_id=chromosome_id,
                hard_scores=list(tables.breakdowns[chromosome_id].hard_scores),
                soft_scores=list(tables.breakdowns[chromosome_id].soft_scores),
                raw_fitness=tables.breakdowns[chromosome_id].combined,
                combined_score=score,
            )
            for chromosome_id, score in tables.combined.items()
        ]
        self.db.add_all(entries)
        self.db.flush()
        self.rows_written += len(entries)
        logger.debug("Fitness history stored | run_id=%s | generation=%s | rows=%s", self.run_id, report.generation, len(entries))


def generation_history(db: Session, run_id: str) -> list[GenerationHistoryPoint]:
    rows = db.execute(
        select(
            FitnessHistoryEntry.generation,
            func.max(FitnessHistoryEntry.combined_score),
            func.avg(FitnessHistoryEntry.combined_score),
            func.count(FitnessHistoryEntry.id),
        )
        .where(FitnessHistoryEntry.run_id == run_id)
        .group_by(FitnessHistoryEntry.generation)
        .order_by(FitnessHistoryEntry.generation)
    ).all()
    return [
        GenerationHistoryPoint(
            generation=generation,
            best_combined_score=float(best),
            average_combined_score=float(average),
            chromosome_count=int(count),
        )
        for generation, best, average, count in rows
    ]
