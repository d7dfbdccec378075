import logging
from time import perf_counter

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from examforge.api.deps import get_db
from examforge.core.exceptions import ResourceNotFoundError
from examforge.models.evolution_run import EvolutionRun
from examforge.schemas.generator import (
    ConstraintScoreOut,
    EvolutionRunOut,
    EvolutionSettings,
    GenerateExamTimetableRequest,
    GenerateExamTimetableResponse,
    GenerationHistoryPoint,
    ScheduledExamOut,
    default_evolution_settings,
)
from examforge.services.entities import ProblemInstance
from examforge.services.fitness import HARD_CONSTRAINT_NAMES, SOFT_CONSTRAINT_NAMES
from examforge.services.fitness_history import (
    FitnessHistoryRecorder,
    complete_run,
    fail_run,
    generation_history,
    start_run,
)
from examforge.services.genetic_algorithm import EvolutionResult, ExamTimetableGA

router = APIRouter()
logger = logging.getLogger(__name__)


def _build_schedule(problem: ProblemInstance, result: EvolutionResult) -> list[ScheduledExamOut]:
    courses = problem.course_map()
    schedule: list[ScheduledExamOut] = []
    for gene in result.best_chromosome.encoded_exams:
        exam_slot = gene.exam_timeslot(courses[gene.course_code])
        schedule.append(
            ScheduledExamOut(
                course_code=gene.course_code,
                classroom_code=gene.classroom_code,
                invigilators=list(gene.invigilators),
                combined_start=gene.timeslot.start,
                combined_end=gene.timeslot.end,
                exam_start=exam_slot.start,
                exam_end=exam_slot.end,
            )
        )
    schedule.sort(key=lambda item: (item.combined_start, item.classroom_code))
    return schedule


def _build_response(
    problem: ProblemInstance,
    result: EvolutionResult,
    run_id: str | None,
) -> GenerateExamTimetableResponse:
    breakdown = result.best_breakdown
    return GenerateExamTimetableResponse(
        run_id=run_id,
        best_chromosome_id=result.best_chromosome.chromosome_id,
        best_fitness=result.best_fitness,
        initial_best_fitness=result.initial_best_fitness,
        convergence_rate=result.convergence_rate,
        generations=result.generations,
        stop_reason=result.stop_reason,
        hard_violations=breakdown.hard_violations,
        hard_constraints=[
            ConstraintScoreOut(name=name, score=score)
            for name, score in zip((*HARD_CONSTRAINT_NAMES, "total"), breakdown.hard_scores)
        ],
        soft_constraints=[
            ConstraintScoreOut(name=name, score=score)
            for name, score in zip((*SOFT_CONSTRAINT_NAMES, "weighted"), breakdown.soft_scores)
        ],
        schedule=_build_schedule(problem, result),
        settings_used=result.settings,
        runtime_ms=result.runtime_ms,
    )


@router.post("/exams/generate", response_model=GenerateExamTimetableResponse)
def generate_exam_timetable(
    payload: GenerateExamTimetableRequest,
    db: Session = Depends(get_db),
) -> GenerateExamTimetableResponse:
    started = perf_counter()
    settings = payload.settings_override or default_evolution_settings()
    settings = EvolutionSettings.model_validate(settings.model_dump())
    problem = payload.to_problem()
    logger.info(
        "EXAM GENERATION START | courses=%s | classrooms=%s | invigilators=%s | timeslots=%s | record_history=%s",
        len(problem.courses),
        len(problem.classrooms),
        len(problem.invigilators),
        len(problem.timeslots),
        payload.record_history,
    )

    run = start_run(db, settings=settings, exam_count=len(problem.courses))
    db.commit()
    try:
        engine = ExamTimetableGA(problem, settings)
        if payload.record_history:
            engine.add_observer(FitnessHistoryRecorder(db, run))
        result = engine.run()
        complete_run(db, run, result)
        db.commit()
    except Exception as exc:
        db.rollback()
        fail_run(db, run, str(exc))
        db.commit()
        logger.exception(
            "EXAM GENERATION FAILED | run_id=%s | wall_ms=%s",
            run.id,
            int((perf_counter() - started) * 1000),
        )
        raise

    logger.info(
        "EXAM GENERATION COMPLETE | run_id=%s | generations=%s | best=%.6f | hard_violations=%s | wall_ms=%s",
        run.id,
        result.generations,
        result.best_fitness,
        result.best_breakdown.hard_violations,
        int((perf_counter() - started) * 1000),
    )
    return _build_response(problem, result, run.id)


@router.get("/exams/runs/{run_id}", response_model=EvolutionRunOut)
def get_evolution_run(run_id: str, db: Session = Depends(get_db)) -> EvolutionRunOut:
    run = db.get(EvolutionRun, run_id)
    if run is None:
        raise ResourceNotFoundError("Evolution run", run_id)
    return EvolutionRunOut.model_validate(run)


@router.get("/exams/runs/{run_id}/history", response_model=list[GenerationHistoryPoint])
def get_evolution_run_history(run_id: str, db: Session = Depends(get_db)) -> list[GenerationHistoryPoint]:
    if db.get(EvolutionRun, run_id) is None:
        raise ResourceNotFoundError("Evolution run", run_id)
    return generation_history(db, run_id)
