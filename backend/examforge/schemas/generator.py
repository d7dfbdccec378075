from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, ValidationError, model_validator

from examforge.core.config import Settings, get_settings
from examforge.core.exceptions import ConfigurationError
from examforge.models.evolution_run import EvolutionRunStatus
from examforge.schemas.entities import (
    ClassroomPayload,
    CoursePayload,
    ExamWindowPayload,
    InvigilatorPayload,
    StudentPayload,
    TimeslotPayload,
)
from examforge.services.entities import ProblemInstance


class SoftConstraintWeights(BaseModel):
    student_gap: float = Field(default=1.0, ge=0.0, le=100.0)
    invigilator_workload: float = Field(default=1.0, ge=0.0, le=100.0)
    classroom_utilization: float = Field(default=1.0, ge=0.0, le=100.0)


class EvolutionSettings(BaseModel):
    population_size: int = Field(default=50, ge=2, le=2000)
    max_generations: int = Field(default=500, ge=1, le=100_000)
    low_mutation_rate: float = Field(default=0.005, ge=0.0, le=1.0)
    high_mutation_rate: float = Field(default=0.07, ge=0.0, le=1.0)
    mutation_draw_scale: float = Field(default=0.1, gt=0.0, le=1.0)
    crossover_rate: float = Field(default=0.8, ge=0.0, le=1.0)
    generations_without_improvement: int = Field(default=300, ge=1, le=100_000)
    fitness_share: bool = False
    sharing_radius: float = Field(default=0.25, gt=0.0, le=1.0)
    sharing_alpha: float = Field(default=1.0, gt=0.0, le=10.0)
    tournament_size: int = Field(default=3, ge=2, le=50)
    offspring_ratio: float = Field(default=0.5, gt=0.0, le=1.0)
    rank_selection_fraction: float = Field(default=0.7, ge=0.0, le=1.0)
    age_replacement_generation: int = Field(default=100, ge=0)
    improvement_epsilon: float = Field(default=0.0001, gt=0.0)
    stability_window: int = Field(default=250, ge=1)
    parameter_bump_generation: int = Field(default=100, ge=1)
    low_mutation_rate_bump: float = Field(default=0.001, ge=0.0, le=1.0)
    high_mutation_rate_bump: float = Field(default=0.01, ge=0.0, le=1.0)
    crossover_rate_bump: float = Field(default=0.02, ge=0.0, le=1.0)
    min_student_gap_hours: int = Field(default=3, ge=0, le=72)
    students_per_invigilator: int = Field(default=40, ge=1, le=1000)
    random_seed: int | None = Field(default=None, ge=0, le=2_000_000_000)
    evaluation_workers: int = Field(default=1, ge=1, le=64)
    soft_weights: SoftConstraintWeights = Field(default_factory=SoftConstraintWeights)

    @model_validator(mode="after")
    def validate_relationships(self) -> "EvolutionSettings":
        if self.low_mutation_rate > self.high_mutation_rate:
            raise ValueError("low_mutation_rate cannot exceed high_mutation_rate")
        if self.tournament_size > self.population_size:
            raise ValueError("tournament_size cannot exceed population_size")
        return self


def default_evolution_settings(settings: Settings | None = None) -> EvolutionSettings:
    source = settings or get_settings()
    try:
        return EvolutionSettings(
            population_size=source.population_size,
            max_generations=source.max_generations,
            low_mutation_rate=source.low_mutation_rate,
            high_mutation_rate=source.high_mutation_rate,
            crossover_rate=source.crossover_rate,
            generations_without_improvement=source.generations_without_improvement,
            fitness_share=source.fitness_share,
            random_seed=source.random_seed,
            evaluation_workers=source.evaluation_workers,
            tournament_size=max(2, min(3, source.population_size)),
        )
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid evolution configuration",
            details={"errors": [error["msg"] for error in exc.errors()]},
        ) from exc


class GenerateExamTimetableRequest(BaseModel):
    courses: list[CoursePayload] = Field(min_length=1)
    students: list[StudentPayload] = Field(default_factory=list)
    classrooms: list[ClassroomPayload] = Field(min_length=1)
    invigilators: list[InvigilatorPayload] = Field(min_length=1)
    timeslots: list[TimeslotPayload] = Field(min_length=1)
    holidays: list[date] = Field(default_factory=list)
    window: ExamWindowPayload
    settings_override: EvolutionSettings | None = None
    record_history: bool = True

    @model_validator(mode="after")
    def validate_references(self) -> "GenerateExamTimetableRequest":
        for label, codes in (
            ("course_code", [item.course_code for item in self.courses]),
            ("classroom_code", [item.classroom_code for item in self.classrooms]),
            ("invigilator_id", [item.invigilator_id for item in self.invigilators]),
            ("student_id", [item.student_id for item in self.students]),
        ):
            if len(codes) != len(set(codes)):
                raise ValueError(f"Duplicate {label} values are not allowed")
        if self.students:
            known = {item.student_id for item in self.students}
            for course in self.courses:
                unknown = [student_id for student_id in course.student_ids if student_id not in known]
                if unknown:
                    raise ValueError(f"Course {course.course_code} references unknown students: {', '.join(unknown)}")
        return self

    def to_problem(self) -> ProblemInstance:
        return ProblemInstance(
            courses=tuple(item.to_entity() for item in self.courses),
            students=tuple(item.to_entity() for item in self.students),
            classrooms=tuple(item.to_entity() for item in self.classrooms),
            invigilators=tuple(item.to_entity() for item in self.invigilators),
            timeslots=tuple(sorted((item.to_entity() for item in self.timeslots), key=lambda slot: slot.start)),
            window=self.window.to_entity(),
            holidays=frozenset(self.holidays),
        )


class ConstraintScoreOut(BaseModel):
    name: str
    score: float


class ScheduledExamOut(BaseModel):
    course_code: str
    classroom_code: str
    invigilators: list[str]
    combined_start: datetime
    combined_end: datetime
    exam_start: datetime
    exam_end: datetime


class GenerateExamTimetableResponse(BaseModel):
    run_id: str | None = None
    best_chromosome_id: int
    best_fitness: float
    initial_best_fitness: float
    convergence_rate: float
    generations: int
    stop_reason: str
    hard_violations: int
    hard_constraints: list[ConstraintScoreOut]
    soft_constraints: list[ConstraintScoreOut]
    schedule: list[ScheduledExamOut]
    settings_used: EvolutionSettings
    runtime_ms: int


class EvolutionRunOut(BaseModel):
    id: str
    status: EvolutionRunStatus
    exam_count: int
    generations: int
    initial_best_fitness: float | None = None
    best_fitness: float | None = None
    convergence_rate: float | None = None
    best_chromosome_id: int | None = None
    stop_reason: str | None = None
    error_message: str | None = None
    runtime_ms: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    model_config = {"from_attributes": True}


class GenerationHistoryPoint(BaseModel):
    generation: int
    best_combined_score: float
    average_combined_score: float
    chromosome_count: int
