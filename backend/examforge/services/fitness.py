from __future__ import annotations

from collections import Counter, defaultdict
from concurrent.futures import Executor
from dataclasses import dataclass
import logging
from statistics import pstdev

from examforge.core.exceptions import DataIntegrityError
from examforge.schemas.generator import EvolutionSettings
from examforge.services.entities import (
    Chromosome,
    Classroom,
    Course,
    EncodedExam,
    Invigilator,
    ProblemInstance,
    Timeslot,
)

logger = logging.getLogger(__name__)

HARD_CONSTRAINT_NAMES: tuple[str, ...] = (
    "invigilator_double_booking",
    "classroom_double_booking",
    "student_clash",
    "classroom_capacity",
    "invigilator_monitoring_limit",
    "exam_window",
)
SOFT_CONSTRAINT_NAMES: tuple[str, ...] = (
    "student_gap",
    "invigilator_workload",
    "classroom_utilization",
)

# Soft quality can move the combined score by at most half a hard violation.
SOFT_SLACK = 0.5


def combine_scores(hard_violations: float, soft_score: float) -> float:
    return 1.0 / (1.0 + hard_violations + SOFT_SLACK * (1.0 - soft_score))


@dataclass
class FitnessBreakdown:
    chromosome_id: int
    hard_scores: list[float]
    soft_scores: list[float]
    combined: float

    @property
    def hard_score(self) -> float:
        return self.hard_scores[-1]

    @property
    def soft_score(self) -> float:
        return self.soft_scores[-1]

    @property
    def hard_violations(self) -> int:
        return int(round(-self.hard_score))


@dataclass(frozen=True)
class _ResolvedExam:
    gene: EncodedExam
    course: Course
    classroom: Classroom
    invigilators: tuple[Invigilator, ...]
    exam_slot: Timeslot


def _overlapping_pairs(slots: list[Timeslot]) -> int:
    ordered = sorted(slots, key=lambda slot: slot.start)
    count = 0
    for index, slot in enumerate(ordered):
        for other in ordered[index + 1:]:
            if other.start >= slot.end:
                break
            count += 1
    return count


class FitnessEvaluator:
    def __init__(self, problem: ProblemInstance, settings: EvolutionSettings) -> None:
        self.problem = problem
        self.settings = settings
        self.courses = problem.course_map()
        self.classrooms = problem.classroom_map()
        self.invigilators = problem.invigilator_map()

    def evaluate(self, chromosome: Chromosome) -> FitnessBreakdown:
        resolved = self._resolve(chromosome)

        hard = [
            -float(self._invigilator_double_bookings(resolved)),
            -float(self._classroom_double_bookings(resolved)),
            -float(self._student_clashes(resolved)),
            -float(self._capacity_violations(resolved)),
            -float(self._monitoring_limit_violations(resolved)),
            -float(self._window_violations(resolved)),
        ]
        hard.append(sum(hard))

        soft = [
            self._student_gap_satisfaction(resolved),
            self._workload_balance(resolved),
            self._classroom_utilization(resolved),
        ]
        weights = self.settings.soft_weights
        weight_values = [weights.student_gap, weights.invigilator_workload, weights.classroom_utilization]
        total_weight = sum(weight_values)
        if total_weight > 0:
            soft.append(sum(score * weight for score, weight in zip(soft, weight_values)) / total_weight)
        else:
            soft.append(1.0)

        return FitnessBreakdown(
            chromosome_id=chromosome.chromosome_id,
            hard_scores=hard,
            soft_scores=soft,
            combined=combine_scores(-hard[-1], soft[-1]),
        )

    def _resolve(self, chromosome: Chromosome) -> list[_ResolvedExam]:
        resolved: list[_ResolvedExam] = []
        for gene in chromosome.encoded_exams:
            course = self.courses.get(gene.course_code)
            if course is None:
                raise DataIntegrityError("course", gene.course_code)
            classroom = self.classrooms.get(gene.classroom_code)
            if classroom is None:
                raise DataIntegrityError("classroom", gene.classroom_code)
            invigilators: list[Invigilator] = []
            for invigilator_id in gene.invigilators:
                invigilator = self.invigilators.get(invigilator_id)
                if invigilator is None:
                    raise DataIntegrityError("invigilator", invigilator_id)
                invigilators.append(invigilator)
            resolved.append(
                _ResolvedExam(
                    gene=gene,
                    course=course,
                    classroom=classroom,
                    invigilators=tuple(invigilators),
                    exam_slot=gene.exam_timeslot(course),
                )
            )
        return resolved

    def _invigilator_double_bookings(self, resolved: list[_ResolvedExam]) -> int:
        slots_by_invigilator: dict[str, list[Timeslot]] = defaultdict(list)
        for item in resolved:
            for invigilator in item.invigilators:
                slots_by_invigilator[invigilator.invigilator_id].append(item.gene.timeslot)
        return sum(_overlapping_pairs(slots) for slots in slots_by_invigilator.values())

    def _classroom_double_bookings(self, resolved: list[_ResolvedExam]) -> int:
        slots_by_room: dict[str, list[Timeslot]] = defaultdict(list)
        for item in resolved:
            slots_by_room[item.classroom.classroom_code].append(item.gene.timeslot)
        return sum(_overlapping_pairs(slots) for slots in slots_by_room.values())

    def _student_clashes(self, resolved: list[_ResolvedExam]) -> int:
        exams_by_student: dict[str, list[int]] = defaultdict(list)
        for index, item in enumerate(resolved):
            for student_id in item.course.student_ids:
                exams_by_student[student_id].append(index)

        clashing_pairs: set[tuple[int, int]] = set()
        for indices in exams_by_student.values():
            for position, first in enumerate(indices):
                for second in indices[position + 1:]:
                    pair = (min(first, second), max(first, second))
                    if pair in clashing_pairs:
                        continue
                    if resolved[first].exam_slot.overlaps(resolved[second].exam_slot):
                        clashing_pairs.add(pair)
        return len(clashing_pairs)

    @staticmethod
    def _capacity_violations(resolved: list[_ResolvedExam]) -> int:
        return sum(1 for item in resolved if item.classroom.capacity < len(item.course.student_ids))

    @staticmethod
    def _monitoring_limit_violations(resolved: list[_ResolvedExam]) -> int:
        load: Counter[str] = Counter()
        limits: dict[str, int] = {}
        for item in resolved:
            for invigilator in item.invigilators:
                load[invigilator.invigilator_id] += 1
                limits[invigilator.invigilator_id] = invigilator.max_courses_monitored_count
        return sum(max(0, count - limits[invigilator_id]) for invigilator_id, count in load.items())

    def _window_violations(self, resolved: list[_ResolvedExam]) -> int:
        window = self.problem.window
        holidays = self.problem.holidays
        return sum(1 for item in resolved if not window.contains(item.gene.timeslot, holidays))

    def _student_gap_satisfaction(self, resolved: list[_ResolvedExam]) -> float:
        min_gap_seconds = self.settings.min_student_gap_hours * 3600
        slots_by_student: dict[str, list[Timeslot]] = defaultdict(list)
        for item in resolved:
            for student_id in item.course.student_ids:
                slots_by_student[student_id].append(item.exam_slot)

        pairs = 0
        short_gaps = 0
        for slots in slots_by_student.values():
            ordered = sorted(slots, key=lambda slot: slot.start)
            for previous, current in zip(ordered, ordered[1:]):
                pairs += 1
                if (current.start - previous.end).total_seconds() < min_gap_seconds:
                    short_gaps += 1
        if pairs == 0:
            return 1.0
        return 1.0 - short_gaps / pairs

    def _workload_balance(self, resolved: list[_ResolvedExam]) -> float:
        load: Counter[str] = Counter({invigilator_id: 0 for invigilator_id in self.invigilators})
        for item in resolved:
            for invigilator in item.invigilators:
                load[invigilator.invigilator_id] += 1
        counts = list(load.values())
        if not counts:
            return 1.0
        mean = sum(counts) / len(counts)
        if mean == 0:
            return 1.0
        return 1.0 / (1.0 + pstdev(counts) / mean)

    @staticmethod
    def _classroom_utilization(resolved: list[_ResolvedExam]) -> float:
        if not resolved:
            return 1.0
        total = 0.0
        for item in resolved:
            if item.course.requires_pc_lab and not item.classroom.is_pc_lab:
                continue
            head_count = len(item.course.student_ids)
            total += 1.0 if head_count == 0 else min(1.0, head_count / item.classroom.capacity)
        return total / len(resolved)


def gene_distance(first: Chromosome, second: Chromosome) -> float:
    """Fraction of exam positions whose room, slot or invigilators differ."""
    size = max(len(first.encoded_exams), len(second.encoded_exams))
    if size == 0:
        return 0.0
    differing = sum(
        1
        for left, right in zip(first.encoded_exams, second.encoded_exams)
        if left.gene_key() != right.gene_key()
    )
    differing += abs(len(first.encoded_exams) - len(second.encoded_exams))
    return differing / size


def apply_fitness_sharing(population: list[Chromosome], *, radius: float, alpha: float = 1.0) -> None:
    """Divide every raw fitness by its niche count.

    Starts from ``raw_fitness`` each time, so calling it twice in a generation
    yields the same shared scores.
    """
    niche_counts = [1.0] * len(population)
    for i in range(len(population)):
        for j in range(i + 1, len(population)):
            distance = gene_distance(population[i], population[j])
            if distance >= radius:
                continue
            share = 1.0 - (distance / radius) ** alpha
            niche_counts[i] += share
            niche_counts[j] += share
    for chromosome, niche_count in zip(population, niche_counts):
        chromosome.fitness_score = chromosome.raw_fitness / niche_count


@dataclass
class FitnessTables:
    hard: dict[int, float]
    soft: dict[int, float]
    combined: dict[int, float]
    breakdowns: dict[int, FitnessBreakdown]

    @property
    def best_id(self) -> int | None:
        return next(iter(self.combined), None)

    @property
    def best_score(self) -> float | None:
        return next(iter(self.combined.values()), None)

    def average_combined(self) -> float:
        if not self.combined:
            return 0.0
        return sum(self.combined.values()) / len(self.combined)


def _sorted_descending(values: dict[int, float]) -> dict[int, float]:
    return dict(sorted(values.items(), key=lambda item: item[1], reverse=True))


def evaluate_population(
    evaluator: FitnessEvaluator,
    population: list[Chromosome],
    *,
    executor: Executor | None = None,
) -> FitnessTables:
    """Score every chromosome from scratch, then apply sharing once after the join."""
    if executor is not None:
        breakdowns = list(executor.map(evaluator.evaluate, population))
    else:
        breakdowns = [evaluator.evaluate(chromosome) for chromosome in population]

    for chromosome, breakdown in zip(population, breakdowns):
        chromosome.raw_fitness = breakdown.combined
        chromosome.fitness_score = breakdown.combined

    settings = evaluator.settings
    if settings.fitness_share:
        apply_fitness_sharing(population, radius=settings.sharing_radius, alpha=settings.sharing_alpha)

    tables = FitnessTables(
        hard=_sorted_descending({item.chromosome_id: item.hard_score for item in breakdowns}),
        soft=_sorted_descending({item.chromosome_id: item.soft_score for item in breakdowns}),
        combined=_sorted_descending({chromosome.chromosome_id: chromosome.fitness_score for chromosome in population}),
        breakdowns={item.chromosome_id: item for item in breakdowns},
    )
    for chromosome_id, score in tables.combined.items():
        logger.debug("Exam schedule %s scored %.6f", chromosome_id, score)
    return tables
