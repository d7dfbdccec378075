from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass, field
import logging
import random
from time import perf_counter

from examforge.core.exceptions import SchedulerError
from examforge.schemas.generator import EvolutionSettings, default_evolution_settings
from examforge.services.convergence import ConvergenceTracker
from examforge.services.crossover import Crossover
from examforge.services.entities import Chromosome, EncodedExam, IdSequence, ProblemInstance
from examforge.services.fitness import FitnessBreakdown, FitnessEvaluator, FitnessTables, evaluate_population
from examforge.services.initialization import PopulationInitializer
from examforge.services.mutation import Mutation
from examforge.services.replacement import Replacement
from examforge.services.selection import Selection, parent_count_for

logger = logging.getLogger(__name__)

STOP_MAX_GENERATIONS = "max_generations"
STOP_STAGNATION = "stagnation"


@dataclass
class GenerationReport:
    generation: int
    tables: FitnessTables
    best_chromosome: Chromosome
    schedules: dict[int, list[EncodedExam]]
    is_stable: bool


GenerationObserver = Callable[[GenerationReport], None]


@dataclass
class GenerationStats:
    generation: int
    best_fitness: float
    average_fitness: float
    best_so_far: float
    is_stable: bool


@dataclass
class EvolutionResult:
    best_chromosome: Chromosome
    best_breakdown: FitnessBreakdown
    best_fitness: float
    initial_best_fitness: float
    convergence_rate: float
    generations: int
    stop_reason: str
    settings: EvolutionSettings
    runtime_ms: int
    history: list[GenerationStats] = field(default_factory=list)


def validate_problem(problem: ProblemInstance) -> None:
    missing = [
        label
        for label, items in (
            ("courses", problem.courses),
            ("classrooms", problem.classrooms),
            ("invigilators", problem.invigilators),
            ("timeslots", problem.timeslots),
        )
        if not items
    ]
    if missing:
        raise SchedulerError(
            message=f"Exam timetable generation needs at least one of each: {', '.join(missing)}",
            details={"missing": missing},
        )


class ExamTimetableGA:
    """Generation controller.

    Owns the population, the fitness tables, the chromosome id sequence, the
    live operator rates and the convergence state. Operators receive a fresh
    random source per invocation, derived from the seeded controller source.
    """

    def __init__(
        self,
        problem: ProblemInstance,
        settings: EvolutionSettings | None = None,
        *,
        observers: Iterable[GenerationObserver] = (),
    ) -> None:
        validate_problem(problem)
        self.problem = problem
        self.settings = settings or default_evolution_settings()
        self.observers: list[GenerationObserver] = list(observers)
        self.evaluator = FitnessEvaluator(problem, self.settings)
        self.reset()

    def reset(self) -> None:
        """Restore the seeded random source, ids, live rates and convergence state."""
        self.random = random.Random(self.settings.random_seed)
        self.id_sequence = IdSequence()
        self.tracker = ConvergenceTracker(
            improvement_epsilon=self.settings.improvement_epsilon,
            stability_window=self.settings.stability_window,
            bump_after=self.settings.parameter_bump_generation,
        )

        self.low_mutation_rate = self.settings.low_mutation_rate
        self.high_mutation_rate = self.settings.high_mutation_rate
        self.crossover_rate = self.settings.crossover_rate

        self.population: list[Chromosome] = []
        self.tables: FitnessTables | None = None
        self.current_generation = 0
        self.best_chromosome: Chromosome | None = None
        self.best_breakdown: FitnessBreakdown | None = None
        self.best_fitness = float("-inf")

    @property
    def is_stable(self) -> bool:
        return self.tracker.is_stable

    def add_observer(self, observer: GenerationObserver) -> None:
        self.observers.append(observer)

    def _operator_random(self) -> random.Random:
        return random.Random(self.random.getrandbits(64))

    def initialize_population(self) -> list[Chromosome]:
        initializer = PopulationInitializer(self.problem, self.settings, self._operator_random())
        self.population = initializer.build_population(self.settings.population_size, self.id_sequence)
        return self.population

    def calculate_fitness(self, executor: Executor | None = None) -> FitnessTables:
        self.tables = evaluate_population(self.evaluator, self.population, executor=executor)
        self._track_best()
        self._notify_observers()
        return self.tables

    def population_best(self) -> float:
        return max(item.raw_fitness for item in self.population)

    def _track_best(self) -> None:
        leader = max(self.population, key=lambda item: item.raw_fitness)
        if leader.raw_fitness > self.best_fitness:
            self.best_fitness = leader.raw_fitness
            self.best_chromosome = leader.clone()
            self.best_breakdown = self.tables.breakdowns[leader.chromosome_id]

    def _notify_observers(self) -> None:
        if not self.observers:
            return
        leader_id = self.tables.best_id
        leader = next(item for item in self.population if item.chromosome_id == leader_id)
        report = GenerationReport(
            generation=self.current_generation,
            tables=self.tables,
            best_chromosome=leader.clone(),
            schedules={item.chromosome_id: [gene.copy() for gene in item.encoded_exams] for item in self.population},
            is_stable=self.is_stable,
        )
        for observer in self.observers:
            try:
                observer(report)
            except Exception:
                logger.exception("Generation observer failed | generation=%s", self.current_generation)

    def select_parents(self, generation: int) -> list[Chromosome]:
        selection = Selection(self._operator_random())
        count = parent_count_for(self.settings.population_size, self.settings.offspring_ratio)
        if generation >= self.settings.max_generations * self.settings.rank_selection_fraction:
            return selection.rank_selection(self.population, count)
        if self.is_stable:
            return selection.roulette_wheel_selection(self.population, count)
        return selection.tournament_selection(self.population, count, self.settings.tournament_size)

    def crossover(self, parents: list[Chromosome]) -> list[Chromosome]:
        crossover = Crossover(self._operator_random())
        if self.is_stable:
            return crossover.one_point_crossover(parents, self.id_sequence, self.crossover_rate)
        return crossover.two_point_crossover(parents, self.id_sequence, self.crossover_rate)

    def mutation(self, executor: Executor | None = None) -> list[int]:
        mutation = Mutation(self._operator_random(), draw_scale=self.settings.mutation_draw_scale)
        return mutation.mutate(self.population, self.low_mutation_rate, self.high_mutation_rate, executor=executor)

    def replacement(self, generation: int, children: list[Chromosome]) -> list[Chromosome]:
        replacement = Replacement(self._operator_random())
        if generation < self.settings.age_replacement_generation:
            return replacement.random_replacement(self.population, children, self.settings.population_size)
        return replacement.age_based_replacement(self.population, children, self.settings.population_size)

    def update_ages(self) -> None:
        for chromosome in self.population:
            chromosome.age += 1

    def bump_parameters(self) -> None:
        self.low_mutation_rate = min(1.0, self.low_mutation_rate + self.settings.low_mutation_rate_bump)
        self.high_mutation_rate = min(1.0, self.high_mutation_rate + self.settings.high_mutation_rate_bump)
        self.crossover_rate = min(1.0, self.crossover_rate + self.settings.crossover_rate_bump)
        logger.warning(
            "Parameters are changing | low_mutation_rate=%.4f | high_mutation_rate=%.4f | crossover_rate=%.4f",
            self.low_mutation_rate,
            self.high_mutation_rate,
            self.crossover_rate,
        )

    def run(self) -> EvolutionResult:
        """Run a full search from a fresh population; every call starts over."""
        self.reset()
        started = perf_counter()
        workers = self.settings.evaluation_workers
        pool = ThreadPoolExecutor(max_workers=workers) if workers > 1 else nullcontext()
        history: list[GenerationStats] = []

        logger.info(
            "EXAM GA START | exams=%s | classrooms=%s | invigilators=%s | timeslots=%s | population=%s | max_generations=%s",
            len(self.problem.courses),
            len(self.problem.classrooms),
            len(self.problem.invigilators),
            len(self.problem.timeslots),
            self.settings.population_size,
            self.settings.max_generations,
        )

        with pool as executor:
            self.current_generation = 0
            self.initialize_population()
            self.calculate_fitness(executor)
            initial_best = self.population_best()

            while (
                self.current_generation < self.settings.max_generations
                and self.tracker.generations_without_improvement < self.settings.generations_without_improvement
            ):
                self.current_generation += 1
                generation = self.current_generation
                self.update_ages()
                previous_best = self.population_best()

                parents = self.select_parents(generation)
                children = self.crossover(parents)
                self.mutation(executor)
                self.replacement(generation, children)
                self.calculate_fitness(executor)

                current_best = self.population_best()
                update = self.tracker.observe(previous_best, current_best)
                if update.bump_parameters:
                    self.bump_parameters()
                if update.became_stable:
                    logger.info("Switching to stable operators | generation=%s | selection=roulette | crossover=one_point", generation)
                elif update.left_stable:
                    logger.info(
                        "Leaving stable state | generation=%s | improved=%s | improvement=%.6f",
                        generation,
                        update.improved,
                        update.improvement,
                    )

                history.append(
                    GenerationStats(
                        generation=generation,
                        best_fitness=current_best,
                        average_fitness=self.tables.average_combined(),
                        best_so_far=self.best_fitness,
                        is_stable=self.is_stable,
                    )
                )
                logger.info(
                    "Generation %s | best=%.6f | previous=%.6f | improvement=%.6f | stable=%s | without_improvement=%s",
                    generation,
                    current_best,
                    previous_best,
                    update.improvement,
                    self.is_stable,
                    self.tracker.generations_without_improvement,
                )

        generations = self.current_generation
        convergence_rate = (self.best_fitness - initial_best) / generations if generations else 0.0
        stop_reason = STOP_MAX_GENERATIONS if generations >= self.settings.max_generations else STOP_STAGNATION
        runtime_ms = int((perf_counter() - started) * 1000)
        logger.info(
            "EXAM GA COMPLETE | generations=%s | best=%.6f | initial=%.6f | convergence_rate=%.8f | stop=%s | runtime_ms=%s",
            generations,
            self.best_fitness,
            initial_best,
            convergence_rate,
            stop_reason,
            runtime_ms,
        )
        return EvolutionResult(
            best_chromosome=self.best_chromosome,
            best_breakdown=self.best_breakdown,
            best_fitness=self.best_fitness,
            initial_best_fitness=initial_best,
            convergence_rate=convergence_rate,
            generations=generations,
            stop_reason=stop_reason,
            settings=self.settings,
            runtime_ms=runtime_ms,
            history=history,
        )
