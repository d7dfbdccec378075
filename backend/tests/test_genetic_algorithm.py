from dataclasses import replace

import pytest

from conftest import build_problem
from examforge.core.exceptions import SchedulerError
from examforge.schemas.generator import EvolutionSettings
from examforge.services.genetic_algorithm import (
    STOP_MAX_GENERATIONS,
    STOP_STAGNATION,
    ExamTimetableGA,
)
from examforge.services.mutation import Mutation


def test_seeded_run_reaches_max_generations_with_monotonic_best(problem, evolution_settings):
    reports = []
    engine = ExamTimetableGA(problem, evolution_settings, observers=[reports.append])

    result = engine.run()

    assert result.generations == 50
    assert result.stop_reason == STOP_MAX_GENERATIONS
    assert result.best_fitness >= result.initial_best_fitness
    assert result.convergence_rate == pytest.approx((result.best_fitness - result.initial_best_fitness) / 50)
    assert len(result.best_chromosome.encoded_exams) == 5
    assert len(engine.population) == 10
    assert len(result.history) == 50

    best_so_far = [item.best_so_far for item in result.history]
    assert best_so_far == sorted(best_so_far)
    assert [report.generation for report in reports] == list(range(51))
    assert all(len(report.tables.combined) == 10 for report in reports)


def test_same_seed_gives_the_same_run(problem, evolution_settings):
    first = ExamTimetableGA(problem, evolution_settings).run()
    second = ExamTimetableGA(problem, evolution_settings).run()

    assert first.best_fitness == second.best_fitness
    assert [item.best_fitness for item in first.history] == [item.best_fitness for item in second.history]


def test_chromosome_ids_are_never_reused(problem, evolution_settings):
    seen = set()
    engine = ExamTimetableGA(problem, evolution_settings.model_copy(update={"max_generations": 10}))

    def collect(report):
        seen.update(report.tables.combined)

    engine.add_observer(collect)
    engine.run()

    assert engine.id_sequence.peek >= len(seen)
    assert max(seen) < engine.id_sequence.peek


def test_stagnation_tolerance_stops_the_loop(problem):
    settings = EvolutionSettings(
        population_size=6,
        max_generations=500,
        generations_without_improvement=3,
        tournament_size=2,
        random_seed=7,
    )
    result = ExamTimetableGA(problem, settings).run()

    assert result.stop_reason == STOP_STAGNATION
    assert result.generations < 500


def test_sharing_and_parallel_evaluation_run_end_to_end(problem):
    settings = EvolutionSettings(
        population_size=8,
        max_generations=15,
        fitness_share=True,
        evaluation_workers=3,
        random_seed=3,
        tournament_size=2,
    )
    result = ExamTimetableGA(problem, settings).run()

    assert result.generations == 15
    assert result.best_breakdown.chromosome_id == result.best_chromosome.chromosome_id


def test_late_generations_switch_operators(problem, evolution_settings):
    engine = ExamTimetableGA(problem, evolution_settings)
    engine.initialize_population()
    engine.calculate_fitness()

    engine.tracker.is_stable = True
    assert len(engine.crossover(engine.select_parents(1))) == 4
    assert len(engine.select_parents(40)) == 4

    children = engine.crossover(engine.select_parents(2))
    evicted = engine.replacement(150, children)
    assert len(engine.population) == 10
    assert len(evicted) == len(children)


def test_parameter_bump_is_additive_and_capped(problem, evolution_settings):
    engine = ExamTimetableGA(problem, evolution_settings)
    engine.bump_parameters()

    assert engine.low_mutation_rate == pytest.approx(0.006)
    assert engine.high_mutation_rate == pytest.approx(0.08)
    assert engine.crossover_rate == pytest.approx(0.82)

    engine.crossover_rate = 0.995
    engine.bump_parameters()
    assert engine.crossover_rate == 1.0


def test_empty_problem_is_rejected():
    problem = replace(build_problem(), classrooms=())
    with pytest.raises(SchedulerError) as exc_info:
        ExamTimetableGA(problem, EvolutionSettings(population_size=4, tournament_size=2))
    assert exc_info.value.details == {"missing": ["classrooms"]}


def test_survivors_age_by_one_and_children_enter_at_zero(problem, evolution_settings):
    engine = ExamTimetableGA(problem, evolution_settings)
    engine.initialize_population()
    engine.calculate_fitness()
    for index, chromosome in enumerate(engine.population):
        chromosome.age = index

    engine.update_ages()
    assert [item.age for item in engine.population] == list(range(1, 11))

    survivors = {item.chromosome_id for item in engine.population[:6]}
    children = engine.crossover(engine.select_parents(1))
    engine.replacement(150, children)

    child_ids = {item.chromosome_id for item in children}
    assert {item.chromosome_id for item in engine.population} == survivors | child_ids
    for chromosome in engine.population:
        expected = 0 if chromosome.chromosome_id in child_ids else chromosome.chromosome_id + 1
        assert chromosome.age == expected


def test_run_ages_every_survivor_once_per_generation(problem, evolution_settings):
    engine = ExamTimetableGA(problem, evolution_settings.model_copy(update={"max_generations": 8}))
    previous_ages: dict[int, int] = {}
    mismatches = []
    generations = []

    def check_ages(report):
        generations.append(report.generation)
        ages = {item.chromosome_id: item.age for item in engine.population}
        for chromosome_id, age in ages.items():
            expected = previous_ages[chromosome_id] + 1 if chromosome_id in previous_ages else 0
            if age != expected:
                mismatches.append((report.generation, chromosome_id, age, expected))
        previous_ages.clear()
        previous_ages.update(ages)

    engine.add_observer(check_ages)
    engine.run()

    assert generations == list(range(9))
    assert mismatches == []


def test_parameter_bump_reaches_the_next_mutation(problem, evolution_settings, monkeypatch):
    # Every generation stays under a threshold this large, so the bump fires at generation 2 only.
    settings = evolution_settings.model_copy(
        update={"max_generations": 5, "improvement_epsilon": 10.0, "parameter_bump_generation": 2, "stability_window": 1000}
    )
    rates_used = []
    original_mutate = Mutation.mutate

    def recording_mutate(self, population, low_mutation_rate, high_mutation_rate, executor=None):
        rates_used.append((low_mutation_rate, high_mutation_rate))
        return original_mutate(self, population, low_mutation_rate, high_mutation_rate, executor=executor)

    monkeypatch.setattr(Mutation, "mutate", recording_mutate)
    engine = ExamTimetableGA(problem, settings)
    engine.run()

    assert rates_used[:2] == [(0.005, 0.07)] * 2
    assert rates_used[2:] == [(pytest.approx(0.006), pytest.approx(0.08))] * 3
    assert engine.crossover_rate == pytest.approx(0.82)


def test_run_starts_over_on_every_call(problem, evolution_settings):
    engine = ExamTimetableGA(problem, evolution_settings.model_copy(update={"max_generations": 10}))

    first = engine.run()
    first_ids = engine.id_sequence.peek
    second = engine.run()

    assert second.best_fitness == first.best_fitness
    assert second.initial_best_fitness == first.initial_best_fitness
    assert engine.id_sequence.peek == first_ids
    assert engine.current_generation == 10
