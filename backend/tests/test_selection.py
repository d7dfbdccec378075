import random
from collections import Counter

import pytest

from examforge.core.exceptions import DegeneratePopulationError
from examforge.services.entities import Chromosome
from examforge.services.selection import Selection, parent_count_for


def scored_population(scores):
    population = []
    for index, score in enumerate(scores):
        chromosome = Chromosome(chromosome_id=index, encoded_exams=[])
        chromosome.fitness_score = score
        population.append(chromosome)
    return population


@pytest.mark.parametrize(
    ("population_size", "ratio", "expected"),
    [(10, 0.5, 4), (10, 0.6, 6), (2, 0.1, 2), (7, 1.0, 6), (3, 0.5, 2)],
)
def test_parent_count_is_even_and_bounded(population_size, ratio, expected):
    assert parent_count_for(population_size, ratio) == expected


def test_tournament_with_full_sample_always_picks_the_best():
    population = scored_population([0.1, 0.7, 0.3, 0.2])
    parents = Selection(random.Random(1)).tournament_selection(population, 6, tournament_size=4)

    assert len(parents) == 6
    assert all(parent.chromosome_id == 1 for parent in parents)


def test_tournament_never_returns_the_worst_member():
    population = scored_population([0.1, 0.7, 0.3, 0.2, 0.5])
    parents = Selection(random.Random(3)).tournament_selection(population, 200, tournament_size=2)

    assert 0 not in {parent.chromosome_id for parent in parents}


def test_roulette_handles_equal_zero_and_negative_scores():
    selection = Selection(random.Random(5))

    equal = scored_population([0.5, 0.5, 0.5])
    assert len(selection.roulette_wheel_selection(equal, 8)) == 8

    zeros = scored_population([0.0, 0.0])
    assert len(selection.roulette_wheel_selection(zeros, 6)) == 6

    # Shifted by the minimum, so the lowest member gets an empty slice.
    negative = scored_population([-3.0, -1.0, -2.0])
    picks = Counter(parent.chromosome_id for parent in selection.roulette_wheel_selection(negative, 400))
    assert picks[1] > picks[2]
    assert 0 not in picks


def test_roulette_picks_in_proportion_to_positive_fitness():
    near_equal = scored_population([0.50, 0.51])
    picks = Counter(
        parent.chromosome_id for parent in Selection(random.Random(0)).roulette_wheel_selection(near_equal, 1000)
    )
    assert 400 < picks[0] < 600
    assert 400 < picks[1] < 600

    skewed = scored_population([0.2, 0.6, 0.2])
    picks = Counter(
        parent.chromosome_id for parent in Selection(random.Random(4)).roulette_wheel_selection(skewed, 2000)
    )
    assert 0.5 < picks[1] / 2000 < 0.7
    assert picks[0] > 0 and picks[2] > 0


def test_rank_selection_favours_higher_ranks():
    population = scored_population([0.01, 1000.0, 0.02, 0.03])
    picks = Counter(parent.chromosome_id for parent in Selection(random.Random(9)).rank_selection(population, 2000))

    # Weights are ranks 1..4, so the outlier is picked about 40% of the time, not ~100%.
    assert 0.3 < picks[1] / 2000 < 0.5
    assert picks[1] > picks[3] > picks[0]


def test_empty_population_is_rejected():
    selection = Selection(random.Random(0))
    with pytest.raises(DegeneratePopulationError):
        selection.tournament_selection([], 2)
    with pytest.raises(DegeneratePopulationError):
        selection.roulette_wheel_selection([], 2)
    with pytest.raises(DegeneratePopulationError):
        selection.rank_selection([], 2)
