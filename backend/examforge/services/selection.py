from __future__ import annotations

import random

from examforge.core.exceptions import DegeneratePopulationError
from examforge.services.entities import Chromosome


def parent_count_for(population_size: int, offspring_ratio: float) -> int:
    """Even number of parents, at least one pair, never more than the population."""
    count = max(2, int(round(population_size * offspring_ratio)))
    count = min(count, population_size)
    return count - count % 2


class Selection:
    def __init__(self, rng: random.Random) -> None:
        self.random = rng

    @staticmethod
    def _require_population(population: list[Chromosome]) -> None:
        if not population:
            raise DegeneratePopulationError("Cannot select parents from an empty population")

    def tournament_selection(
        self,
        population: list[Chromosome],
        parent_count: int,
        tournament_size: int = 3,
    ) -> list[Chromosome]:
        self._require_population(population)
        size = max(1, min(tournament_size, len(population)))
        parents: list[Chromosome] = []
        while len(parents) < parent_count:
            contenders = self.random.sample(population, size)
            parents.append(max(contenders, key=lambda item: item.fitness_score))
        return parents

    def roulette_wheel_selection(self, population: list[Chromosome], parent_count: int) -> list[Chromosome]:
        self._require_population(population)
        scores = [item.fitness_score for item in population]
        # Shift only when needed to make every slice non-negative.
        floor = min(0.0, min(scores))
        weights = [score - floor for score in scores]
        if sum(weights) <= 0:
            # Nothing to weigh by: the wheel is uniform.
            return [self.random.choice(population) for _ in range(parent_count)]
        return self.random.choices(population, weights=weights, k=parent_count)

    def rank_selection(self, population: list[Chromosome], parent_count: int) -> list[Chromosome]:
        self._require_population(population)
        ranked = sorted(population, key=lambda item: item.fitness_score)
        weights = list(range(1, len(ranked) + 1))
        return self.random.choices(ranked, weights=weights, k=parent_count)
