from __future__ import annotations

import random

from examforge.core.exceptions import DegeneratePopulationError
from examforge.services.entities import Chromosome


class Replacement:
    """Merges children into the population and restores its configured size in place."""

    def __init__(self, rng: random.Random) -> None:
        self.random = rng

    @staticmethod
    def _eviction_count(population: list[Chromosome], children: list[Chromosome], population_size: int) -> int:
        if len(children) > population_size:
            raise DegeneratePopulationError(
                "More children than the population can hold",
                details={"children": len(children), "population_size": population_size},
            )
        return max(0, len(population) + len(children) - population_size)

    def random_replacement(
        self,
        population: list[Chromosome],
        children: list[Chromosome],
        population_size: int,
    ) -> list[Chromosome]:
        count = self._eviction_count(population, children, population_size)
        evicted = self.random.sample(population, count)
        return self._merge(population, children, evicted)

    def age_based_replacement(
        self,
        population: list[Chromosome],
        children: list[Chromosome],
        population_size: int,
    ) -> list[Chromosome]:
        count = self._eviction_count(population, children, population_size)
        candidates = list(population)
        # Shuffle first so the stable sort breaks age ties randomly.
        self.random.shuffle(candidates)
        candidates.sort(key=lambda item: item.age, reverse=True)
        return self._merge(population, children, candidates[:count])

    @staticmethod
    def _merge(
        population: list[Chromosome],
        children: list[Chromosome],
        evicted: list[Chromosome],
    ) -> list[Chromosome]:
        evicted_ids = {id(item) for item in evicted}
        population[:] = [item for item in population if id(item) not in evicted_ids]
        for child in children:
            child.age = 0
        population.extend(children)
        return evicted
