from __future__ import annotations

from concurrent.futures import Executor
import logging
import random

from examforge.services.entities import Chromosome

logger = logging.getLogger(__name__)


def swap_mutation(chromosome: Chromosome, first: int, second: int) -> None:
    """Exchange timeslot and classroom of two exams; invigilators stay with their exam."""
    if first == second:
        raise ValueError("Swap mutation needs two distinct positions")
    genes = chromosome.encoded_exams
    genes[first].timeslot, genes[second].timeslot = genes[second].timeslot, genes[first].timeslot
    genes[first].classroom_code, genes[second].classroom_code = genes[second].classroom_code, genes[first].classroom_code


class Mutation:
    """Adaptive swap mutation.

    Chromosomes scoring below the population average get the high rate, the
    others the low rate. Each chromosome draws once from
    ``uniform(0, draw_scale)`` and mutates when the draw does not exceed its
    rate. Every chromosome gets its own random source, so swaps can run in
    parallel without sharing draws.
    """

    def __init__(self, rng: random.Random, *, draw_scale: float = 0.1) -> None:
        self.random = rng
        self.draw_scale = draw_scale

    def mutation_rates(
        self,
        population: list[Chromosome],
        low_mutation_rate: float,
        high_mutation_rate: float,
    ) -> dict[int, float]:
        if not population:
            return {}
        threshold = sum(item.fitness_score for item in population) / len(population)
        return {
            item.chromosome_id: high_mutation_rate if item.fitness_score < threshold else low_mutation_rate
            for item in population
        }

    def mutate(
        self,
        population: list[Chromosome],
        low_mutation_rate: float,
        high_mutation_rate: float,
        executor: Executor | None = None,
    ) -> list[int]:
        """Mutate the population in place and return the ids that were swapped."""
        rates = self.mutation_rates(population, low_mutation_rate, high_mutation_rate)
        jobs: list[tuple[Chromosome, random.Random]] = []
        for chromosome in population:
            local_random = random.Random(self.random.getrandbits(64))
            if local_random.random() * self.draw_scale <= rates[chromosome.chromosome_id]:
                jobs.append((chromosome, local_random))

        if executor is not None:
            list(executor.map(lambda job: self.random_swap(*job), jobs))
        else:
            for chromosome, local_random in jobs:
                self.random_swap(chromosome, local_random)

        mutated = [chromosome.chromosome_id for chromosome, _ in jobs]
        logger.debug("Swap mutation applied | mutated=%s | population=%s", len(mutated), len(population))
        return mutated

    @staticmethod
    def random_swap(chromosome: Chromosome, rng: random.Random) -> bool:
        size = len(chromosome.encoded_exams)
        if size < 2:
            return False
        first, second = rng.sample(range(size), 2)
        swap_mutation(chromosome, first, second)
        return True
