from __future__ import annotations

import logging
import random

from examforge.services.entities import Chromosome, EncodedExam, IdSequence

logger = logging.getLogger(__name__)


def _copy_genes(genes: list[EncodedExam]) -> list[EncodedExam]:
    return [gene.copy() for gene in genes]


class Crossover:
    """Positional recombination of parent pairs.

    Parents are paired in order (0 with 1, 2 with 3, ...); an odd trailing
    parent is ignored. Children never share gene objects with their parents.
    """

    def __init__(self, rng: random.Random) -> None:
        self.random = rng

    def one_point_crossover(
        self,
        parents: list[Chromosome],
        id_sequence: IdSequence,
        crossover_rate: float,
    ) -> list[Chromosome]:
        return self._recombine(parents, id_sequence, crossover_rate, self._one_point)

    def two_point_crossover(
        self,
        parents: list[Chromosome],
        id_sequence: IdSequence,
        crossover_rate: float,
    ) -> list[Chromosome]:
        return self._recombine(parents, id_sequence, crossover_rate, self._two_point)

    def _recombine(self, parents, id_sequence, crossover_rate, operator) -> list[Chromosome]:
        children: list[Chromosome] = []
        for index in range(0, len(parents) - 1, 2):
            first, second = parents[index], parents[index + 1]
            if len(first.encoded_exams) != len(second.encoded_exams):
                raise ValueError(
                    f"Parents {first.chromosome_id} and {second.chromosome_id} encode different exam counts"
                )
            if len(first.encoded_exams) >= 2 and self.random.random() < crossover_rate:
                genes_a, genes_b = operator(first.encoded_exams, second.encoded_exams)
            else:
                genes_a, genes_b = first.encoded_exams, second.encoded_exams
            children.append(Chromosome(chromosome_id=id_sequence.next_id(), encoded_exams=_copy_genes(genes_a)))
            children.append(Chromosome(chromosome_id=id_sequence.next_id(), encoded_exams=_copy_genes(genes_b)))
        return children

    def _one_point(self, first: list[EncodedExam], second: list[EncodedExam]):
        cut = self.random.randint(1, len(first) - 1)
        return first[:cut] + second[cut:], second[:cut] + first[cut:]

    def _two_point(self, first: list[EncodedExam], second: list[EncodedExam]):
        if len(first) < 3:
            return self._one_point(first, second)
        left, right = sorted(self.random.sample(range(1, len(first)), 2))
        return (
            first[:left] + second[left:right] + first[right:],
            second[:left] + first[left:right] + second[right:],
        )
