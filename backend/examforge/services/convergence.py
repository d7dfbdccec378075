from __future__ import annotations

from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass
class ConvergenceUpdate:
    improvement: float
    improved: bool
    bump_parameters: bool
    became_stable: bool
    left_stable: bool


class ConvergenceTracker:
    """Exploring/stable state machine fed with the best fitness of consecutive generations.

    ``generations_without_improvement`` drives termination. The under-threshold
    counter is independent of it: reaching ``bump_after`` asks the controller to
    raise its rates, reaching ``stability_window`` marks the search stable and
    restarts the count. Any positive improvement leaves the stable state.
    """

    def __init__(
        self,
        *,
        improvement_epsilon: float = 0.0001,
        stability_window: int = 250,
        bump_after: int = 100,
    ) -> None:
        self.improvement_epsilon = improvement_epsilon
        self.stability_window = stability_window
        self.bump_after = bump_after
        self.is_stable = False
        self.generations_without_improvement = 0
        self.generations_under_threshold = 0

    def observe(self, previous_best: float, current_best: float) -> ConvergenceUpdate:
        was_stable = self.is_stable
        improvement = current_best - previous_best

        improved = current_best > previous_best
        if improved:
            self.generations_without_improvement = 0
            self.is_stable = False
        else:
            self.generations_without_improvement += 1

        if improvement < self.improvement_epsilon:
            self.generations_under_threshold += 1
        else:
            self.generations_under_threshold = 0
            self.is_stable = False

        bump = self.generations_under_threshold == self.bump_after
        became_stable = False
        if self.generations_under_threshold == self.stability_window:
            self.is_stable = True
            became_stable = not was_stable
            self.generations_under_threshold = 0
            logger.info("Search is stable after %s generations under the improvement threshold", self.stability_window)

        return ConvergenceUpdate(
            improvement=improvement,
            improved=improved,
            bump_parameters=bump,
            became_stable=became_stable,
            left_stable=was_stable and not self.is_stable,
        )
