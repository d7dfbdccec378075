from examforge.services.convergence import ConvergenceTracker


def test_stable_after_exactly_250_flat_generations_and_reset_on_improvement():
    tracker = ConvergenceTracker()
    best = 0.5
    for generation in range(1, 250):
        update = tracker.observe(best, best)
        assert not tracker.is_stable, generation
        assert update.became_stable is False

    update = tracker.observe(best, best)
    assert tracker.is_stable
    assert update.became_stable
    assert tracker.generations_without_improvement == 250

    update = tracker.observe(best, best + 0.01)
    assert not tracker.is_stable
    assert update.left_stable
    assert tracker.generations_without_improvement == 0
    assert tracker.generations_under_threshold == 0


def test_tiny_improvement_leaves_stability_but_keeps_threshold_count():
    tracker = ConvergenceTracker(stability_window=3, bump_after=2)
    for _ in range(3):
        tracker.observe(1.0, 1.0)
    assert tracker.is_stable

    tracker.observe(1.0, 1.00001)
    assert not tracker.is_stable
    assert tracker.generations_without_improvement == 0
    assert tracker.generations_under_threshold == 1


def test_parameter_bump_fires_once_at_the_threshold():
    tracker = ConvergenceTracker()
    bumps = [tracker.observe(0.3, 0.3).bump_parameters for _ in range(150)]

    assert bumps.count(True) == 1
    assert bumps.index(True) == 99


def test_worse_generation_counts_as_no_improvement():
    tracker = ConvergenceTracker()
    tracker.observe(0.8, 0.6)
    tracker.observe(0.6, 0.6)

    assert tracker.generations_without_improvement == 2
    assert tracker.generations_under_threshold == 2
