from examforge.models.evolution_run import (  # noqa: F401
    EvolutionRun,
    EvolutionRunStatus,
    FitnessHistoryEntry,
)
