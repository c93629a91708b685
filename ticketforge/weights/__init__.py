"""Performance weights: static policy tables and the process-wide weight cache."""

from ticketforge.weights.policy import bayesian_win_rate, is_scorable_leg, score_leg
from ticketforge.weights.store import PerformanceWeightStore, performance_weights

__all__ = [
    "bayesian_win_rate",
    "is_scorable_leg",
    "score_leg",
    "PerformanceWeightStore",
    "performance_weights",
]
