"""
FAIRDICE - Dice Analysis

Usage:
    from sim_engine.dice import ProbabilityMatrixEngine
    engine = ProbabilityMatrixEngine()
    matrix = engine.compute_matrix(dice_set)
    matrix[0][1].percentage
"""

from sim_engine.dice.matrix import (
    DIAGONAL_BASELINE,
    DuelSimResult,
    ProbabilityCell,
    ProbabilityMatrix,
    ProbabilityMatrixEngine,
)

__all__ = [
    "DIAGONAL_BASELINE",
    "DuelSimResult",
    "ProbabilityCell",
    "ProbabilityMatrix",
    "ProbabilityMatrixEngine",
]
