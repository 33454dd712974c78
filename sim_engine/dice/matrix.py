"""
FAIRDICE - Pairwise Win-Probability Engine

Exact head-to-head odds for every ordered pair of dice by enumerating all F×F
face pairs. Ties count for neither side, so P(i beats j) + P(j beats i) <= 1.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Optional, Sequence

from config.dice_schema import Die

logger = logging.getLogger("fairdice.matrix")

# Display value for the diagonal: a die never plays itself.
DIAGONAL_BASELINE = 100 / 3


@dataclass(frozen=True)
class ProbabilityCell:
    """Odds of one die beating another."""
    wins: int
    total: int
    ties: int = 0

    @property
    def percentage(self) -> float:
        return 100 * self.wins / self.total if self.total else 0.0

    @property
    def losses(self) -> int:
        return self.total - self.wins - self.ties

    @property
    def fraction(self) -> str:
        return f"{self.wins}/{self.total}"

    def as_triple(self) -> tuple[int, int, float]:
        return (self.wins, self.total, self.percentage)

    def to_dict(self) -> dict:
        return {
            "wins": self.wins,
            "ties": self.ties,
            "total": self.total,
            "fraction": self.fraction,
            "percentage": round(self.percentage, 2),
        }


@dataclass
class DuelSimResult:
    """Monte Carlo estimate for one ordered pair."""
    rounds: int
    wins: int
    ties: int
    exact_percentage: float

    @property
    def measured_percentage(self) -> float:
        return 100 * self.wins / self.rounds if self.rounds else 0.0

    @property
    def delta(self) -> float:
        return abs(self.measured_percentage - self.exact_percentage)

    def to_dict(self) -> dict:
        return {
            "rounds": self.rounds,
            "wins": self.wins,
            "ties": self.ties,
            "measured_percentage": round(self.measured_percentage, 4),
            "exact_percentage": round(self.exact_percentage, 4),
            "delta": round(self.delta, 4),
        }


ProbabilityMatrix = list[list[Optional[ProbabilityCell]]]


class ProbabilityMatrixEngine:
    """Computes win probabilities for ordered pairs of dice."""

    def compare(self, first: Die, second: Die) -> ProbabilityCell:
        """Exact odds that ``first`` rolls strictly higher than ``second``."""
        wins = ties = 0
        for a in first.faces:
            for b in second.faces:
                if a > b:
                    wins += 1
                elif a == b:
                    ties += 1
        return ProbabilityCell(wins=wins, total=len(first.faces) * len(second.faces), ties=ties)

    def compute_matrix(self, dice: Sequence[Die]) -> ProbabilityMatrix:
        """n×n grid; cell (i, j) is die i against die j, diagonal is None."""
        dice = list(dice)
        matrix = [
            [None if i == j else self.compare(a, b) for j, b in enumerate(dice)]
            for i, a in enumerate(dice)
        ]
        logger.debug("Computed %dx%d probability matrix", len(dice), len(dice))
        return matrix

    def best_counter(self, dice: Sequence[Die], against: int,
                     available: Sequence[int] = None) -> int:
        """Index of the available die with the best odds against ``dice[against]``.

        Ties on percentage go to the lower index.
        """
        candidates = [i for i in (available if available is not None else range(len(dice)))
                      if i != against]
        if not candidates:
            raise ValueError("No die available to counter with")
        opponent = dice[against]
        return max(candidates, key=lambda i: (self.compare(dice[i], opponent).percentage, -i))

    def simulate(self, first: Die, second: Die, rounds: int = 100_000,
                 seed: int = 42) -> DuelSimResult:
        """Cross-check ``compare`` by rolling both dice ``rounds`` times."""
        rng = random.Random(seed)
        wins = ties = 0
        for _ in range(rounds):
            a = rng.choice(first.faces)
            b = rng.choice(second.faces)
            if a > b:
                wins += 1
            elif a == b:
                ties += 1
        return DuelSimResult(
            rounds=rounds, wins=wins, ties=ties,
            exact_percentage=self.compare(first, second).percentage,
        )
