"""
FAIRDICE - Game Flow

Sequences fair random sessions into one game between the user and the
computer:

  Turn order (N=2) → Die selection → Rolls (N=F, one per die) → Compare

The orchestrator owns no key material. Every random decision goes through a
commit/reveal session; interactive input comes from an InputCollector and
everything worth showing goes to a GameReporter.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from config.dice_schema import DiceSet, Die
from config.settings import FirstPickRule, get_settings
from sim_engine.dice import ProbabilityMatrix, ProbabilityMatrixEngine
from tools.fair_errors import FairDiceError, UnavailableDie
from tools.fair_rng import EntropySource, UniformSampler
from tools.fair_session import (
    CounterpartInput, Finalize, FinalizedSession, Reveal, SessionTranscript,
    open_session, transition,
)

logger = logging.getLogger("fairdice.game")


class Party(str, Enum):
    USER = "user"
    COMPUTER = "computer"

    @property
    def other(self) -> "Party":
        return Party.COMPUTER if self is Party.USER else Party.USER


class Outcome(str, Enum):
    USER_WINS = "user"
    COMPUTER_WINS = "computer"
    TIE = "tie"


# ═══════════════════════════════════════════════════════════════
# Collaborators
# ═══════════════════════════════════════════════════════════════

class InputCollector(ABC):
    """Supplies the user's side of every decision."""

    @abstractmethod
    def choose_number(self, purpose: str, range_max: int, commitment: str) -> int:
        """Return the user's contribution in [0, range_max) for a committed session."""
        ...

    @abstractmethod
    def choose_die(self, dice: DiceSet, available: list[int]) -> int:
        """Return the index (into ``dice``) of the die the user takes."""
        ...


class GameReporter:
    """Receives plain values as the game progresses. Default: ignore everything."""

    def commitment_published(self, purpose: str, range_max: int, commitment: str) -> None:
        pass

    def session_finalized(self, transcript: SessionTranscript) -> None:
        pass

    def turn_order_decided(self, first_mover: Party) -> None:
        pass

    def die_selected(self, party: Party, index: int, die: Die) -> None:
        pass

    def roll_started(self, party: Party, die: Die) -> None:
        pass

    def roll_resolved(self, party: Party, face_index: int, face: int) -> None:
        pass

    def game_finished(self, result: "GameResult") -> None:
        pass

    def game_aborted(self, error: Exception) -> None:
        pass


# ═══════════════════════════════════════════════════════════════
# Result
# ═══════════════════════════════════════════════════════════════

@dataclass
class GameResult:
    first_mover: Party
    user_die: int
    computer_die: int
    user_roll: int
    computer_roll: int
    outcome: Outcome
    transcripts: list[SessionTranscript] = field(default_factory=list)

    def audit_log(self) -> dict:
        """Full record of the game for independent verification."""
        return {
            "first_mover": self.first_mover.value,
            "user_die": self.user_die,
            "computer_die": self.computer_die,
            "user_roll": self.user_roll,
            "computer_roll": self.computer_roll,
            "outcome": self.outcome.value,
            "sessions": [t.verification_data() for t in self.transcripts],
        }

    def to_audit_json(self) -> str:
        return json.dumps(self.audit_log(), indent=2)


# ═══════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════

class GameOrchestrator:
    """Runs one game over a validated dice set."""

    def __init__(self, dice: DiceSet, collector: InputCollector,
                 reporter: GameReporter = None, *,
                 entropy: EntropySource = None,
                 first_pick: FirstPickRule = None,
                 algorithm: str = None,
                 engine: ProbabilityMatrixEngine = None):
        self.dice = dice
        self.collector = collector
        self.reporter = reporter or GameReporter()
        self.entropy = entropy
        self.sampler = UniformSampler(entropy)
        self.first_pick = FirstPickRule(first_pick or get_settings().first_pick)
        self.algorithm = algorithm
        self.engine = engine or ProbabilityMatrixEngine()
        self.transcripts: list[SessionTranscript] = []
        self._matrix: Optional[ProbabilityMatrix] = None

    # ── Capabilities ──────────────────────────────────────────

    def probability_matrix(self) -> ProbabilityMatrix:
        """Win-probability table; independent of any in-flight session."""
        if self._matrix is None:
            self._matrix = self.engine.compute_matrix(self.dice)
        return self._matrix

    # ── Stages ────────────────────────────────────────────────

    def _run_session(self, purpose: str, range_max: int) -> FinalizedSession:
        session = open_session(range_max, sampler=self.sampler, entropy=self.entropy,
                               algorithm=self.algorithm, purpose=purpose)
        self.reporter.commitment_published(purpose, range_max, session.commitment)

        value = self.collector.choose_number(purpose, range_max, session.commitment)
        session = transition(session, CounterpartInput(value))
        session = transition(session, Reveal())
        session = transition(session, Finalize())

        transcript = session.transcript()
        self.transcripts.append(transcript)
        self.reporter.session_finalized(transcript)
        return session

    def determine_turn_order(self) -> Party:
        """Computer commits to a bit and the user guesses it; a correct guess moves first."""
        session = self._run_session("turn_order", 2)
        first = Party.USER if session.counterpart_input == session.secret_value else Party.COMPUTER
        logger.info("Turn order: %s moves first", first.value)
        self.reporter.turn_order_decided(first)
        return first

    def _computer_pick(self, available: list[int], user_die: Optional[int]) -> int:
        if user_die is None:
            return available[self.sampler.sample(len(available))]
        return self.engine.best_counter(self.dice.dice, user_die, available)

    def select_dice(self, first_mover: Party) -> tuple[int, int]:
        """Alternate picks from the shared pool; returns (user_die, computer_die)."""
        picker = first_mover if self.first_pick is FirstPickRule.TURN_WINNER else first_mover.other
        available = list(range(len(self.dice)))
        chosen: dict[Party, int] = {}

        for party in (picker, picker.other):
            if party is Party.USER:
                index = self.collector.choose_die(self.dice, list(available))
                if index not in available:
                    raise UnavailableDie(index, available, len(self.dice))
            else:
                index = self._computer_pick(available, chosen.get(Party.USER))
            available.remove(index)
            chosen[party] = index
            logger.info("%s selects die %d %s", party.value, index, self.dice[index])
            self.reporter.die_selected(party, index, self.dice[index])

        return chosen[Party.USER], chosen[Party.COMPUTER]

    def roll(self, party: Party, die_index: int) -> int:
        """Fair roll of one die: the combined result indexes its faces."""
        die = self.dice[die_index]
        self.reporter.roll_started(party, die)
        session = self._run_session(f"roll:{party.value}", die.face_count)
        face = die.face(session.combined_result)
        self.reporter.roll_resolved(party, session.combined_result, face)
        return face

    @staticmethod
    def compare(user_roll: int, computer_roll: int) -> Outcome:
        if user_roll > computer_roll:
            return Outcome.USER_WINS
        if user_roll < computer_roll:
            return Outcome.COMPUTER_WINS
        return Outcome.TIE

    def play(self) -> GameResult:
        """Run the whole game. Protocol failures end it and propagate."""
        self.transcripts = []
        try:
            first = self.determine_turn_order()
            user_die, computer_die = self.select_dice(first)

            rolls: dict[Party, int] = {}
            for party in (first, first.other):
                rolls[party] = self.roll(party, user_die if party is Party.USER else computer_die)

            result = GameResult(
                first_mover=first,
                user_die=user_die,
                computer_die=computer_die,
                user_roll=rolls[Party.USER],
                computer_roll=rolls[Party.COMPUTER],
                outcome=self.compare(rolls[Party.USER], rolls[Party.COMPUTER]),
                transcripts=list(self.transcripts),
            )
        except FairDiceError as e:
            logger.error("Game aborted: %s", e)
            self.reporter.game_aborted(e)
            raise

        logger.info("Game finished: %s (user %d vs computer %d)",
                    result.outcome.value, result.user_roll, result.computer_roll)
        self.reporter.game_finished(result)
        return result
