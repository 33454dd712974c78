#!/usr/bin/env python3
"""
FAIRDICE - Game Flow & Console Tests

Validates:
1. Turn order: the user moves first iff the guess equals the committed bit
2. Die selection honours the first-pick rule and the counter strategy
3. Rolls index faces with the combined result of an N=F session
4. Every published transcript re-verifies
5. Integrity and input errors abort the game and reach the reporter
6. Console entry point: config errors, table output, interactive play
"""

import io
import itertools
import json
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from rich.console import Console

from config.dice_schema import parse_dice_set
from config.settings import FirstPickRule
from flows.dice_game import GameOrchestrator, GameReporter, InputCollector, Outcome, Party
from tools import dice_cli
from tools.fair_errors import FairDiceError, IntegrityViolation, OutOfRangeInput, UnavailableDie
from tools.fair_rng import Commitment, SeededEntropy, UniformSampler
from tools.fair_session import verify_transcript

DICE_TOKENS = ["2,2,4,4,9,9", "1,1,6,6,8,8", "3,3,5,5,7,7"]


class FixedSampler:
    def __init__(self, *values):
        self.values = list(values)

    def sample(self, range_max):
        value = self.values.pop(0)
        assert 0 <= value < range_max, (value, range_max)
        return value


class ScriptedCollector(InputCollector):
    def __init__(self, numbers, dice_choices=()):
        self.numbers = list(numbers)
        self.dice_choices = list(dice_choices)
        self.seen_commitments = []
        self.offered = []

    def choose_number(self, purpose, range_max, commitment):
        self.seen_commitments.append((purpose, commitment))
        return self.numbers.pop(0)

    def choose_die(self, dice, available):
        self.offered.append(list(available))
        return self.dice_choices.pop(0)


class FirstAvailableCollector(InputCollector):
    """Always answers 0 and takes the first die offered."""

    def choose_number(self, purpose, range_max, commitment):
        return 0

    def choose_die(self, dice, available):
        return available[0]


class RecordingReporter(GameReporter):
    def __init__(self):
        self.events = []

    def commitment_published(self, purpose, range_max, commitment):
        self.events.append(("commit", purpose, range_max))

    def session_finalized(self, transcript):
        self.events.append(("final", transcript.purpose, transcript.combined_result))

    def turn_order_decided(self, first_mover):
        self.events.append(("turn", first_mover))

    def die_selected(self, party, index, die):
        self.events.append(("die", party, index))

    def roll_started(self, party, die):
        self.events.append(("rolling", party, die.face_count))

    def roll_resolved(self, party, face_index, face):
        self.events.append(("roll", party, face_index, face))

    def game_finished(self, result):
        self.events.append(("finished", result.outcome))

    def game_aborted(self, error):
        self.events.append(("aborted", type(error).__name__))


def make_game(collector, sampler_values, first_pick=FirstPickRule.TURN_WINNER, reporter=None):
    dice = parse_dice_set(DICE_TOKENS, 6)
    game = GameOrchestrator(dice, collector, reporter, first_pick=first_pick,
                            entropy=SeededEntropy(11))
    game.sampler = FixedSampler(*sampler_values)
    return game


# ============================================================
# Orchestrator
# ============================================================

class TestGameOrchestrator(unittest.TestCase):

    def test_computer_first_game(self):
        """Missed guess: computer moves, picks first, user counters and wins."""
        collector = ScriptedCollector(numbers=[0, 4, 2], dice_choices=[2])
        reporter = RecordingReporter()
        game = make_game(collector, [1, 0, 3, 5], reporter=reporter)
        result = game.play()

        self.assertEqual(result.first_mover, Party.COMPUTER)
        self.assertEqual((result.computer_die, result.user_die), (0, 2))
        self.assertEqual(collector.offered, [[1, 2]])
        self.assertEqual(result.computer_roll, 2)   # die A, face index (4 + 3) % 6 = 1
        self.assertEqual(result.user_roll, 3)       # die C, face index (2 + 5) % 6 = 1
        self.assertEqual(result.outcome, Outcome.USER_WINS)
        self.assertEqual([t.purpose for t in result.transcripts],
                         ["turn_order", "roll:computer", "roll:user"])
        self.assertEqual(reporter.events[-1], ("finished", Outcome.USER_WINS))

    def test_turn_loser_picks_first(self):
        """Compensating rule: the user picks first, the computer counters."""
        collector = ScriptedCollector(numbers=[0, 4, 2], dice_choices=[0])
        game = make_game(collector, [1, 3, 5], first_pick=FirstPickRule.TURN_LOSER)
        result = game.play()

        self.assertEqual(result.first_mover, Party.COMPUTER)
        self.assertEqual(collector.offered, [[0, 1, 2]])
        self.assertEqual((result.user_die, result.computer_die), (0, 2))
        self.assertEqual(result.computer_roll, 3)
        self.assertEqual(result.user_roll, 2)
        self.assertEqual(result.outcome, Outcome.COMPUTER_WINS)

    def test_user_first_game(self):
        """Correct guess: the user moves and picks first, computer takes the best counter."""
        collector = ScriptedCollector(numbers=[0, 0, 0], dice_choices=[1])
        game = make_game(collector, [0, 2, 0])
        result = game.play()

        self.assertEqual(result.first_mover, Party.USER)
        self.assertEqual((result.user_die, result.computer_die), (1, 0))
        self.assertEqual(result.user_roll, 6)
        self.assertEqual(result.computer_roll, 2)
        self.assertEqual(result.outcome, Outcome.USER_WINS)
        self.assertEqual([t.purpose for t in result.transcripts],
                         ["turn_order", "roll:user", "roll:computer"])

    def test_tie(self):
        self.assertEqual(GameOrchestrator.compare(4, 4), Outcome.TIE)
        self.assertEqual(GameOrchestrator.compare(5, 4), Outcome.USER_WINS)
        self.assertEqual(GameOrchestrator.compare(-1, 4), Outcome.COMPUTER_WINS)

    def test_commitment_published_before_input(self):
        """The collector sees each commitment before it answers."""
        collector = ScriptedCollector(numbers=[0, 4, 2], dice_choices=[2])
        reporter = RecordingReporter()
        result = make_game(collector, [1, 0, 3, 5], reporter=reporter).play()

        self.assertEqual([c for _, c in collector.seen_commitments],
                         [t.commitment for t in result.transcripts])
        kinds = [e[0] for e in reporter.events]
        self.assertLess(kinds.index("commit"), kinds.index("final"))

    def test_random_games_verify(self):
        """Games on real entropy: every transcript re-verifies and rolls match faces."""
        dice = parse_dice_set(DICE_TOKENS, 6)
        for _ in range(10):
            result = GameOrchestrator(dice, FirstAvailableCollector()).play()
            for t in result.transcripts:
                verify_transcript(t)
            turn, *rolls = result.transcripts
            expected_first = Party.USER if turn.counterpart_input == turn.secret_value else Party.COMPUTER
            self.assertEqual(result.first_mover, expected_first)
            by_party = {t.purpose.split(":")[1]: t.combined_result for t in rolls}
            self.assertEqual(result.user_roll, dice[result.user_die].face(by_party["user"]))
            self.assertEqual(result.computer_roll, dice[result.computer_die].face(by_party["computer"]))
            self.assertNotEqual(result.user_die, result.computer_die)

    def test_audit_log(self):
        collector = ScriptedCollector(numbers=[0, 4, 2], dice_choices=[2])
        result = make_game(collector, [1, 0, 3, 5]).play()
        log = json.loads(result.to_audit_json())
        self.assertEqual(log["outcome"], "user")
        self.assertEqual(len(log["sessions"]), 3)
        self.assertEqual(log["sessions"][0]["range"], 2)
        self.assertEqual(log["sessions"][1]["range"], 6)

    def test_integrity_violation_aborts(self):
        reporter = RecordingReporter()
        game = make_game(ScriptedCollector(numbers=[0]), [1], reporter=reporter)
        with patch.object(Commitment, "verify", return_value=False):
            with self.assertRaises(IntegrityViolation):
                game.play()
        self.assertEqual(reporter.events[-1], ("aborted", "IntegrityViolation"))
        self.assertNotIn("finished", [e[0] for e in reporter.events])

    def test_out_of_range_input_propagates(self):
        reporter = RecordingReporter()
        game = make_game(ScriptedCollector(numbers=[2]), [1], reporter=reporter)
        with self.assertRaises(OutOfRangeInput):
            game.play()
        self.assertEqual(reporter.events[-1], ("aborted", "OutOfRangeInput"))

    def test_unavailable_die_aborts(self):
        """A taken or unknown die ends the game through the abort path."""
        for choice in (0, 7):
            reporter = RecordingReporter()
            collector = ScriptedCollector(numbers=[0], dice_choices=[choice])
            game = make_game(collector, [1, 0], reporter=reporter)
            with self.assertRaises(UnavailableDie) as ctx:
                game.play()
            self.assertIsInstance(ctx.exception, FairDiceError)
            self.assertEqual(ctx.exception.available, [1, 2])
            self.assertEqual(reporter.events[-1], ("aborted", "UnavailableDie"))

    def test_guess_decides_turn_order(self):
        """The user moves first exactly when the guess equals the committed bit."""
        for value, guess, expected in ((1, 1, Party.USER), (0, 0, Party.USER),
                                       (1, 0, Party.COMPUTER), (0, 1, Party.COMPUTER)):
            reporter = RecordingReporter()
            game = make_game(ScriptedCollector(numbers=[guess]), [value], reporter=reporter)
            self.assertEqual(game.determine_turn_order(), expected, (value, guess))
            self.assertEqual(reporter.events[-1], ("turn", expected))
            self.assertEqual(game.transcripts[0].secret_value, value)

    def test_each_game_has_its_own_transcripts(self):
        """Replaying on one orchestrator does not carry sessions over."""
        collector = ScriptedCollector(numbers=[0, 4, 2] * 2, dice_choices=[2, 2])
        game = make_game(collector, [1, 0, 3, 5] * 2)
        first, second = game.play(), game.play()
        self.assertEqual(len(first.transcripts), 3)
        self.assertEqual(len(second.transcripts), 3)
        self.assertEqual(len(json.loads(second.to_audit_json())["sessions"]), 3)
        self.assertNotEqual([t.commitment for t in first.transcripts],
                            [t.commitment for t in second.transcripts])

    def test_roll_started_names_party(self):
        reporter = RecordingReporter()
        make_game(ScriptedCollector(numbers=[0, 4, 2], dice_choices=[2]),
                  [1, 0, 3, 5], reporter=reporter).play()
        started = [e for e in reporter.events if e[0] == "rolling"]
        self.assertEqual(started, [("rolling", Party.COMPUTER, 6), ("rolling", Party.USER, 6)])

    def test_probability_matrix_capability(self):
        game = GameOrchestrator(parse_dice_set(DICE_TOKENS, 6), FirstAvailableCollector())
        matrix = game.probability_matrix()
        self.assertIs(matrix, game.probability_matrix())
        self.assertEqual(matrix[0][1].wins, 20)
        self.assertEqual(game.transcripts, [])


# ============================================================
# Console entry point
# ============================================================

class TestDiceCli(unittest.TestCase):

    def setUp(self):
        self.buf = io.StringIO()
        self.console = Console(file=self.buf, width=200, color_system=None)

    def test_too_few_dice(self):
        code = dice_cli.main(["2,2,4,4,9,9", "1,1,6,6,8,8"], console=self.console)
        self.assertEqual(code, dice_cli.EXIT_CONFIG)
        self.assertIn("At least 3", self.buf.getvalue())

    def test_short_die(self):
        code = dice_cli.main(["2,2,4,4,9", "1,1,6,6,8,8", "3,3,5,5,7,7"], console=self.console)
        self.assertEqual(code, dice_cli.EXIT_CONFIG)

    def test_bad_algorithm(self):
        code = dice_cli.main(DICE_TOKENS + ["--algorithm", "md5"], console=self.console)
        self.assertEqual(code, dice_cli.EXIT_CONFIG)

    def test_table_only(self):
        code = dice_cli.main(DICE_TOKENS + ["--table"], console=self.console)
        self.assertEqual(code, dice_cli.EXIT_OK)
        out = self.buf.getvalue()
        self.assertIn("20/36 (55.56%)", out)
        self.assertIn("- (33.33)", out)

    def test_help_then_exit(self):
        with patch.object(dice_cli.Prompt, "ask", side_effect=["?", "0", "x"]):
            code = dice_cli.main(DICE_TOKENS + ["--seed", "3"], console=self.console)
        self.assertEqual(code, dice_cli.EXIT_OK)
        out = self.buf.getvalue()
        self.assertIn("55.56%", out)
        self.assertIn("HMAC=", out)
        self.assertIn("Bye.", out)

    def test_full_game_with_reprompts(self):
        answers = itertools.cycle(["7", "nope", "2", "1", "0"])
        with patch.object(dice_cli.Prompt, "ask", side_effect=lambda *a, **k: next(answers)):
            code = dice_cli.main(DICE_TOKENS + ["--seed", "5", "--audit"], console=self.console)
        self.assertEqual(code, dice_cli.EXIT_OK)
        out = self.buf.getvalue()
        self.assertIn("Please enter one of", out)
        self.assertIn("Result", out)
        self.assertIn("verification_steps", out)

    def test_integrity_abort_exit_code(self):
        with patch.object(dice_cli.Prompt, "ask", return_value="0"), \
                patch.object(Commitment, "verify", return_value=False):
            code = dice_cli.main(DICE_TOKENS, console=self.console)
        self.assertEqual(code, dice_cli.EXIT_ABORTED)
        self.assertIn("Game aborted", self.buf.getvalue())

    def test_unavailable_die_exit_code(self):
        """A collector that bypasses re-prompting still ends in a clean abort."""
        with patch.object(dice_cli.Prompt, "ask", return_value="0"), \
                patch.object(dice_cli.ConsoleCollector, "choose_die", return_value=7):
            code = dice_cli.main(DICE_TOKENS + ["--seed", "3"], console=self.console)
        self.assertEqual(code, dice_cli.EXIT_ABORTED)
        self.assertIn("not available", self.buf.getvalue())

    def test_correct_guess_reported_as_user_first(self):
        """Console agrees with the revealed selection when the guess matches."""
        with patch.object(dice_cli.Prompt, "ask", side_effect=["1", "x"]), \
                patch.object(UniformSampler, "sample", return_value=1):
            code = dice_cli.main(DICE_TOKENS, console=self.console)
        self.assertEqual(code, dice_cli.EXIT_OK)
        out = self.buf.getvalue()
        self.assertIn("My selection: 1", out)
        self.assertIn("you make the first move", out)
        self.assertNotIn("I make the first move", out)


if __name__ == "__main__":
    unittest.main(verbosity=2)
