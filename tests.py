#!/usr/bin/env python3
"""
FAIRDICE - Core Test Suite

Run: python tests.py
     python tests.py -v                # verbose
     python tests.py TestCommitment    # run specific class

Test categories:
  TestSettings           - env + override loading, validation
  TestUniformSampler     - range, rejection sampling, uniformity
  TestCommitment         - HMAC commit/verify, tamper detection
  TestFairSession        - state machine, combine, integrity
  TestDiceSchema         - die / dice-set parsing and validation
  TestProbabilityMatrix  - exact odds, complements, best counter
"""

import dataclasses
import hashlib
import hmac
import json
import os
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from pydantic import ValidationError

from config.dice_schema import DiceSet, make_dice_set, make_die, parse_dice_set, parse_die
from config.settings import FirstPickRule, load_settings
from sim_engine.dice import ProbabilityMatrixEngine
from tools.fair_errors import (
    IllegalTransition, IntegrityViolation, InvalidDiceConfiguration, InvalidRange, OutOfRangeInput,
)
from tools.fair_rng import Commitment, SeededEntropy, UniformSampler, chi_square_uniformity, new_secret_key
from tools.fair_session import (
    CommittedSession, CounterpartInput, Finalize, FinalizedSession, Reveal, SessionState,
    create_session, open_session, transition, verify_transcript,
)

# Chi-square critical values at p = 0.0001
CHI2_CRIT = {1: 15.137, 5: 25.745}

DIE_A = [2, 2, 4, 4, 9, 9]
DIE_B = [1, 1, 6, 6, 8, 8]


class ScriptedEntropy:
    """Hands out pre-set byte chunks, recording each request size."""

    def __init__(self, *chunks):
        self.chunks = list(chunks)
        self.requests = []

    def __call__(self, n):
        self.requests.append(n)
        return self.chunks.pop(0)


class FixedSampler:
    """Sampler stub returning a scripted sequence of values."""

    def __init__(self, *values):
        self.values = list(values)

    def sample(self, range_max):
        value = self.values.pop(0)
        assert 0 <= value < range_max, (value, range_max)
        return value


def run_to_final(session, counterpart_input):
    session = transition(session, CounterpartInput(counterpart_input))
    session = transition(session, Reveal())
    return transition(session, Finalize())


# ============================================================
# Settings
# ============================================================

class TestSettings(unittest.TestCase):

    def test_defaults(self):
        """Defaults match the documented protocol parameters."""
        with patch.dict(os.environ, {}, clear=True):
            s = load_settings()
        self.assertEqual(s.face_count, 6)
        self.assertEqual(s.hmac_algorithm, "sha3_256")
        self.assertEqual(s.key_bytes, 32)
        self.assertEqual(s.sampler_bits, 32)
        self.assertEqual(s.first_pick, FirstPickRule.TURN_WINNER)

    def test_env_and_overrides(self):
        """Environment values load; explicit overrides win."""
        with patch.dict(os.environ, {"FAIRDICE_FACE_COUNT": "8",
                                     "FAIRDICE_FIRST_PICK": "turn_loser"}):
            s = load_settings()
            self.assertEqual(s.face_count, 8)
            self.assertEqual(s.first_pick, FirstPickRule.TURN_LOSER)
            self.assertEqual(load_settings(face_count=4).face_count, 4)

    def test_algorithm_normalized(self):
        self.assertEqual(load_settings(hmac_algorithm="SHA3-256").hmac_algorithm, "sha3_256")

    def test_invalid_values_rejected(self):
        for bad in ({"hmac_algorithm": "md5"}, {"sampler_bits": 12}, {"key_bytes": 16},
                    {"face_count": 0}, {"log_level": "LOUD"}):
            with self.assertRaises(ValidationError, msg=str(bad)):
                load_settings(**bad)


# ============================================================
# Uniform Sampler
# ============================================================

class TestUniformSampler(unittest.TestCase):

    def test_values_in_range(self):
        """sample(N) is always in [0, N)."""
        sampler = UniformSampler(SeededEntropy(1))
        for n in range(1, 40):
            for _ in range(50):
                v = sampler.sample(n)
                self.assertGreaterEqual(v, 0)
                self.assertLess(v, n)

    def test_single_value_range(self):
        self.assertEqual(UniformSampler(SeededEntropy(3)).sample(1), 0)

    def test_invalid_range(self):
        sampler = UniformSampler(SeededEntropy(1))
        for bad in (0, -1, -100, True, 2.5, "6", None):
            with self.assertRaises(InvalidRange, msg=repr(bad)):
                sampler.sample(bad)

    def test_invalid_range_is_value_error(self):
        with self.assertRaises(ValueError):
            UniformSampler(SeededEntropy(1)).sample(0)

    def test_rejects_draws_above_limit(self):
        """2^32 mod 3 == 1, so 0xFFFFFFFF is the one rejected draw for N=3."""
        entropy = ScriptedEntropy(b"\xff\xff\xff\xff", (5).to_bytes(4, "big"))
        sampler = UniformSampler(entropy, bits=32)
        self.assertEqual(sampler.sample(3), 2)
        self.assertEqual(sampler.rejections, 1)
        self.assertEqual(entropy.requests, [4, 4])

    def test_accepts_draw_just_below_limit(self):
        limit = 2 ** 32 - (2 ** 32 % 6)
        entropy = ScriptedEntropy((limit - 1).to_bytes(4, "big"))
        sampler = UniformSampler(entropy, bits=32)
        self.assertEqual(sampler.sample(6), (limit - 1) % 6)
        self.assertEqual(sampler.rejections, 0)

    def test_wide_range_widens_draw(self):
        """Ranges beyond 2^32 draw enough bytes to cover N."""
        entropy = ScriptedEntropy((12345).to_bytes(5, "big"))
        self.assertEqual(UniformSampler(entropy, bits=32).sample(2 ** 40), 12345)
        self.assertEqual(entropy.requests, [5])

    def test_uniform_six(self):
        sampler = UniformSampler(SeededEntropy(1234))
        stat = chi_square_uniformity((sampler.sample(6) for _ in range(60_000)), 6)
        self.assertLess(stat, CHI2_CRIT[5])

    def test_uniform_two(self):
        sampler = UniformSampler(SeededEntropy(99))
        stat = chi_square_uniformity((sampler.sample(2) for _ in range(20_000)), 2)
        self.assertLess(stat, CHI2_CRIT[1])

    def test_os_entropy_default(self):
        self.assertLess(UniformSampler().sample(10), 10)

    def test_chi_square_flags_bias(self):
        """A heavily skewed sample is far above the critical value."""
        samples = [0] * 900 + [1] * 100
        self.assertGreater(chi_square_uniformity(samples, 2), CHI2_CRIT[1])

    def test_secret_key_length(self):
        self.assertEqual(len(new_secret_key()), 32)
        self.assertNotEqual(new_secret_key(), new_secret_key())


# ============================================================
# Commitment
# ============================================================

class TestCommitment(unittest.TestCase):

    def setUp(self):
        self.key = bytes(range(32))

    def test_deterministic(self):
        d1 = Commitment.commit(self.key, 3, "sha3_256")
        d2 = Commitment.commit(self.key, 3, "sha3_256")
        self.assertEqual(d1, d2)
        self.assertEqual(len(d1), 64)

    def test_matches_hmac_construction(self):
        """Anyone can recompute the digest with a stock HMAC implementation."""
        expected = hmac.new(self.key, b"3", hashlib.sha3_256).hexdigest()
        self.assertEqual(Commitment.commit(self.key, 3, "sha3_256"), expected)

    def test_verify_roundtrip(self):
        for value in (0, 1, 5, 255, 256, 10 ** 12, -7):
            digest = Commitment.commit(self.key, value)
            self.assertTrue(Commitment.verify(self.key, value, digest))
            self.assertTrue(Commitment.verify(self.key.hex(), value, digest.upper()))

    def test_other_value_fails(self):
        digest = Commitment.commit(self.key, 4)
        for other in (0, 1, 2, 3, 5, 40, 14):
            self.assertFalse(Commitment.verify(self.key, other, digest))

    def test_other_key_fails(self):
        digest = Commitment.commit(self.key, 4)
        self.assertFalse(Commitment.verify(bytes(32), 4, digest))

    def test_malformed_inputs_fail(self):
        digest = Commitment.commit(self.key, 4)
        self.assertFalse(Commitment.verify("not-hex", 4, digest))
        self.assertFalse(Commitment.verify(self.key, "4", digest))
        self.assertFalse(Commitment.verify(self.key, 4, None))

    def test_bool_value_rejected(self):
        with self.assertRaises(TypeError):
            Commitment.commit(self.key, True)

    def test_algorithm_changes_digest(self):
        self.assertNotEqual(Commitment.commit(self.key, 1, "sha256"),
                            Commitment.commit(self.key, 1, "sha3_256"))
        self.assertEqual(len(Commitment.commit(self.key, 1, "sha512")), 128)


# ============================================================
# Fair Random Session
# ============================================================

class TestFairSession(unittest.TestCase):

    def test_open_session_is_committed(self):
        s = open_session(6, entropy=SeededEntropy(5))
        self.assertIsInstance(s, CommittedSession)
        self.assertEqual(s.state, SessionState.COMMITTED)
        self.assertEqual(len(s.commitment), 64)

    def test_created_state_precedes_commit(self):
        s = create_session(6, entropy=SeededEntropy(5))
        self.assertEqual(s.state, SessionState.CREATED)
        self.assertFalse(hasattr(s, "commitment"))

    def test_secret_hidden_from_repr(self):
        s = open_session(6, sampler=FixedSampler(4), entropy=SeededEntropy(8))
        text = repr(s)
        self.assertNotIn(s.sealed.key.hex(), text)
        self.assertNotIn("sealed", text)

    def test_invalid_range(self):
        for bad in (0, -3, True, 1.5):
            with self.assertRaises(InvalidRange):
                open_session(bad)

    def test_reveal_before_input_is_illegal(self):
        s = open_session(6)
        with self.assertRaises(IllegalTransition):
            transition(s, Reveal())
        with self.assertRaises(IllegalTransition):
            transition(s, Finalize())

    def test_no_second_input(self):
        s = transition(open_session(6), CounterpartInput(1))
        with self.assertRaises(IllegalTransition):
            transition(s, CounterpartInput(2))
        with self.assertRaises(IllegalTransition):
            transition(s, Finalize())

    def test_finalized_is_terminal(self):
        s = run_to_final(open_session(6), 2)
        for event in (CounterpartInput(1), Reveal(), Finalize()):
            with self.assertRaises(IllegalTransition):
                transition(s, event)

    def test_out_of_range_input(self):
        s = open_session(6)
        for bad in (-1, 6, 100, True, "1", 1.0):
            with self.assertRaises(OutOfRangeInput, msg=repr(bad)):
                transition(s, CounterpartInput(bad))

    def test_turn_order_scenario(self):
        """Value 1, guess 0: (0 + 1) mod 2 = 1, the guess misses."""
        s = open_session(2, sampler=FixedSampler(1), entropy=SeededEntropy(1))
        final = run_to_final(s, 0)
        self.assertIsInstance(final, FinalizedSession)
        self.assertEqual(final.combined_result, 1)
        self.assertNotEqual(final.combined_result, final.counterpart_input)

    def test_roll_scenario(self):
        """Value 3, input 4, F = 6: (4 + 3) mod 6 = 1 selects face index 1."""
        die = make_die(DIE_A, 6)
        s = open_session(6, sampler=FixedSampler(3), entropy=SeededEntropy(1))
        final = run_to_final(s, 4)
        self.assertEqual(final.combined_result, 1)
        self.assertEqual(die.face(final.combined_result), 2)

    def test_reveal_reproduces_commitment(self):
        for seed in range(20):
            s = open_session(6, entropy=SeededEntropy(seed))
            published = s.commitment
            revealed = transition(transition(s, CounterpartInput(0)), Reveal())
            self.assertEqual(Commitment.commit(revealed.key, revealed.secret_value,
                                               revealed.algorithm), published)
            self.assertTrue(Commitment.verify(revealed.key_hex, revealed.secret_value, published))

    def test_tampered_reveal_never_verifies(self):
        s = open_session(6, sampler=FixedSampler(2), entropy=SeededEntropy(4))
        revealed = transition(transition(s, CounterpartInput(1)), Reveal())
        for fake in range(6):
            if fake != 2:
                self.assertFalse(Commitment.verify(revealed.key, fake, revealed.commitment))
        tampered = dataclasses.replace(revealed, secret_value=5)
        with self.assertRaises(IntegrityViolation):
            transition(tampered, Finalize())

    def test_fresh_key_per_session(self):
        keys = {open_session(2).sealed.key for _ in range(50)}
        self.assertEqual(len(keys), 50)

    def test_combined_uniform_for_fixed_input(self):
        """A fixed counterpart input cannot skew the combined result."""
        entropy = SeededEntropy(2024)
        sampler = UniformSampler(entropy)
        results = [run_to_final(open_session(6, sampler=sampler, entropy=entropy), 3).combined_result
                   for _ in range(6000)]
        self.assertLess(chi_square_uniformity(results, 6), CHI2_CRIT[5])

    def test_algorithm_carried(self):
        s = open_session(6, algorithm="sha256", entropy=SeededEntropy(1))
        final = run_to_final(s, 0)
        self.assertEqual(final.transcript().algorithm, "sha256")
        verify_transcript(final.transcript())

    def test_transcript_verifies(self):
        final = run_to_final(open_session(6, purpose="roll:user"), 5)
        t = final.transcript()
        verify_transcript(t)
        data = json.loads(t.to_audit_json())
        self.assertEqual(data["commitment"], final.commitment)
        self.assertEqual(data["key"], final.key_hex)
        self.assertEqual(data["purpose"], "roll:user")
        self.assertEqual(len(data["verification_steps"]), 3)

    def test_tampered_transcript_detected(self):
        t = run_to_final(open_session(6), 5).transcript()
        bad_result = dataclasses.replace(t, combined_result=(t.combined_result + 1) % 6)
        bad_value = dataclasses.replace(t, secret_value=(t.secret_value + 1) % 6)
        bad_key = dataclasses.replace(t, key_hex="00" * 32)
        for bad in (bad_result, bad_value, bad_key):
            with self.assertRaises(IntegrityViolation):
                verify_transcript(bad)


# ============================================================
# Dice Schema
# ============================================================

class TestDiceSchema(unittest.TestCase):

    def test_parse_valid_set(self):
        dice = parse_dice_set(["2,2,4,4,9,9", "1,1,6,6,8,8", " 3, 3,5,5,7,7 "], 6)
        self.assertIsInstance(dice, DiceSet)
        self.assertEqual(len(dice), 3)
        self.assertEqual(dice[2].faces, (3, 3, 5, 5, 7, 7))
        self.assertEqual(dice.face_count, 6)

    def test_two_dice_rejected(self):
        with self.assertRaises(InvalidDiceConfiguration):
            parse_dice_set(["2,2,4,4,9,9", "1,1,6,6,8,8"], 6)
        with self.assertRaises(InvalidDiceConfiguration):
            make_dice_set([make_die(DIE_A), make_die(DIE_B)], 6)

    def test_short_die_rejected(self):
        with self.assertRaises(InvalidDiceConfiguration):
            parse_die("2,2,4,4,9", 6)
        with self.assertRaises(InvalidDiceConfiguration):
            parse_dice_set(["2,2,4,4,9", "1,1,6,6,8,8", "3,3,5,5,7,7"], 6)

    def test_non_integer_faces_rejected(self):
        for token in ("a,2,3,4,5,6", "1.5,2,3,4,5,6", "1,,3,4,5,6", "1;2;3;4;5;6", ""):
            with self.assertRaises(InvalidDiceConfiguration, msg=token):
                parse_die(token, 6)

    def test_bool_faces_rejected(self):
        with self.assertRaises(InvalidDiceConfiguration):
            make_die([True, False, 1, 2, 3, 4])

    def test_negative_and_duplicate_faces_allowed(self):
        die = parse_die("-3,-3,0,0,7,7", 6)
        self.assertEqual(die.faces, (-3, -3, 0, 0, 7, 7))

    def test_custom_face_count(self):
        dice = parse_dice_set(["1,2,3,4", "2,3,4,5", "3,4,5,6", "0,0,9,9"], 4)
        self.assertEqual(len(dice), 4)
        self.assertEqual(dice.face_count, 4)
        with self.assertRaises(InvalidDiceConfiguration):
            parse_dice_set(["1,2,3,4", "2,3,4,5", "3,4,5,6,7"], 4)

    def test_mixed_face_counts_rejected(self):
        with self.assertRaises(InvalidDiceConfiguration):
            make_dice_set([make_die([1, 2, 3]), make_die([1, 2, 3]), make_die([1, 2])], 3)

    def test_die_immutable(self):
        die = make_die(DIE_A)
        with self.assertRaises(ValidationError):
            die.faces = (1, 1, 1, 1, 1, 1)

    def test_label(self):
        self.assertEqual(make_die(DIE_A).label(), "[2,2,4,4,9,9]")


# ============================================================
# Probability Matrix
# ============================================================

class TestProbabilityMatrix(unittest.TestCase):

    def setUp(self):
        self.engine = ProbabilityMatrixEngine()
        self.dice = parse_dice_set(["2,2,4,4,9,9", "1,1,6,6,8,8", "3,3,5,5,7,7"], 6)

    def test_known_pair(self):
        cell = self.engine.compare(self.dice[0], self.dice[1])
        self.assertEqual(cell.wins, 20)
        self.assertEqual(cell.total, 36)
        self.assertEqual(cell.fraction, "20/36")
        self.assertAlmostEqual(cell.percentage, 55.5556, places=3)
        self.assertEqual(cell.to_dict()["percentage"], 55.56)

    def test_matrix_shape_and_diagonal(self):
        matrix = self.engine.compute_matrix(self.dice)
        self.assertEqual(len(matrix), 3)
        for i, row in enumerate(matrix):
            self.assertEqual(len(row), 3)
            self.assertIsNone(row[i])

    def test_non_transitive_cycle(self):
        """A beats B, B beats C, C beats A, each 20/36."""
        m = self.engine.compute_matrix(self.dice)
        self.assertEqual(m[0][1].wins, 20)
        self.assertEqual(m[1][2].wins, 20)
        self.assertEqual(m[2][0].wins, 20)

    def test_complement(self):
        dice = parse_dice_set(["1,2,3,4,5,6", "1,1,3,3,6,6", "-2,0,2,4,4,4", "6,5,4,3,2,1"], 6)
        m = self.engine.compute_matrix(dice)
        for i in range(len(dice)):
            for j in range(len(dice)):
                if i == j:
                    continue
                self.assertEqual(m[i][j].wins + m[j][i].wins + m[i][j].ties, 36)
                self.assertEqual(m[i][j].ties, m[j][i].ties)
                self.assertLessEqual(m[i][j].percentage + m[j][i].percentage, 100.0 + 1e-9)

    def test_ties_count_for_nobody(self):
        a = make_die([1, 2, 3])
        cell = self.engine.compare(a, a)
        self.assertEqual((cell.wins, cell.ties, cell.losses, cell.total), (3, 3, 3, 9))

    def test_triples(self):
        wins, total, pct = self.engine.compute_matrix(self.dice)[2][0].as_triple()
        self.assertEqual((wins, total), (20, 36))
        self.assertAlmostEqual(pct, 100 * 20 / 36)

    def test_best_counter(self):
        self.assertEqual(self.engine.best_counter(self.dice.dice, 0, [1, 2]), 2)
        self.assertEqual(self.engine.best_counter(self.dice.dice, 1, [0, 2]), 0)
        self.assertEqual(self.engine.best_counter(self.dice.dice, 2, [0, 1]), 1)

    def test_best_counter_without_candidates(self):
        with self.assertRaises(ValueError):
            self.engine.best_counter(self.dice.dice, 0, [0])

    def test_simulation_agrees(self):
        result = self.engine.simulate(self.dice[0], self.dice[1], rounds=100_000, seed=7)
        self.assertAlmostEqual(result.exact_percentage, 100 * 20 / 36)
        self.assertLess(result.delta, 1.0)
        self.assertEqual(result.to_dict()["rounds"], 100_000)


if __name__ == "__main__":
    # Support: python tests.py -v  /  python tests.py TestClassName
    unittest.main(verbosity=2)
