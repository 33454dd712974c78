"""
FAIRDICE - Provably Fair RNG Primitives

Unbiased sampling plus HMAC commitments for verifiable random outcomes.

Architecture:
    A fresh 256-bit secret key is drawn per decision point.
    The committing party samples value in [0, N) without modulo bias.
    commitment = HMAC-<alg>(key, str(value))   (shared before counterpart input)
    After the counterpart answers, key + value are revealed and anyone can
    recompute the HMAC and compare it with the published commitment.

Usage:
    from tools.fair_rng import UniformSampler, Commitment, new_secret_key

    sampler = UniformSampler()
    value = sampler.sample(6)
    key = new_secret_key()
    digest = Commitment.commit(key, value)     # publish this
    ...
    Commitment.verify(key.hex(), value, digest)  # True
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import random
from typing import Callable, Iterable, Union

from config.settings import get_settings
from tools.fair_errors import InvalidRange

logger = logging.getLogger("fairdice.rng")

# Returns exactly n random bytes.
EntropySource = Callable[[int], bytes]

KeyLike = Union[bytes, str]


# ═══════════════════════════════════════════════════════════════
# Entropy Sources
# ═══════════════════════════════════════════════════════════════

class SeededEntropy:
    """Deterministic entropy for reproducible simulations and tests.

    Not suitable for real play: anyone who knows the seed knows every draw.
    """

    def __init__(self, seed: int = 42):
        self.seed = seed
        self._rng = random.Random(seed)

    def __call__(self, n: int) -> bytes:
        return self._rng.randbytes(n)


def _default_entropy() -> EntropySource:
    return os.urandom


# ═══════════════════════════════════════════════════════════════
# Uniform Sampler
# ═══════════════════════════════════════════════════════════════

class UniformSampler:
    """Draws integers in [0, N) with rejection sampling.

    A plain ``draw % N`` favours the low residues whenever N does not divide
    2^bits. Draws at or above ``limit = 2^bits - (2^bits mod N)`` are thrown
    away, which leaves every residue with exactly ``limit / N`` preimages.
    """

    def __init__(self, entropy: EntropySource = None, bits: int = None):
        self.entropy = entropy or _default_entropy()
        self.bits = bits or get_settings().sampler_bits
        self.rejections = 0

    def _width_for(self, range_max: int) -> int:
        # Widen past the configured draw size for very large ranges.
        needed = ((range_max - 1).bit_length() + 7) // 8 * 8
        return max(self.bits, needed)

    def sample(self, range_max: int) -> int:
        """Return a uniform integer in [0, range_max)."""
        if isinstance(range_max, bool) or not isinstance(range_max, int) or range_max < 1:
            raise InvalidRange(range_max)

        width = self._width_for(range_max)
        space = 1 << width
        limit = space - (space % range_max)

        while True:
            draw = int.from_bytes(self.entropy(width // 8), "big")
            if draw < limit:
                return draw % range_max
            self.rejections += 1
            logger.debug("Rejected draw above limit for N=%d (total rejections: %d)",
                         range_max, self.rejections)


def new_secret_key(entropy: EntropySource = None, n_bytes: int = None) -> bytes:
    """Fresh secret key; one per session, never reused."""
    n_bytes = n_bytes or get_settings().key_bytes
    key = (entropy or _default_entropy())(n_bytes)
    if len(key) != n_bytes:
        raise ValueError(f"Entropy source returned {len(key)} bytes, expected {n_bytes}")
    return key


# ═══════════════════════════════════════════════════════════════
# Commitment
# ═══════════════════════════════════════════════════════════════

def _key_bytes(key: KeyLike) -> bytes:
    if isinstance(key, str):
        return bytes.fromhex(key)
    return bytes(key)


def encode_value(value: int) -> bytes:
    """Canonical message for a committed integer (decimal ASCII)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Committed value must be an int, got {type(value).__name__}")
    return str(value).encode("ascii")


class Commitment:
    """Keyed commitment to an integer: HMAC(key, str(value))."""

    @staticmethod
    def commit(key: KeyLike, value: int, algorithm: str = None) -> str:
        """Hex digest binding ``key`` and ``value``."""
        algorithm = algorithm or get_settings().hmac_algorithm
        return hmac.new(_key_bytes(key), encode_value(value), algorithm).hexdigest()

    @staticmethod
    def verify(key: KeyLike, value: int, digest: str, algorithm: str = None) -> bool:
        """Recompute the commitment and compare with the published digest.

        Malformed keys, values or digests simply fail verification.
        """
        try:
            computed = Commitment.commit(key, value, algorithm)
        except (ValueError, TypeError):
            return False
        if not isinstance(digest, str):
            return False
        return hmac.compare_digest(computed, digest.strip().lower())


# ═══════════════════════════════════════════════════════════════
# Audit Helpers
# ═══════════════════════════════════════════════════════════════

def chi_square_uniformity(samples: Iterable[int], range_max: int) -> float:
    """Pearson chi-square statistic of ``samples`` against uniform [0, N).

    Degrees of freedom = N - 1. Values outside the range are an error.
    """
    if range_max < 1:
        raise InvalidRange(range_max)
    counts = [0] * range_max
    total = 0
    for s in samples:
        if not 0 <= s < range_max:
            raise ValueError(f"Sample {s} outside [0, {range_max})")
        counts[s] += 1
        total += 1
    if total == 0:
        return 0.0
    expected = total / range_max
    return sum((c - expected) ** 2 / expected for c in counts)
