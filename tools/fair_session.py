"""
FAIRDICE - Fair Random Session (commit → input → reveal → finalize)

One session per decision point. Each state is a frozen value; the only way to
move forward is transition(session, event), which accepts exactly one event
type per state:

    CreatedSession        --Commit------------>  CommittedSession
    CommittedSession      --CounterpartInput-->  InputReceivedSession
    InputReceivedSession  --Reveal------------>  RevealedSession
    RevealedSession       --Finalize---------->  FinalizedSession

Reveal is unreachable until the counterpart's input is recorded: the secret
value is fixed and hashed before the input exists, and the counterpart never
sees the value before choosing. combined = (input + value) mod N is uniform
as long as the committed value is.

Usage:
    from tools.fair_session import open_session, transition, CounterpartInput, Reveal, Finalize

    s = open_session(6, purpose="roll")          # already Committed
    publish(s.commitment)
    s = transition(s, CounterpartInput(4))
    s = transition(s, Reveal())                  # key + value now public
    s = transition(s, Finalize())
    s.combined_result
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar, Union

from config.settings import get_settings
from tools.fair_errors import IllegalTransition, IntegrityViolation, InvalidRange, OutOfRangeInput
from tools.fair_rng import Commitment, EntropySource, UniformSampler, new_secret_key

logger = logging.getLogger("fairdice.session")


class SessionState(str, Enum):
    CREATED = "created"
    COMMITTED = "committed"
    INPUT_RECEIVED = "counterpart_input_received"
    REVEALED = "revealed"
    FINALIZED = "finalized"


# ═══════════════════════════════════════════════════════════════
# Events
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Commit:
    pass


@dataclass(frozen=True)
class CounterpartInput:
    value: int


@dataclass(frozen=True)
class Reveal:
    pass


@dataclass(frozen=True)
class Finalize:
    pass


SessionEvent = Union[Commit, CounterpartInput, Reveal, Finalize]


# ═══════════════════════════════════════════════════════════════
# States
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class _Sealed:
    """Key + value held back until reveal."""
    key: bytes
    value: int

    def __repr__(self) -> str:
        return "<sealed>"


@dataclass(frozen=True)
class CreatedSession:
    range_max: int
    algorithm: str
    purpose: str
    sealed: _Sealed = field(repr=False)
    state: ClassVar[SessionState] = SessionState.CREATED


@dataclass(frozen=True)
class CommittedSession:
    range_max: int
    algorithm: str
    purpose: str
    commitment: str           # published before any counterpart input
    sealed: _Sealed = field(repr=False)
    state: ClassVar[SessionState] = SessionState.COMMITTED


@dataclass(frozen=True)
class InputReceivedSession:
    range_max: int
    algorithm: str
    purpose: str
    commitment: str
    counterpart_input: int
    sealed: _Sealed = field(repr=False)
    state: ClassVar[SessionState] = SessionState.INPUT_RECEIVED


@dataclass(frozen=True)
class RevealedSession:
    range_max: int
    algorithm: str
    purpose: str
    commitment: str
    counterpart_input: int
    key: bytes
    secret_value: int
    state: ClassVar[SessionState] = SessionState.REVEALED

    @property
    def key_hex(self) -> str:
        return self.key.hex()


@dataclass(frozen=True)
class FinalizedSession:
    range_max: int
    algorithm: str
    purpose: str
    commitment: str
    counterpart_input: int
    key: bytes
    secret_value: int
    combined_result: int
    state: ClassVar[SessionState] = SessionState.FINALIZED

    @property
    def key_hex(self) -> str:
        return self.key.hex()

    def transcript(self) -> "SessionTranscript":
        return SessionTranscript(
            purpose=self.purpose,
            range_max=self.range_max,
            algorithm=self.algorithm,
            commitment=self.commitment,
            key_hex=self.key_hex,
            secret_value=self.secret_value,
            counterpart_input=self.counterpart_input,
            combined_result=self.combined_result,
        )


FairRandomSession = Union[
    CreatedSession, CommittedSession, InputReceivedSession, RevealedSession, FinalizedSession,
]


@dataclass(frozen=True)
class SessionTranscript:
    """Plain values a reporter shows and an observer re-verifies."""
    purpose: str
    range_max: int
    algorithm: str
    commitment: str
    key_hex: str
    secret_value: int
    counterpart_input: int
    combined_result: int

    def verification_data(self) -> dict:
        """Data needed to independently verify this decision."""
        return {
            "purpose": self.purpose,
            "range": self.range_max,
            "algorithm": self.algorithm,
            "commitment": self.commitment,
            "key": self.key_hex,
            "secret_value": self.secret_value,
            "counterpart_input": self.counterpart_input,
            "combined_result": self.combined_result,
            "verification_steps": [
                f"1. Compute: HMAC-{self.algorithm.upper()}(key, str(secret_value)) == commitment",
                f"2. Check: 0 <= secret_value < {self.range_max} and 0 <= counterpart_input < {self.range_max}",
                f"3. Check: (counterpart_input + secret_value) mod {self.range_max} == combined_result",
            ],
        }

    def to_audit_json(self) -> str:
        return json.dumps(self.verification_data(), indent=2)


# ═══════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════

def _commit(s: CreatedSession, _event: Commit) -> CommittedSession:
    digest = Commitment.commit(s.sealed.key, s.sealed.value, s.algorithm)
    logger.debug("Committed %s (N=%d): %s", s.purpose or "session", s.range_max, digest)
    return CommittedSession(
        range_max=s.range_max, algorithm=s.algorithm, purpose=s.purpose,
        commitment=digest, sealed=s.sealed,
    )


def _receive_input(s: CommittedSession, event: CounterpartInput) -> InputReceivedSession:
    value = event.value
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < s.range_max:
        raise OutOfRangeInput(value, s.range_max)
    return InputReceivedSession(
        range_max=s.range_max, algorithm=s.algorithm, purpose=s.purpose,
        commitment=s.commitment, counterpart_input=value, sealed=s.sealed,
    )


def _reveal(s: InputReceivedSession, _event: Reveal) -> RevealedSession:
    return RevealedSession(
        range_max=s.range_max, algorithm=s.algorithm, purpose=s.purpose,
        commitment=s.commitment, counterpart_input=s.counterpart_input,
        key=s.sealed.key, secret_value=s.sealed.value,
    )


def _finalize(s: RevealedSession, _event: Finalize) -> FinalizedSession:
    verify_reveal(s.commitment, s.key, s.secret_value, s.algorithm)
    combined = (s.counterpart_input + s.secret_value) % s.range_max
    logger.debug("Finalized %s: (%d + %d) mod %d = %d", s.purpose or "session",
                 s.counterpart_input, s.secret_value, s.range_max, combined)
    return FinalizedSession(
        range_max=s.range_max, algorithm=s.algorithm, purpose=s.purpose,
        commitment=s.commitment, counterpart_input=s.counterpart_input,
        key=s.key, secret_value=s.secret_value, combined_result=combined,
    )


_TRANSITIONS: dict[tuple[SessionState, type], Callable] = {
    (SessionState.CREATED, Commit): _commit,
    (SessionState.COMMITTED, CounterpartInput): _receive_input,
    (SessionState.INPUT_RECEIVED, Reveal): _reveal,
    (SessionState.REVEALED, Finalize): _finalize,
}


def transition(session: FairRandomSession, event: SessionEvent) -> FairRandomSession:
    """Apply the single legal event for ``session``'s state."""
    handler = _TRANSITIONS.get((session.state, type(event)))
    if handler is None:
        raise IllegalTransition(session.state, event)
    return handler(session, event)


def create_session(range_max: int, *, sampler: UniformSampler = None,
                   entropy: EntropySource = None, algorithm: str = None,
                   purpose: str = "") -> CreatedSession:
    """Draw a fresh key and a uniform secret value in [0, range_max)."""
    if isinstance(range_max, bool) or not isinstance(range_max, int) or range_max < 1:
        raise InvalidRange(range_max)
    sampler = sampler or UniformSampler(entropy)
    key = new_secret_key(entropy)
    value = sampler.sample(range_max)
    return CreatedSession(
        range_max=range_max,
        algorithm=algorithm or get_settings().hmac_algorithm,
        purpose=purpose,
        sealed=_Sealed(key=key, value=value),
    )


def open_session(range_max: int, **kwargs) -> CommittedSession:
    """Create and immediately commit; the commitment is ready to publish."""
    return transition(create_session(range_max, **kwargs), Commit())


# ═══════════════════════════════════════════════════════════════
# Verification
# ═══════════════════════════════════════════════════════════════

def verify_reveal(commitment: str, key, value: int, algorithm: str = None) -> None:
    """Raise IntegrityViolation unless (key, value) reproduces ``commitment``."""
    if not Commitment.verify(key, value, commitment, algorithm):
        logger.error("Commitment mismatch: published %s does not match revealed value %r",
                     commitment, value)
        raise IntegrityViolation(
            "Revealed key/value do not reproduce the published commitment",
            commitment=commitment,
        )


def verify_transcript(t: SessionTranscript) -> None:
    """Independent re-check of everything a reporter published."""
    verify_reveal(t.commitment, t.key_hex, t.secret_value, t.algorithm)
    if not (0 <= t.secret_value < t.range_max and 0 <= t.counterpart_input < t.range_max):
        raise IntegrityViolation(
            f"Transcript values outside [0, {t.range_max})", commitment=t.commitment
        )
    if (t.counterpart_input + t.secret_value) % t.range_max != t.combined_result:
        raise IntegrityViolation(
            "Combined result does not equal (input + value) mod N", commitment=t.commitment
        )
