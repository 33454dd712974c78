"""
FAIRDICE - Dice Configuration Schema

Immutable Die / DiceSet models plus the token parser used by the CLI.
All validation failures surface as InvalidDiceConfiguration so callers deal
with one error type whether the problem is a bad token or a short set.

Usage:
    from config.dice_schema import parse_dice_set
    dice = parse_dice_set(["2,2,4,4,9,9", "1,1,6,6,8,8", "3,3,5,5,7,7"])
    dice[0].faces       # (2, 2, 4, 4, 9, 9)
    dice.face_count     # 6
"""

from __future__ import annotations

from typing import Iterator, Sequence

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, model_validator

from config.settings import MIN_DICE, get_settings
from tools.fair_errors import InvalidDiceConfiguration


class Die(BaseModel):
    """Ordered, fixed-length face values. Negative and repeated faces are fine."""
    model_config = ConfigDict(frozen=True)

    faces: tuple[StrictInt, ...] = Field(min_length=1)

    @property
    def face_count(self) -> int:
        return len(self.faces)

    def face(self, index: int) -> int:
        return self.faces[index]

    def label(self) -> str:
        return "[" + ",".join(str(f) for f in self.faces) + "]"

    def __str__(self) -> str:
        return self.label()


class DiceSet(BaseModel):
    """At least MIN_DICE dice, all with exactly ``face_count`` faces."""
    model_config = ConfigDict(frozen=True)

    dice: tuple[Die, ...]
    face_count: StrictInt = Field(ge=1)

    @model_validator(mode="after")
    def check_shape(self):
        if len(self.dice) < MIN_DICE:
            raise ValueError(f"At least {MIN_DICE} dice are required, got {len(self.dice)}")
        for i, die in enumerate(self.dice):
            if die.face_count != self.face_count:
                raise ValueError(
                    f"Die {i + 1} has {die.face_count} faces, expected {self.face_count}"
                )
        return self

    def __len__(self) -> int:
        return len(self.dice)

    def __iter__(self) -> Iterator[Die]:
        return iter(self.dice)

    def __getitem__(self, index: int) -> Die:
        return self.dice[index]


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    msg = err.get("msg", str(exc))
    return msg.removeprefix("Value error, ")


def make_die(faces: Sequence[int], face_count: int = None) -> Die:
    """Build a Die, optionally enforcing the configured face count."""
    try:
        die = Die(faces=tuple(faces))
    except ValidationError as e:
        raise InvalidDiceConfiguration(f"Invalid die {list(faces)}: {_first_error(e)}") from e
    if face_count is not None and die.face_count != face_count:
        raise InvalidDiceConfiguration(
            f"Each die must have {face_count} integer values, got {die.face_count}"
        )
    return die


def parse_die(token: str, face_count: int = None) -> Die:
    """Parse ``"2,2,4,4,9,9"`` into a Die with exactly ``face_count`` faces."""
    face_count = face_count or get_settings().face_count
    parts = [p.strip() for p in token.split(",")]
    faces = []
    for part in parts:
        try:
            faces.append(int(part))
        except ValueError:
            raise InvalidDiceConfiguration(
                f"Invalid face value {part!r} in die {token!r}: faces must be integers"
            ) from None
    return make_die(faces, face_count)


def make_dice_set(dice: Sequence[Die], face_count: int = None) -> DiceSet:
    face_count = face_count or get_settings().face_count
    try:
        return DiceSet(dice=tuple(dice), face_count=face_count)
    except ValidationError as e:
        raise InvalidDiceConfiguration(_first_error(e)) from e


def parse_dice_set(tokens: Sequence[str], face_count: int = None) -> DiceSet:
    """Parse CLI-style tokens into a validated DiceSet."""
    face_count = face_count or get_settings().face_count
    if len(tokens) < MIN_DICE:
        raise InvalidDiceConfiguration(
            f"At least {MIN_DICE} dice configurations are required, got {len(tokens)}"
        )
    return make_dice_set([parse_die(t, face_count) for t in tokens], face_count)
