"""
FAIRDICE - Error Taxonomy

Input-shape errors (InvalidDiceConfiguration, OutOfRangeInput) are
caller-recoverable: re-parse or re-prompt. InvalidRange and IntegrityViolation
are never recovered; they surface to the game orchestrator, which ends the game.
"""


class FairDiceError(Exception):
    """Base class for every error raised by fairdice."""


class InvalidRange(FairDiceError, ValueError):
    """Sampling or session range is not a positive integer."""

    def __init__(self, range_max):
        self.range_max = range_max
        super().__init__(f"Range must be a positive integer, got {range_max!r}")


class InvalidDiceConfiguration(FairDiceError, ValueError):
    """Dice set or single die failed validation."""


class OutOfRangeInput(FairDiceError, ValueError):
    """Counterpart input is not an integer in [0, range_max)."""

    def __init__(self, value, range_max: int, message: str = None):
        self.value = value
        self.range_max = range_max
        super().__init__(message or f"Input must be an integer in [0, {range_max - 1}], got {value!r}")


class UnavailableDie(OutOfRangeInput):
    """Die pick is not one of the dice still on offer."""

    def __init__(self, value, available, range_max: int):
        self.available = list(available)
        super().__init__(value, range_max,
                         f"Die {value!r} is not available, choose one of {self.available}")


class IntegrityViolation(FairDiceError):
    """Revealed key/value do not reproduce the published commitment."""

    def __init__(self, message: str, commitment: str = ""):
        self.commitment = commitment
        super().__init__(message)


class IllegalTransition(FairDiceError, RuntimeError):
    """Event is not accepted by the session's current state."""

    def __init__(self, state, event):
        self.state = state
        self.event = event
        super().__init__(
            f"{type(event).__name__} is not a legal event in state '{state.value}'"
        )
