"""
FAIRDICE - Configuration & Logging

Every tunable reads from the environment (optionally a .env file) and is
validated once through FairDiceSettings. Call sites take explicit overrides
first and fall back to get_settings().

    FAIRDICE_FACE_COUNT      faces per die                  (default 6)
    FAIRDICE_HMAC_ALGORITHM  commitment hash                (default sha3_256)
    FAIRDICE_KEY_BYTES       secret key length              (default 32)
    FAIRDICE_SAMPLER_BITS    rejection-sampling draw width  (default 32)
    FAIRDICE_FIRST_PICK      turn_winner | turn_loser       (default turn_winner)
    FAIRDICE_LOG_LEVEL       logging level name             (default WARNING)
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

MIN_DICE = 3

# Commitment digests need at least 256 bits of output.
SUPPORTED_HMAC_ALGORITHMS = ("sha256", "sha384", "sha512", "sha3_256", "sha3_384", "sha3_512")


class FirstPickRule(str, Enum):
    TURN_WINNER = "turn_winner"   # the first mover picks a die first
    TURN_LOSER = "turn_loser"     # compensating variant: the other party picks first


class FairDiceSettings(BaseModel):
    """Validated runtime settings."""
    face_count: int = Field(6, ge=1)
    hmac_algorithm: str = "sha3_256"
    key_bytes: int = Field(32, ge=32)
    sampler_bits: int = Field(32, ge=8, le=64, multiple_of=8)
    first_pick: FirstPickRule = FirstPickRule.TURN_WINNER
    log_level: str = "WARNING"

    @field_validator("hmac_algorithm", mode="before")
    @classmethod
    def check_algorithm(cls, v):
        name = str(v).strip().lower().replace("-", "_")
        if name not in SUPPORTED_HMAC_ALGORITHMS:
            raise ValueError(
                f"Unsupported HMAC algorithm: {v}. Available: {list(SUPPORTED_HMAC_ALGORITHMS)}"
            )
        return name

    @field_validator("log_level", mode="before")
    @classmethod
    def check_log_level(cls, v):
        name = str(v).strip().upper()
        if not isinstance(logging.getLevelName(name), int):
            raise ValueError(f"Unknown log level: {v}")
        return name


def _env_overrides() -> dict:
    mapping = {
        "face_count": "FAIRDICE_FACE_COUNT",
        "hmac_algorithm": "FAIRDICE_HMAC_ALGORITHM",
        "key_bytes": "FAIRDICE_KEY_BYTES",
        "sampler_bits": "FAIRDICE_SAMPLER_BITS",
        "first_pick": "FAIRDICE_FIRST_PICK",
        "log_level": "FAIRDICE_LOG_LEVEL",
    }
    return {field: os.environ[var] for field, var in mapping.items() if os.getenv(var)}


def load_settings(**overrides) -> FairDiceSettings:
    """Build settings from the environment, then apply explicit overrides."""
    values = _env_overrides()
    values.update({k: v for k, v in overrides.items() if v is not None})
    return FairDiceSettings(**values)


@lru_cache(maxsize=1)
def get_settings() -> FairDiceSettings:
    """Environment-derived settings, loaded once per process."""
    return load_settings()


def configure_logging(level: str = None) -> logging.Logger:
    """Attach a stream handler to the fairdice logger tree (idempotent)."""
    logger = logging.getLogger("fairdice")
    if not logger.handlers:
        _h = logging.StreamHandler()
        _h.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(name)s %(message)s",
                                          datefmt="%H:%M:%S"))
        logger.addHandler(_h)
    logger.setLevel((level or get_settings().log_level).upper())
    return logger
