"""
Verification settings.

Configuration is an explicit value passed to each contract class, never
shared mutable state. `load_config()` builds one from the environment:

  - SCRYPT_VERIFY_FLAGS  (int, any base)  default: vm.DEFAULT_FLAGS
  - SCRYPT_SIGHASH_TYPE  (int, any base)  default: SIGHASH_ALL | SIGHASH_FORKID
  - SCRYPT_STD_FILE      (str)            default: "std"
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from functools import lru_cache

from scrypttypes import SigHash
from vm import DEFAULT_FLAGS

logger = logging.getLogger(__name__)

DEFAULT_SIGHASH_TYPE = SigHash.ALL | SigHash.FORKID

# Source file recorded for opcodes the compiler injects from its standard
# library; these positions are never reported directly.
STD_FILE = "std"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip(), 0)
    except ValueError:
        logger.warning("ignoring %s=%r: not an integer", name, raw)
        return default


@dataclass(frozen=True, slots=True)
class VerifyConfig:
    flags: int = int(DEFAULT_FLAGS)
    sighash_type: int = int(DEFAULT_SIGHASH_TYPE)
    std_file: str = STD_FILE

    def with_flags(self, flags: int) -> VerifyConfig:
        return replace(self, flags=flags)


@lru_cache(maxsize=1)
def load_config() -> VerifyConfig:
    """Build and cache a VerifyConfig from the environment."""
    return VerifyConfig(
        flags=_env_int("SCRYPT_VERIFY_FLAGS", int(DEFAULT_FLAGS)),
        sighash_type=_env_int("SCRYPT_SIGHASH_TYPE", int(DEFAULT_SIGHASH_TYPE)),
        std_file=os.getenv("SCRYPT_STD_FILE") or STD_FILE,
    )
