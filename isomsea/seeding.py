"""Replicate seeds derived by hashing, independent of Python's salted `hash`."""

from __future__ import annotations

import hashlib
import json
from typing import Any

import numpy as np

# per-replicate streams; the permutation stream is run-wide
STAGES: tuple[str, ...] = ("resolve", "cells")


def _encode(token: Any) -> str:
    try:
        return json.dumps(token, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return repr(token)


def stable_seed(base_seed: int, *tokens: Any) -> int:
    """uint32 seed from a base seed and any JSON-able tokens (sha256)."""
    base = int(base_seed)
    material = "|".join([str(base), *(_encode(t) for t in tokens)])
    offset = int.from_bytes(hashlib.sha256(material.encode("utf-8")).digest()[:8], "big")
    return (base + offset) % (2**32)


def replicate_seed(base_seed: int, replicate: int, stage: str) -> int:
    if stage not in STAGES:
        raise ValueError(f"Unknown resampling stage '{stage}'. Expected one of {STAGES}.")
    return stable_seed(base_seed, "replicate", int(replicate), stage)


def permutation_seed(base_seed: int) -> int:
    """Run-wide permutation stream; identical rankings get identical p-values."""
    return stable_seed(base_seed, "permute")


def rng_from_seed(seed: int) -> np.random.Generator:
    return np.random.default_rng(int(seed))
