"""
Poseidon Hash Engine over the BN254 scalar field

A permutation-based hash that is cheap to express as arithmetic constraints,
so its outputs are native values inside the voting circuit.

Sponge layout follows circomlib: hashing n inputs uses width t = n + 1, the
state starts as [0, x_1, ..., x_n], one permutation is applied and state[0] is
the output.

Round constants and the MDS matrix for each width are derived with the Grain
LFSR procedure from the Poseidon reference (rejection-sampled constants, Cauchy
MDS). Deployments that must match a specific circuit build can pin the exact
constants with a parameter file, see load_params_json().

The hasher is an explicitly constructed handle: build one at process start and
pass it to the Merkle and Nullifier engines.
"""

import json
import logging
import threading
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import galois
import numpy as np

from .errors import MalformedInput
from .field import FIELD_MODULUS, validate_field_element

logger = logging.getLogger(__name__)

FULL_ROUNDS = 8
ALPHA = 5
MAX_INPUTS = 16

# Partial rounds for widths t = 2 .. 17 (circomlib table)
PARTIAL_ROUNDS = (56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68)

# Multiplicative generator of BN254 Fr
FIELD_GENERATOR = 5


@dataclass(frozen=True)
class PoseidonParams:
    """Parameter set for one state width"""
    t: int
    full_rounds: int
    partial_rounds: int
    alpha: int
    mds: Tuple[Tuple[int, ...], ...]
    round_constants: Tuple[Tuple[int, ...], ...]  # (R_F + R_P) rows of t

    def validate(self) -> None:
        if self.t < 2:
            raise MalformedInput("t must be >= 2")
        if self.full_rounds % 2 != 0:
            raise MalformedInput("full_rounds must be even")
        if self.alpha < 3 or self.alpha % 2 == 0:
            raise MalformedInput("alpha must be an odd integer >= 3")
        if len(self.mds) != self.t or any(len(row) != self.t for row in self.mds):
            raise MalformedInput(f"mds must be {self.t} x {self.t}")
        expected_rounds = self.full_rounds + self.partial_rounds
        if len(self.round_constants) != expected_rounds or any(
                len(row) != self.t for row in self.round_constants):
            raise MalformedInput(
                f"round_constants must be {expected_rounds} x {self.t}")
        for row in self.mds + self.round_constants:
            for value in row:
                validate_field_element(value, "Poseidon parameter")


def _to_bits(value: int, width: int) -> List[int]:
    return [int(b) for b in bin(value)[2:].zfill(width)]


class GrainLFSR:
    """80-bit self-shrinking Grain LFSR used to derive Poseidon parameters"""

    def __init__(self, field_bits: int, t: int, full_rounds: int, partial_rounds: int):
        # field = 1 (prime field), sbox = 0 (x^alpha)
        seed = (_to_bits(1, 2) + _to_bits(0, 4) + _to_bits(field_bits, 12) +
                _to_bits(t, 12) + _to_bits(full_rounds, 10) +
                _to_bits(partial_rounds, 10) + [1] * 30)
        self._state = deque(seed, maxlen=80)

        # Discard the first 160 bits
        for _ in range(160):
            self._clock()

    def _clock(self) -> int:
        s = self._state
        bit = s[62] ^ s[51] ^ s[38] ^ s[23] ^ s[13] ^ s[0]
        s.append(bit)
        return bit

    def next_bit(self) -> int:
        # Self-shrinking: emit the second bit of a pair only if the first is 1
        while True:
            first = self._clock()
            second = self._clock()
            if first == 1:
                return second

    def next_int(self, num_bits: int) -> int:
        value = 0
        for _ in range(num_bits):
            value = (value << 1) | self.next_bit()
        return value


def generate_params(t: int, prime: int = FIELD_MODULUS) -> PoseidonParams:
    """Derive the parameter set for width t"""
    if not 2 <= t <= len(PARTIAL_ROUNDS) + 1:
        raise MalformedInput(f"Unsupported Poseidon width t={t}")

    partial_rounds = PARTIAL_ROUNDS[t - 2]
    field_bits = prime.bit_length()
    grain = GrainLFSR(field_bits, t, FULL_ROUNDS, partial_rounds)

    constants = []
    for _ in range((FULL_ROUNDS + partial_rounds) * t):
        while True:
            candidate = grain.next_int(field_bits)
            if candidate < prime:
                break
        constants.append(candidate)
    round_constants = tuple(
        tuple(constants[i:i + t]) for i in range(0, len(constants), t))

    # Cauchy matrix M[i][j] = 1 / (x_i + y_j)
    while True:
        samples = [grain.next_int(field_bits) % prime for _ in range(2 * t)]
        if len(set(samples)) != len(samples):
            continue
        xs, ys = samples[:t], samples[t:]
        if any((x + y) % prime == 0 for x in xs for y in ys):
            continue
        mds = tuple(
            tuple(pow(x + y, prime - 2, prime) for y in ys) for x in xs)
        break

    return PoseidonParams(
        t=t,
        full_rounds=FULL_ROUNDS,
        partial_rounds=partial_rounds,
        alpha=ALPHA,
        mds=mds,
        round_constants=round_constants,
    )


def load_params_json(path: Union[str, Path]) -> Dict[int, PoseidonParams]:
    """
    Load pinned parameter sets from JSON.

    Accepted layout:
        {"params": [{"t": 3, "R_F": 8, "R_P": 57, "alpha": 5,
                     "mds": [[...]], "rc": [[...], ...]}, ...]}

    Integers may be JSON numbers, decimal strings or 0x-prefixed hex.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise MalformedInput(f"Failed to read Poseidon params {path.name}: {e}")

    entries = raw.get("params") if isinstance(raw, dict) else None
    if not isinstance(entries, list):
        raise MalformedInput("Poseidon params file must contain a 'params' list")

    loaded = {}
    for entry in entries:
        try:
            params = PoseidonParams(
                t=int(entry["t"]),
                full_rounds=int(entry["R_F"]),
                partial_rounds=int(entry["R_P"]),
                alpha=int(entry.get("alpha", ALPHA)),
                mds=tuple(tuple(validate_field_element(v, "Poseidon parameter") for v in row)
                          for row in entry["mds"]),
                round_constants=tuple(tuple(validate_field_element(v, "Poseidon parameter") for v in row)
                                      for row in entry["rc"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedInput(f"Invalid Poseidon params entry: {e}")
        params.validate()
        loaded[params.t] = params

    logger.info(f"Loaded Poseidon params for widths {sorted(loaded)} from {path}")
    return loaded


class _Permutation:
    """Poseidon permutation bound to one parameter set"""

    def __init__(self, field, params: PoseidonParams):
        self.params = params
        self.field = field
        self.mds = field(np.array(params.mds, dtype=object))
        self.round_constants = field(
            np.array(params.round_constants, dtype=object))

    def __call__(self, state):
        p = self.params
        half = p.full_rounds // 2
        for r in range(p.full_rounds + p.partial_rounds):
            # Add round constants
            state = state + self.round_constants[r]
            # S-box on every element in full rounds, first element otherwise
            if r < half or r >= half + p.partial_rounds:
                state = state ** p.alpha
            else:
                state[:1] = state[:1] ** p.alpha
            # Mix
            state = self.mds @ state
        return state


class PoseidonHasher:
    """
    Hash Engine handle.

    Construct once per process and share it. Per-width permutations are built
    lazily on first use; the lock makes concurrent first use build only once.
    """

    def __init__(self, params: Optional[Dict[int, PoseidonParams]] = None):
        self._pinned: Dict[int, PoseidonParams] = dict(params or {})
        for width_params in self._pinned.values():
            width_params.validate()
        self._field = None
        self._permutations: Dict[int, _Permutation] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_params_file(cls, path: Optional[Union[str, Path]]) -> 'PoseidonHasher':
        if path is None:
            return cls()
        return cls(load_params_json(path))

    def _permutation(self, t: int) -> _Permutation:
        permutation = self._permutations.get(t)
        if permutation is not None:
            return permutation

        with self._lock:
            permutation = self._permutations.get(t)
            if permutation is None:
                if self._field is None:
                    self._field = galois.GF(
                        FIELD_MODULUS,
                        primitive_element=FIELD_GENERATOR,
                        verify=False)
                params = self._pinned.get(t) or generate_params(t)
                permutation = _Permutation(self._field, params)
                self._permutations[t] = permutation
                logger.debug(
                    f"Built Poseidon permutation t={t} R_F={params.full_rounds} R_P={params.partial_rounds}")
            return permutation

    def hash(self, inputs: Sequence[Union[int, str]]) -> int:
        """Hash 1..16 field elements into one field element"""
        if isinstance(inputs, (str, bytes)) or not isinstance(inputs, Sequence):
            raise MalformedInput("Poseidon inputs must be a sequence")
        if not 1 <= len(inputs) <= MAX_INPUTS:
            raise MalformedInput(
                f"Poseidon accepts 1..{MAX_INPUTS} inputs, got {len(inputs)}")

        values = [validate_field_element(v, f"Poseidon input {i}")
                  for i, v in enumerate(inputs)]

        permutation = self._permutation(len(values) + 1)
        state = self._field(np.array([0] + values, dtype=object))
        return int(permutation(state)[0])

    def hash1(self, value: Union[int, str]) -> int:
        return self.hash([value])

    def hash2(self, left: Union[int, str], right: Union[int, str]) -> int:
        """Two-input compression used for tree nodes"""
        return self.hash([left, right])

    def hash_many(self, inputs: Sequence[Union[int, str]]) -> int:
        return self.hash(inputs)
