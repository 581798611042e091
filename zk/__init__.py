"""
Zero-knowledge protocol core for anonymous sybil-resistant voting:
field codec, Poseidon hashing and the voter-set Merkle tree.

Nullifier derivation, proof input assembly and the snarkjs adapters depend
on the signing package and are imported from their own modules.
"""

from .errors import (
    VotingProtocolError,
    MalformedInput,
    OutOfRange,
    CapacityExceeded,
    DuplicateEntry,
    IndexOutOfRange,
    ShapeMismatch,
    SigningFailure,
    ProvingFailure,
)
from .field import FIELD_MODULUS, SECP256K1_ORDER, address_to_field
from .poseidon import PoseidonHasher
from .merkle import (
    MerkleProof,
    MerkleTree,
    RealPath,
    SyntheticPath,
    build_tree,
    membership_path,
    prove,
    verify,
)

__version__ = "1.0.0"

__all__ = [
    # Hashing and trees
    'FIELD_MODULUS',
    'SECP256K1_ORDER',
    'address_to_field',
    'PoseidonHasher',
    'MerkleProof',
    'MerkleTree',
    'RealPath',
    'SyntheticPath',
    'build_tree',
    'membership_path',
    'prove',
    'verify',

    # Exceptions
    'VotingProtocolError',
    'MalformedInput',
    'OutOfRange',
    'CapacityExceeded',
    'DuplicateEntry',
    'IndexOutOfRange',
    'ShapeMismatch',
    'SigningFailure',
    'ProvingFailure',
]
