"""
Proof Input Assembler

Validation-and-packaging boundary between the protocol core and the external
proving engine. Every record has the same shape whether or not the voter is
eligible: ineligible voters carry a SyntheticPath instead of a real proof.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple, Union

from signing.eip712 import MAX_TOPIC_ID_LENGTH, VoteSignature, validate_topic_id

from .errors import MalformedInput, ShapeMismatch
from .field import (address_to_field, limbs_to_scalar, scalar_to_limbs,
                    validate_field_element, validate_recovery_id)
from .merkle import MembershipPath, RealPath, SyntheticPath
from .nullifier import message_hash_to_field, topic_hash

logger = logging.getLogger(__name__)

# Stable index contract of the proving engine's public outputs
PUBLIC_SIGNAL_NULLIFIER = 0
PUBLIC_SIGNAL_MERKLE_ROOT = 1
PUBLIC_SIGNAL_TOPIC_ID = 2
PUBLIC_SIGNAL_MESSAGE_HASH = 3
PUBLIC_SIGNAL_COUNT = 4


@dataclass(frozen=True)
class ProofInputRecord:
    """Validated input record for one vote attempt"""
    merkle_root: int
    topic_id: int  # field encoding of keccak256(topic id)
    message_hash: int
    voter_address: int
    path_elements: Tuple[int, ...]
    path_indices: Tuple[int, ...]
    sig_r: Tuple[int, int]  # (hi, lo) 128-bit limbs
    sig_s: Tuple[int, int]
    sig_v: int

    @property
    def depth(self) -> int:
        return len(self.path_elements)

    def signature_scalars(self) -> Tuple[int, int]:
        return (limbs_to_scalar(*self.sig_r, label="Signature r"),
                limbs_to_scalar(*self.sig_s, label="Signature s"))

    def to_circuit_input(self) -> Dict[str, Any]:
        """Decimal-string form consumed by the witness generator"""
        return {
            'merkleRoot': str(self.merkle_root),
            'topicId': str(self.topic_id),
            'messageHash': str(self.message_hash),
            'voterAddress': str(self.voter_address),
            'pathElements': [str(e) for e in self.path_elements],
            'pathIndices': list(self.path_indices),
            'sigR': [str(limb) for limb in self.sig_r],
            'sigS': [str(limb) for limb in self.sig_s],
            'sigV': str(self.sig_v),
        }


def _check_path(path: MembershipPath, depth: int) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    if not isinstance(path, (RealPath, SyntheticPath)):
        raise MalformedInput(
            f"Membership path must be RealPath or SyntheticPath, got {type(path).__name__}")

    siblings = path.siblings
    indices = path.path_indices
    if len(siblings) != depth:
        raise ShapeMismatch(
            f"Invalid Merkle proof: siblings has {len(siblings)} elements, expected {depth}")
    if len(indices) != depth:
        raise ShapeMismatch(
            f"Invalid Merkle proof: pathIndices has {len(indices)} elements, expected {depth}")

    elements = tuple(validate_field_element(e, f"Path element {i}")
                     for i, e in enumerate(siblings))
    for i, bit in enumerate(indices):
        if isinstance(bit, bool) or bit not in (0, 1):
            raise MalformedInput(f"Path index {i} must be 0 or 1, got {bit!r}")
    return elements, tuple(indices)


def assemble(voter_address: str, topic_id: str, path: MembershipPath,
             signature: VoteSignature, merkle_root: Union[int, str],
             depth: int, max_topic_length: int = MAX_TOPIC_ID_LENGTH) -> ProofInputRecord:
    """Validate every input and package the record for the proving engine"""
    if not isinstance(signature, VoteSignature):
        raise MalformedInput(
            f"Signature must be a VoteSignature, got {type(signature).__name__}")

    validate_topic_id(topic_id, max_topic_length)
    path_elements, path_indices = _check_path(path, depth)

    record = ProofInputRecord(
        merkle_root=validate_field_element(merkle_root, "Merkle root"),
        topic_id=topic_hash(topic_id, max_topic_length),
        message_hash=message_hash_to_field(signature.message_hash),
        voter_address=address_to_field(voter_address),
        path_elements=path_elements,
        path_indices=path_indices,
        sig_r=scalar_to_limbs(signature.r, "Signature r"),
        sig_s=scalar_to_limbs(signature.s, "Signature s"),
        sig_v=validate_recovery_id(signature.v),
    )

    logger.debug(
        f"Assembled proof input depth={depth} synthetic={isinstance(path, SyntheticPath)}")
    return record


@dataclass(frozen=True)
class PublicSignals:
    """Public outputs in the fixed order [nullifier, merkleRoot, topicIdHash, messageHash]"""
    nullifier: int
    merkle_root: int
    topic_id_hash: int
    message_hash: int

    @classmethod
    def from_list(cls, values: Sequence[Union[int, str]]) -> 'PublicSignals':
        if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
            raise MalformedInput("Public signals must be a list")
        if len(values) != PUBLIC_SIGNAL_COUNT:
            raise ShapeMismatch(
                f"Expected {PUBLIC_SIGNAL_COUNT} public signals, got {len(values)}")
        return cls(
            nullifier=validate_field_element(
                values[PUBLIC_SIGNAL_NULLIFIER], "Nullifier"),
            merkle_root=validate_field_element(
                values[PUBLIC_SIGNAL_MERKLE_ROOT], "Merkle root"),
            topic_id_hash=validate_field_element(
                values[PUBLIC_SIGNAL_TOPIC_ID], "Topic ID hash"),
            message_hash=validate_field_element(
                values[PUBLIC_SIGNAL_MESSAGE_HASH], "Message hash"),
        )

    def to_list(self) -> List[str]:
        return [str(self.nullifier), str(self.merkle_root),
                str(self.topic_id_hash), str(self.message_hash)]

    def matches(self, record: ProofInputRecord) -> bool:
        """True if the outputs are bound to the same root, topic and message"""
        return (self.merkle_root == record.merkle_root and
                self.topic_id_hash == record.topic_id and
                self.message_hash == record.message_hash)
