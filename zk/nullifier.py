"""
Nullifier Engine and Registry

The nullifier is a deterministic, one-way tag per (voter, topic): it is derived
from the deterministic vote signature, so the same wallet voting twice on the
same topic reproduces the same value without storing any per-vote secret.
The proof shows the nullifier was computed correctly; the registry is what
actually enforces at-most-once voting.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Hashable, Optional, Tuple, Union

from signing.eip712 import MAX_TOPIC_ID_LENGTH, keccak256, validate_topic_id

from .errors import MalformedInput
from .field import hash_to_field, scalar_to_limbs, validate_field_element
from .poseidon import PoseidonHasher

logger = logging.getLogger(__name__)


def topic_hash(topic_id: str, max_length: int = MAX_TOPIC_ID_LENGTH) -> int:
    """Field encoding of keccak256(topic_id)"""
    validate_topic_id(topic_id, max_length)
    return hash_to_field(keccak256(topic_id.encode('utf-8')))


def message_hash_to_field(message_hash: bytes) -> int:
    return hash_to_field(message_hash)


def derive_nullifier(sig_r: Union[int, str], sig_s: Union[int, str],
                     topic_hash_value: Union[int, str], message_hash: Union[int, str],
                     hasher: PoseidonHasher) -> int:
    """
    Poseidon([r_hi, r_lo, s_hi, s_lo, topicHash, messageHash]).

    r and s are checked against the secp256k1 order and enter the hash as
    128-bit limbs, since a valid scalar may exceed the BN254 modulus.
    """
    r_hi, r_lo = scalar_to_limbs(sig_r, "Signature r")
    s_hi, s_lo = scalar_to_limbs(sig_s, "Signature s")
    topic_field = validate_field_element(topic_hash_value, "Topic ID hash")
    message_field = validate_field_element(message_hash, "Message hash")
    return hasher.hash_many([r_hi, r_lo, s_hi, s_lo, topic_field, message_field])


class RegistryDecision(Enum):
    ACCEPTED = "accepted"
    DOUBLE_VOTE = "double_vote"


class RegistryScope(Enum):
    GLOBAL = "global"
    PER_TOPIC = "per_topic"


class NullifierRegistry(ABC):
    """
    Double-vote gate. Implementations must make check_and_insert atomic: two
    racing calls with the same nullifier yield exactly one ACCEPTED.
    """

    @abstractmethod
    def check_and_insert(self, nullifier: Union[int, str],
                         topic_id: Optional[str] = None) -> RegistryDecision:
        pass

    @abstractmethod
    def contains(self, nullifier: Union[int, str], topic_id: Optional[str] = None) -> bool:
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class InMemoryNullifierRegistry(NullifierRegistry):
    """Process-local registry; production deployments need a durable store"""

    def __init__(self, scope: RegistryScope = RegistryScope.GLOBAL,
                 max_topic_length: int = MAX_TOPIC_ID_LENGTH):
        self.scope = scope
        self.max_topic_length = max_topic_length
        self._accepted: Dict[Hashable, float] = {}  # key -> acceptance time
        self._lock = threading.Lock()

    def _key(self, nullifier: Union[int, str], topic_id: Optional[str]) -> Hashable:
        value = validate_field_element(nullifier, "Nullifier")
        if self.scope == RegistryScope.PER_TOPIC:
            if topic_id is None:
                raise MalformedInput("Per-topic registry requires a topic id")
            return (validate_topic_id(topic_id, self.max_topic_length), value)
        return value

    def check_and_insert(self, nullifier: Union[int, str],
                         topic_id: Optional[str] = None) -> RegistryDecision:
        key = self._key(nullifier, topic_id)
        with self._lock:
            if key in self._accepted:
                logger.warning(f"Double vote detected for nullifier {nullifier}")
                return RegistryDecision.DOUBLE_VOTE
            self._accepted[key] = time.time()

        logger.info(f"Nullifier registered: {nullifier}")
        return RegistryDecision.ACCEPTED

    def contains(self, nullifier: Union[int, str], topic_id: Optional[str] = None) -> bool:
        key = self._key(nullifier, topic_id)
        with self._lock:
            return key in self._accepted

    def accepted_at(self, nullifier: Union[int, str],
                    topic_id: Optional[str] = None) -> Optional[float]:
        key = self._key(nullifier, topic_id)
        with self._lock:
            return self._accepted.get(key)

    def snapshot(self) -> Tuple[Hashable, ...]:
        with self._lock:
            return tuple(self._accepted)

    def __len__(self) -> int:
        with self._lock:
            return len(self._accepted)
