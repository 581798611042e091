"""
Vote Signing Protocol

Deterministic, domain-separated EIP-712 signing of a per-topic vote. The
signed message body is topic-invariant ({"topic": topic_id}); the topic is
bound into the domain salt, so a signature (and the nullifier derived from it)
never transfers from one topic to another.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from Crypto.Hash import keccak
from coincurve import PublicKey

from zk.errors import MalformedInput, SigningFailure
from zk.field import (normalize_address, validate_ecdsa_scalar,
                      validate_recovery_id)

logger = logging.getLogger(__name__)

DOMAIN_NAME = 'ZKVoting'
DOMAIN_VERSION = '1'
DEFAULT_CHAIN_ID = 1
ZERO_ADDRESS = '0x' + '00' * 20

CHAIN_ID_ENV = 'VOTING_CHAIN_ID'
VERIFYING_CONTRACT_ENV = 'VOTING_VERIFYING_CONTRACT'

MAX_TOPIC_ID_LENGTH = 64
TOPIC_ID_PATTERN = re.compile(r'[A-Za-z0-9_-]+')

MAX_VOTE_MESSAGE_LENGTH = 500
VOTE_MESSAGE_PATTERN = re.compile(r'[\x20-\x7E]*')

EIP712_DOMAIN_TYPE = (
    'EIP712Domain(string name,string version,uint256 chainId,'
    'address verifyingContract,bytes32 salt)'
)

VOTE_TYPES = {
    'Vote': [
        {'name': 'topic', 'type': 'string'}
    ]
}
VOTE_TYPE = 'Vote(string topic)'


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=bytes(data)).digest()


def validate_topic_id(topic_id: str, max_length: int = MAX_TOPIC_ID_LENGTH) -> str:
    if not isinstance(topic_id, str):
        raise MalformedInput(
            f"Topic ID must be a string, received {type(topic_id).__name__}")
    if len(topic_id) == 0:
        raise MalformedInput("Topic ID cannot be empty")
    if len(topic_id) > max_length:
        raise MalformedInput(
            f"Topic ID exceeds maximum length of {max_length} characters (received {len(topic_id)})")
    if not TOPIC_ID_PATTERN.fullmatch(topic_id):
        raise MalformedInput(
            "Topic ID contains invalid characters (alphanumeric, underscore, dash only)")
    return topic_id


def validate_vote_message(message: str) -> str:
    if not isinstance(message, str):
        raise MalformedInput(
            f"Vote message must be a string, received {type(message).__name__}")
    if len(message) == 0:
        raise MalformedInput("Vote message cannot be empty")
    if len(message) > MAX_VOTE_MESSAGE_LENGTH:
        raise MalformedInput(
            f"Vote message exceeds maximum length of {MAX_VOTE_MESSAGE_LENGTH} characters (received {len(message)})")
    if not VOTE_MESSAGE_PATTERN.fullmatch(message):
        raise MalformedInput(
            "Vote message contains invalid characters (ASCII printable characters only)")
    return message


def topic_salt(topic_id: str) -> bytes:
    """keccak256 of the UTF-8 topic id"""
    return keccak256(topic_id.encode('utf-8'))


@dataclass(frozen=True)
class Domain:
    """EIP-712 domain descriptor"""
    name: str
    version: str
    chain_id: int
    verifying_contract: str
    salt: bytes

    def as_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'version': self.version,
            'chainId': self.chain_id,
            'verifyingContract': self.verifying_contract,
            'salt': '0x' + self.salt.hex(),
        }


@dataclass(frozen=True)
class VoteSignature:
    """Signature split into scalar components plus the signed typed-data hash"""
    r: int
    s: int
    v: int
    message_hash: bytes

    def to_bytes(self) -> bytes:
        return (self.r.to_bytes(32, 'big') + self.s.to_bytes(32, 'big') +
                bytes([self.v]))


def _resolve_chain_id(chain_id: Optional[int]) -> int:
    if chain_id is None:
        raw = os.environ.get(CHAIN_ID_ENV)
        if raw is None:
            return DEFAULT_CHAIN_ID
        try:
            chain_id = int(raw)
        except ValueError:
            raise MalformedInput(f"{CHAIN_ID_ENV} must be an integer, got {raw!r}")
    if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0:
        raise MalformedInput(f"Chain ID must be a positive integer, got {chain_id!r}")
    return chain_id


def _resolve_contract(verifying_contract: Optional[str]) -> str:
    if verifying_contract is None:
        verifying_contract = os.environ.get(VERIFYING_CONTRACT_ENV, ZERO_ADDRESS)
    return normalize_address(verifying_contract)


def create_domain(topic_id: str, chain_id: Optional[int] = None,
                  verifying_contract: Optional[str] = None,
                  max_topic_length: int = MAX_TOPIC_ID_LENGTH) -> Domain:
    validate_topic_id(topic_id, max_topic_length)
    return Domain(
        name=DOMAIN_NAME,
        version=DOMAIN_VERSION,
        chain_id=_resolve_chain_id(chain_id),
        verifying_contract=_resolve_contract(verifying_contract),
        salt=topic_salt(topic_id),
    )


def create_vote_message(topic_id: str) -> Dict[str, str]:
    return {'topic': topic_id}


def domain_separator(domain: Domain) -> bytes:
    contract = bytes.fromhex(domain.verifying_contract[2:])
    return keccak256(
        keccak256(EIP712_DOMAIN_TYPE.encode()) +
        keccak256(domain.name.encode('utf-8')) +
        keccak256(domain.version.encode('utf-8')) +
        domain.chain_id.to_bytes(32, 'big') +
        contract.rjust(32, b'\x00') +
        domain.salt
    )


def vote_struct_hash(message: Mapping[str, str]) -> bytes:
    topic = message.get('topic') if isinstance(message, Mapping) else None
    if not isinstance(topic, str):
        raise MalformedInput("Vote message requires a string 'topic' field")
    return keccak256(keccak256(VOTE_TYPE.encode()) +
                     keccak256(topic.encode('utf-8')))


def typed_data_hash(domain: Domain, message: Mapping[str, str]) -> bytes:
    """EIP-712 digest: keccak256(0x1901 || domainSeparator || structHash)"""
    return keccak256(b'\x19\x01' + domain_separator(domain) +
                     vote_struct_hash(message))


def sign_vote(wallet, topic_id: str, chain_id: Optional[int] = None,
              verifying_contract: Optional[str] = None,
              max_topic_length: int = MAX_TOPIC_ID_LENGTH) -> VoteSignature:
    """
    Sign the vote for topic_id through the signing collaborator.

    The collaborator must expose sign_typed_data(domain, message) returning a
    VoteSignature (or a mapping with r, s, v and messageHash). The same wallet
    and topic always produce the same signature.
    """
    domain = create_domain(topic_id, chain_id, verifying_contract, max_topic_length)
    message = create_vote_message(topic_id)

    try:
        raw = wallet.sign_typed_data(domain, message)
    except Exception as e:
        raise SigningFailure(f"Signing collaborator failed: {e}") from e

    signature = _coerce_signature(raw)

    expected = typed_data_hash(domain, message)
    if signature.message_hash != expected:
        raise SigningFailure("Signed message hash does not match the vote typed data")

    return signature


def _component_int(value: Union[int, str]) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith('0x') else int(value, 10)
    return int(value)


def _coerce_signature(raw: Union[VoteSignature, Mapping[str, Any]]) -> VoteSignature:
    if isinstance(raw, VoteSignature):
        return raw
    if not isinstance(raw, Mapping):
        raise SigningFailure(
            f"Signing collaborator returned {type(raw).__name__}, expected a signature")
    try:
        message_hash = raw.get('messageHash', raw.get('message_hash'))
        if isinstance(message_hash, str):
            message_hash = bytes.fromhex(message_hash[2:] if message_hash.startswith('0x')
                                         else message_hash)
        return VoteSignature(
            r=_component_int(raw['r']),
            s=_component_int(raw['s']),
            v=_component_int(raw['v']),
            message_hash=bytes(message_hash),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SigningFailure(f"Malformed signature from collaborator: {e}") from e


def signature_to_field_elements(signature: Union[VoteSignature, Mapping[str, Any]]) -> Dict[str, str]:
    """Decimal-string form of (r, s, v) as handed to the circuit"""
    if isinstance(signature, VoteSignature):
        components = {'r': signature.r, 's': signature.s, 'v': signature.v}
    elif isinstance(signature, Mapping):
        components = {k: signature.get(k) for k in ('r', 's', 'v')}
    else:
        raise MalformedInput(
            f"Signature must be a VoteSignature or mapping, got {type(signature).__name__}")

    for name, value in components.items():
        if value is None or value == '':
            raise MalformedInput(f"Signature component {name} is required")

    return {
        'r': str(validate_ecdsa_scalar(components['r'], "Signature r")),
        's': str(validate_ecdsa_scalar(components['s'], "Signature s")),
        'v': str(validate_recovery_id(components['v'])),
    }


def public_key_to_address(public_key: PublicKey) -> str:
    digest = keccak256(public_key.format(compressed=False)[1:])
    return checksum_address('0x' + digest[-20:].hex())


def checksum_address(address: str) -> str:
    """EIP-55 mixed-case form"""
    lowered = normalize_address(address)[2:]
    digest = keccak256(lowered.encode('ascii')).hex()
    return '0x' + ''.join(
        c.upper() if int(digest[i], 16) >= 8 else c
        for i, c in enumerate(lowered)
    )


def recover_signer(topic_id: str, signature: VoteSignature,
                   chain_id: Optional[int] = None,
                   verifying_contract: Optional[str] = None,
                   max_topic_length: int = MAX_TOPIC_ID_LENGTH) -> str:
    """Address whose key produced signature over the vote for topic_id"""
    validate_ecdsa_scalar(signature.r, "Signature r")
    validate_ecdsa_scalar(signature.s, "Signature s")
    v = validate_recovery_id(signature.v)

    domain = create_domain(topic_id, chain_id, verifying_contract, max_topic_length)
    digest = typed_data_hash(domain, create_vote_message(topic_id))

    compact = (signature.r.to_bytes(32, 'big') + signature.s.to_bytes(32, 'big') +
               bytes([v - 27]))
    try:
        public_key = PublicKey.from_signature_and_message(compact, digest, hasher=None)
    except ValueError as e:
        raise MalformedInput(f"Signature does not recover to a public key: {e}") from e
    return public_key_to_address(public_key)
