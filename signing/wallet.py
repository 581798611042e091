"""
Local signing collaborator backed by libsecp256k1 (coincurve).

Signatures are RFC 6979 deterministic with low-s normalization, so the same
key and the same vote always yield the same (r, s, v).
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from coincurve import PrivateKey

from zk.errors import MalformedInput
from zk.field import SECP256K1_ORDER

from .eip712 import Domain, VoteSignature, public_key_to_address, typed_data_hash

logger = logging.getLogger(__name__)

MAX_GENERATED_ACCOUNTS = 1000


class LocalWallet:
    """secp256k1 key able to sign vote typed data"""

    def __init__(self, private_key: Union[str, bytes]):
        secret = self._parse_key(private_key)
        self._key = PrivateKey(secret)
        self.address = public_key_to_address(self._key.public_key)

    @staticmethod
    def _parse_key(private_key: Union[str, bytes]) -> bytes:
        if isinstance(private_key, str):
            text = private_key[2:] if private_key.startswith('0x') else private_key
            try:
                secret = bytes.fromhex(text)
            except ValueError:
                raise MalformedInput("Private key is not valid hex")
        elif isinstance(private_key, (bytes, bytearray)):
            secret = bytes(private_key)
        else:
            raise MalformedInput(
                f"Private key must be hex or bytes, got {type(private_key).__name__}")

        if len(secret) != 32:
            raise MalformedInput(f"Private key must be 32 bytes, got {len(secret)}")
        if not 0 < int.from_bytes(secret, 'big') < SECP256K1_ORDER:
            raise MalformedInput("Private key outside the secp256k1 scalar range")
        return secret

    @classmethod
    def create_random(cls) -> 'LocalWallet':
        return cls(PrivateKey().secret)

    @property
    def private_key(self) -> str:
        return '0x' + self._key.secret.hex()

    def sign_digest(self, digest: bytes) -> VoteSignature:
        if len(digest) != 32:
            raise MalformedInput(f"Digest must be 32 bytes, got {len(digest)}")
        compact = self._key.sign_recoverable(digest, hasher=None)
        return VoteSignature(
            r=int.from_bytes(compact[:32], 'big'),
            s=int.from_bytes(compact[32:64], 'big'),
            v=27 + compact[64],
            message_hash=bytes(digest),
        )

    def sign_typed_data(self, domain: Domain, message: Mapping[str, str]) -> VoteSignature:
        return self.sign_digest(typed_data_hash(domain, message))

    def __repr__(self) -> str:
        return f"LocalWallet(address={self.address})"


def generate_voter_accounts(count: int) -> List[Dict[str, Any]]:
    """Fresh random accounts as {index, address, privateKey} records"""
    if isinstance(count, bool) or not isinstance(count, int):
        raise MalformedInput("Account count must be an integer")
    if count <= 0:
        raise MalformedInput("Account count must be positive")
    if count > MAX_GENERATED_ACCOUNTS:
        raise MalformedInput(
            f"Account count cannot exceed {MAX_GENERATED_ACCOUNTS}")

    accounts = []
    for i in range(count):
        wallet = LocalWallet.create_random()
        accounts.append({
            'index': i,
            'address': wallet.address,
            'privateKey': wallet.private_key,
        })

    logger.info(f"Generated {count} voter accounts")
    return accounts


def wallet_from_record(record: Mapping[str, Any]) -> LocalWallet:
    key: Optional[str] = record.get('privateKey') if isinstance(record, Mapping) else None
    if not key:
        raise MalformedInput("Account record is missing privateKey")
    return LocalWallet(key)
