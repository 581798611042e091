"""
Field Codec

Canonical conversion and range validation of raw values (addresses, hash
outputs, ECDSA scalars) into the BN254 scalar field. These checks run before
any value is hashed or serialized into a proof input.
"""

import re
from typing import Tuple, Union

from .errors import MalformedInput, OutOfRange

# BN254 scalar field order
FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# secp256k1 group order
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

VALID_RECOVERY_IDS = (27, 28)

ADDRESS_BYTES = 20
ADDRESS_PATTERN = re.compile(r'0x[0-9a-fA-F]{40}')

# Canonical integer strings, matched in full
DECIMAL_PATTERN = re.compile(r'-?[0-9]+')
HEX_PATTERN = re.compile(r'-?0[xX][0-9a-fA-F]+')

# 2^253 < P, so the low 253 bits of any digest are a canonical field element
HASH_TRUNCATION_BITS = 253
_HASH_MASK = (1 << HASH_TRUNCATION_BITS) - 1

LIMB_BITS = 128
_LIMB_MASK = (1 << LIMB_BITS) - 1

IntLike = Union[int, str]


def _parse_int(value: IntLike, label: str) -> int:
    """Parse an int, canonical decimal string or 0x-prefixed hex string"""
    if isinstance(value, bool) or value is None:
        raise MalformedInput(f"{label} is not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if DECIMAL_PATTERN.fullmatch(value):
            return int(value, 10)
        if HEX_PATTERN.fullmatch(value):
            return int(value, 16)
        raise MalformedInput(f"{label} is not a valid integer: {value!r}")
    raise MalformedInput(
        f"{label} must be an int or numeric string, got {type(value).__name__}")


def validate_field_element(value: IntLike, label: str = "value") -> int:
    """Return value as int if 0 <= value < P"""
    parsed = _parse_int(value, label)
    if parsed < 0:
        raise OutOfRange(f"{label} must be non-negative, got {parsed}")
    if parsed >= FIELD_MODULUS:
        raise OutOfRange(f"{label} exceeds BN254 field order")
    return parsed


def validate_ecdsa_scalar(value: IntLike, label: str = "scalar") -> int:
    """Return value as int if 0 < value < N (secp256k1)"""
    parsed = _parse_int(value, label)
    if parsed <= 0:
        raise OutOfRange(f"{label} must be positive, got {parsed}")
    if parsed >= SECP256K1_ORDER:
        raise OutOfRange(f"{label} must be less than secp256k1 curve order")
    return parsed


def validate_recovery_id(v: IntLike) -> int:
    parsed = _parse_int(v, "Signature v")
    if parsed not in VALID_RECOVERY_IDS:
        raise MalformedInput(
            f"Invalid signature v value: must be 27 or 28, got {v}")
    return parsed


def normalize_address(address: str) -> str:
    """Lower-case canonical form of a 20-byte hex address"""
    if not isinstance(address, str):
        raise MalformedInput(
            f"Address must be a string, received {type(address).__name__}")
    if not address.startswith('0x'):
        raise MalformedInput(
            f"Address must start with 0x prefix, received: {address}")
    if not ADDRESS_PATTERN.fullmatch(address):
        raise MalformedInput(
            f"Address must be a valid 20-byte address, received: {address}")
    return address.lower()


def address_to_field(address: str) -> int:
    """Map a 20-byte hex address to its integer value in the field"""
    canonical = normalize_address(address)
    # 2^160 < P always holds, the check keeps the invariant enforced uniformly
    return validate_field_element(int(canonical, 16), "Address")


def hash_to_field(digest: bytes) -> int:
    """Map a 32-byte hash output into the field by keeping its low 253 bits"""
    if not isinstance(digest, (bytes, bytearray)):
        raise MalformedInput(
            f"Digest must be bytes, got {type(digest).__name__}")
    if len(digest) != 32:
        raise MalformedInput(f"Digest must be 32 bytes, got {len(digest)}")
    return validate_field_element(
        int.from_bytes(digest, 'big') & _HASH_MASK, "Digest")


def scalar_to_limbs(value: IntLike, label: str = "scalar") -> Tuple[int, int]:
    """Split a validated ECDSA scalar into (hi, lo) 128-bit limbs"""
    scalar = validate_ecdsa_scalar(value, label)
    return scalar >> LIMB_BITS, scalar & _LIMB_MASK


def limbs_to_scalar(hi: IntLike, lo: IntLike, label: str = "scalar") -> int:
    hi_int = validate_field_element(hi, f"{label} high limb")
    lo_int = validate_field_element(lo, f"{label} low limb")
    if hi_int > _LIMB_MASK or lo_int > _LIMB_MASK:
        raise OutOfRange(f"{label} limbs must fit in {LIMB_BITS} bits")
    return validate_ecdsa_scalar((hi_int << LIMB_BITS) | lo_int, label)
