"""
Artifact files exchanged with publishers and provers: the voter set, the
published tree and proof files.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .assembler import PublicSignals
from .errors import MalformedInput
from .field import address_to_field, normalize_address, validate_field_element
from .merkle import PADDING_LEAF, MerkleTree, check_depth
from .poseidon import PoseidonHasher
from .prover import ProofResult

logger = logging.getLogger(__name__)

TREE_REQUIRED_FIELDS = ('root', 'depth', 'leafCount', 'tree', 'leaves')
PROOF_FILE_REQUIRED_FIELDS = ('proof', 'publicSignals')


def read_json_file(path: Union[str, Path], required_fields: Sequence[str] = (),
                   is_array: bool = False, non_empty: bool = False) -> Any:
    """Read a JSON file and check its basic shape"""
    path = Path(path)
    if not path.exists():
        raise MalformedInput(f"File not found: {path}")

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except ValueError as e:
        raise MalformedInput(f"Failed to parse JSON file {path.name}: {e}") from e

    if is_array and not isinstance(data, list):
        raise MalformedInput(f"Expected {path.name} to contain an array")
    if required_fields:
        if not isinstance(data, dict):
            raise MalformedInput(f"Expected {path.name} to contain an object")
        for name in required_fields:
            if name not in data:
                raise MalformedInput(f"Missing required field in {path.name}: {name}")
    if non_empty and isinstance(data, list) and len(data) == 0:
        raise MalformedInput(f"Expected {path.name} to be a non-empty array")

    return data


def write_json_file(path: Union[str, Path], data: Any):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)
    logger.debug(f"Wrote {path}")


def load_voter_set(path: Union[str, Path]) -> List[str]:
    """Voter addresses from a list of {address} records or bare strings"""
    records = read_json_file(path, is_array=True, non_empty=True)

    addresses = []
    for i, record in enumerate(records):
        if isinstance(record, Mapping):
            address = record.get('address')
        else:
            address = record
        if not isinstance(address, str):
            raise MalformedInput(f"Voter record {i} has no address")
        address_to_field(address)
        addresses.append(address)

    logger.info(f"Loaded {len(addresses)} voter addresses from {path}")
    return addresses


def tree_to_dict(tree: MerkleTree) -> Dict[str, Any]:
    """Publishable form; levels run leaves first, root last"""
    data = {
        'root': str(tree.root),
        'depth': tree.depth,
        'leafCount': tree.leaf_count,
        'tree': [[str(node) for node in level] for level in tree.levels],
        'leaves': [str(leaf) for leaf in tree.leaves],
    }
    if tree.addresses:
        data['addresses'] = list(tree.addresses)
    return data


def tree_from_dict(data: Mapping[str, Any], hasher: PoseidonHasher) -> MerkleTree:
    """Rebuild a tree from its published form, re-checking every level"""
    if not isinstance(data, Mapping):
        raise MalformedInput("Tree data must be an object")
    for name in TREE_REQUIRED_FIELDS:
        if name not in data:
            raise MalformedInput(f"Missing required field in tree data: {name}")

    depth = check_depth(data['depth'])
    capacity = 1 << depth

    leaf_count = data['leafCount']
    if isinstance(leaf_count, bool) or not isinstance(leaf_count, int) or \
            not 0 <= leaf_count <= capacity:
        raise MalformedInput(f"Invalid leafCount {leaf_count!r} for depth {depth}")

    raw_levels = data['tree']
    if not isinstance(raw_levels, list) or len(raw_levels) != depth + 1:
        raise MalformedInput(f"Tree must have {depth + 1} levels")

    levels: List[Tuple[int, ...]] = []
    for i, level in enumerate(raw_levels):
        expected = capacity >> i
        if not isinstance(level, list) or len(level) != expected:
            raise MalformedInput(f"Tree level {i} must have {expected} nodes")
        levels.append(tuple(validate_field_element(node, f"Tree node {i}")
                            for node in level))

    leaves = tuple(validate_field_element(leaf, "Leaf") for leaf in data['leaves'])
    if leaves != levels[0]:
        raise MalformedInput("Leaves do not match the first tree level")
    if any(leaf != PADDING_LEAF for leaf in leaves[leaf_count:]):
        raise MalformedInput("Leaves past leafCount must be padding")

    for i in range(depth):
        below = levels[i]
        recomputed = tuple(hasher.hash2(below[j], below[j + 1])
                           for j in range(0, len(below), 2))
        if recomputed != levels[i + 1]:
            raise MalformedInput(f"Tree level {i + 1} does not hash from level {i}")

    if validate_field_element(data['root'], "Merkle root") != levels[-1][0]:
        raise MalformedInput("Root does not match the top tree level")

    addresses: Tuple[str, ...] = ()
    raw_addresses: Optional[Sequence[str]] = data.get('addresses')
    if raw_addresses is not None:
        if len(raw_addresses) != leaf_count:
            raise MalformedInput("Address list does not match leafCount")
        for i, address in enumerate(raw_addresses):
            if address_to_field(address) != leaves[i]:
                raise MalformedInput(f"Address {i} does not match its leaf")
        addresses = tuple(normalize_address(a) for a in raw_addresses)

    return MerkleTree(depth=depth, levels=tuple(levels), leaf_count=leaf_count,
                      addresses=addresses)


def proof_file_to_dict(result: ProofResult,
                       metadata: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    return {
        'proof': result.proof,
        'publicSignals': result.public_signals.to_list(),
        'metadata': dict(metadata or {}),
    }


def load_proof_file(path: Union[str, Path]) -> Tuple[Dict[str, Any], PublicSignals, Dict[str, Any]]:
    """(proof, public signals, metadata) from a saved proof file"""
    data = read_json_file(path, required_fields=PROOF_FILE_REQUIRED_FIELDS)
    if not isinstance(data['proof'], dict):
        raise MalformedInput("Proof must be an object")
    metadata = data.get('metadata') or {}
    return data['proof'], PublicSignals.from_list(data['publicSignals']), metadata
