"""
Merkle Engine

Fixed-depth binary Poseidon tree over the eligible-voter set. Leaves are the
field encodings of voter addresses, padded on the right to 2^depth with a
sentinel. The tree is immutable: changing the voter set means building and
publishing a new root.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

from .errors import (CapacityExceeded, DuplicateEntry, IndexOutOfRange,
                     MalformedInput, ShapeMismatch)
from .field import address_to_field, normalize_address, validate_field_element
from .poseidon import PoseidonHasher

logger = logging.getLogger(__name__)

DEFAULT_TREE_DEPTH = 7  # 128 leaves
MAX_TREE_DEPTH = 32

# Greater than any 20-byte address value and still below the field modulus
PADDING_LEAF = 1 << 160


def check_depth(depth: int) -> int:
    if isinstance(depth, bool) or not isinstance(depth, int):
        raise MalformedInput(f"Tree depth must be an integer, got {depth!r}")
    if not 1 <= depth <= MAX_TREE_DEPTH:
        raise MalformedInput(
            f"Tree depth must be between 1 and {MAX_TREE_DEPTH}, got {depth}")
    return depth


@dataclass(frozen=True)
class MerkleProof:
    """Authentication path from one leaf to the root"""
    siblings: Tuple[int, ...]
    path_indices: Tuple[int, ...]
    leaf_index: Optional[int] = None

    @property
    def depth(self) -> int:
        return len(self.siblings)


@dataclass(frozen=True)
class MerkleTree:
    """Immutable tree; levels[0] holds the padded leaves, levels[-1] the root"""
    depth: int
    levels: Tuple[Tuple[int, ...], ...]
    leaf_count: int
    addresses: Tuple[str, ...] = ()

    @property
    def root(self) -> int:
        return self.levels[-1][0]

    @property
    def leaves(self) -> Tuple[int, ...]:
        return self.levels[0]

    @property
    def capacity(self) -> int:
        return 1 << self.depth

    def index_of(self, address: str) -> Optional[int]:
        """Leaf index of a voter address, None if not eligible"""
        canonical = normalize_address(address)
        for i, member in enumerate(self.addresses):
            if member == canonical:
                return i
        return None


@dataclass(frozen=True)
class RealPath:
    """Membership path of an eligible voter"""
    proof: MerkleProof

    @property
    def siblings(self) -> Tuple[int, ...]:
        return self.proof.siblings

    @property
    def path_indices(self) -> Tuple[int, ...]:
        return self.proof.path_indices


@dataclass(frozen=True)
class SyntheticPath:
    """Sentinel-filled path used when the voter is not in the tree"""
    depth: int

    @property
    def siblings(self) -> Tuple[int, ...]:
        return (PADDING_LEAF,) * self.depth

    @property
    def path_indices(self) -> Tuple[int, ...]:
        return (0,) * self.depth


MembershipPath = Union[RealPath, SyntheticPath]


def build_tree(addresses: Sequence[str], depth: int, hasher: PoseidonHasher) -> MerkleTree:
    """Build the tree over an ordered voter set"""
    check_depth(depth)
    if isinstance(addresses, str) or not isinstance(addresses, Sequence):
        raise MalformedInput("Voter set must be a sequence of addresses")

    capacity = 1 << depth
    if len(addresses) > capacity:
        raise CapacityExceeded(
            f"{len(addresses)} voters exceed tree capacity {capacity} at depth {depth}")

    seen: Dict[str, int] = {}
    canonical = []
    leaves = []
    for i, address in enumerate(addresses):
        normalized = normalize_address(address)
        if normalized in seen:
            raise DuplicateEntry(
                f"Duplicate voter {address} at indices {seen[normalized]} and {i}")
        seen[normalized] = i
        canonical.append(normalized)
        leaves.append(address_to_field(address))

    padded = leaves + [PADDING_LEAF] * (capacity - len(leaves))

    levels = [tuple(padded)]
    for _ in range(depth):
        current = levels[-1]
        levels.append(tuple(
            hasher.hash2(current[i], current[i + 1])
            for i in range(0, len(current), 2)
        ))

    tree = MerkleTree(
        depth=depth,
        levels=tuple(levels),
        leaf_count=len(leaves),
        addresses=tuple(canonical),
    )
    logger.info(
        f"Built Merkle tree depth={depth} leaves={len(leaves)}/{capacity} root={tree.root}")
    return tree


def prove(tree: MerkleTree, leaf_index: int) -> MerkleProof:
    """Authentication path for the leaf at leaf_index"""
    if isinstance(leaf_index, bool) or not isinstance(leaf_index, int):
        raise MalformedInput(f"Leaf index must be an integer, got {leaf_index!r}")
    if leaf_index < 0 or leaf_index >= len(tree.leaves):
        raise IndexOutOfRange(
            f"Leaf index {leaf_index} out of range 0..{len(tree.leaves) - 1}")

    siblings = []
    path_indices = []
    index = leaf_index
    for level in range(tree.depth):
        is_right = index % 2 == 1
        sibling_index = index - 1 if is_right else index + 1
        siblings.append(tree.levels[level][sibling_index])
        path_indices.append(1 if is_right else 0)
        index //= 2

    return MerkleProof(
        siblings=tuple(siblings),
        path_indices=tuple(path_indices),
        leaf_index=leaf_index,
    )


def compute_root(leaf: Union[int, str], siblings: Sequence, path_indices: Sequence,
                 hasher: PoseidonHasher, depth: int) -> int:
    """Fold an authentication path across all depth levels up to the root"""
    check_depth(depth)
    if len(siblings) != depth:
        raise ShapeMismatch(
            f"siblings has {len(siblings)} elements, expected {depth}")
    if len(path_indices) != depth:
        raise ShapeMismatch(
            f"pathIndices has {len(path_indices)} elements, expected {depth}")

    current = validate_field_element(leaf, "Leaf")
    for level, (sibling, bit) in enumerate(zip(siblings, path_indices)):
        if isinstance(bit, bool) or bit not in (0, 1):
            raise MalformedInput(
                f"Path index at level {level} must be 0 or 1, got {bit!r}")
        if bit == 1:
            current = hasher.hash2(sibling, current)
        else:
            current = hasher.hash2(current, sibling)
    return current


def verify(leaf: Union[int, str], proof: MerkleProof, expected_root: Union[int, str],
           hasher: PoseidonHasher, depth: int) -> bool:
    """
    Check that leaf is committed under expected_root in a tree of the given
    depth. Paths of any other length raise ShapeMismatch, so an internal node
    can never pass as a leaf.
    """
    root = validate_field_element(expected_root, "Merkle root")
    return compute_root(leaf, proof.siblings, proof.path_indices, hasher, depth) == root


def membership_path(tree: MerkleTree, address: str) -> MembershipPath:
    """Real path for members, sentinel path for everyone else"""
    index = tree.index_of(address)
    if index is None:
        logger.debug("Address not in voter set, using synthetic path")
        return SyntheticPath(depth=tree.depth)
    return RealPath(prove(tree, index))
