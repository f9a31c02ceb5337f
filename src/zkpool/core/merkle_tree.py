"""Append-only Merkle accumulator for note commitments."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from zkpool.crypto.field import require_field_element
from zkpool.exceptions import (
    InvalidLeafIndexError,
    InvalidMerkleDepthError,
    MalformedInclusionProofError,
    TreeFullError,
)
from zkpool.utils.hash import merkle_hash

MAX_MERKLE_DEPTH = 32
DEFAULT_MERKLE_DEPTH = 20
ZERO_LEAF = 0


def zero_hashes(depth: int) -> List[int]:
    """Roots of empty subtrees; ``zero_hashes(d)[i]`` is the empty subtree of height i."""
    zeros = [ZERO_LEAF]
    for _ in range(depth):
        zeros.append(merkle_hash(zeros[-1], zeros[-1]))
    return zeros


def validate_depth(depth: int) -> int:
    if not isinstance(depth, int) or not 1 <= depth <= MAX_MERKLE_DEPTH:
        raise InvalidMerkleDepthError(
            f"Tree depth must be between 1 and {MAX_MERKLE_DEPTH}, got {depth}"
        )
    return depth


def verify_inclusion(
    leaf: int,
    siblings: Sequence[int],
    positions: Sequence[int],
    claimed_root: int,
) -> bool:
    """
    Check that leaf sits under claimed_root.

    Walks from the leaf upwards, placing the running hash on the left when
    the position bit is 0 and on the right when it is 1.

    Args:
        leaf: Leaf value (commitment)
        siblings: Sibling hash at each level, leaf level first
        positions: Position bit at each level
        claimed_root: Root to compare against

    Returns:
        bool: True if the recomputed root equals claimed_root

    Raises:
        MalformedInclusionProofError: If a position bit is not 0 or 1, or
            the sibling and position vectors differ in length
    """
    if len(siblings) != len(positions):
        raise MalformedInclusionProofError(
            f"{len(siblings)} siblings but {len(positions)} position bits"
        )

    current = leaf
    for level, (sibling, bit) in enumerate(zip(siblings, positions)):
        if bit not in (0, 1) or isinstance(bit, bool):
            raise MalformedInclusionProofError(f"Position bit at level {level} is not binary")
        if bit == 0:
            current = merkle_hash(current, sibling)
        else:
            current = merkle_hash(sibling, current)

    return current == claimed_root


@dataclass(frozen=True)
class InclusionProof:
    """Authentication path for one leaf."""

    leaf_index: int
    siblings: Tuple[int, ...]
    positions: Tuple[int, ...]

    def verify(self, leaf: int, root: int) -> bool:
        return verify_inclusion(leaf, self.siblings, self.positions, root)

    def to_dict(self) -> dict:
        return {
            "leaf_index": self.leaf_index,
            "siblings": [hex(s) for s in self.siblings],
            "positions": list(self.positions),
        }


class MerkleTree:
    """
    Fixed-depth binary Merkle tree over commitments.

    Leaves are appended in order and never modified. Unfilled leaves are
    zero, so untouched subtrees resolve to precomputed empty-subtree roots
    and only touched nodes are stored.
    """

    def __init__(self, depth: int = DEFAULT_MERKLE_DEPTH):
        """
        Initialize an empty tree.

        Args:
            depth: Number of levels above the leaves (1..32)

        Raises:
            InvalidMerkleDepthError: If depth is out of range
        """
        self.depth = validate_depth(depth)
        self.max_leaves = 2**depth
        self.leaves: List[int] = []

        # (level, position) -> hash; level 0 holds leaves
        self.nodes: Dict[Tuple[int, int], int] = {}
        self._zeros = zero_hashes(depth)
        self._root = self._zeros[depth]

    def _node(self, level: int, position: int) -> int:
        return self.nodes.get((level, position), self._zeros[level])

    def insert(self, leaf: int) -> int:
        """
        Append a commitment and return its leaf index.

        Raises:
            TreeFullError: If all 2^depth leaves are used
            InvalidFieldElementError: If leaf is not a field element
        """
        require_field_element(leaf, "leaf")
        if len(self.leaves) >= self.max_leaves:
            raise TreeFullError(f"Tree is full (max {self.max_leaves} leaves)")

        index = len(self.leaves)
        self.leaves.append(leaf)
        self.nodes[(0, index)] = leaf

        position = index
        current = leaf
        for level in range(self.depth):
            if position % 2 == 0:
                current = merkle_hash(current, self._node(level, position + 1))
            else:
                current = merkle_hash(self._node(level, position - 1), current)
            position >>= 1
            self.nodes[(level + 1, position)] = current

        self._root = current
        return index

    def root(self) -> int:
        """Current root."""
        return self._root

    def prove_inclusion(self, index: int) -> InclusionProof:
        """
        Build the authentication path for a leaf.

        Raises:
            InvalidLeafIndexError: If no leaf exists at index
        """
        if not isinstance(index, int) or index < 0 or index >= len(self.leaves):
            raise InvalidLeafIndexError(f"Invalid leaf index: {index}")

        siblings = []
        positions = []
        position = index
        for level in range(self.depth):
            siblings.append(self._node(level, position ^ 1))
            positions.append(position & 1)
            position >>= 1

        return InclusionProof(
            leaf_index=index,
            siblings=tuple(siblings),
            positions=tuple(positions),
        )

    def verify_inclusion(self, leaf: int, proof: InclusionProof, claimed_root: Optional[int] = None) -> bool:
        """Verify a path against claimed_root, or the current root if omitted."""
        if len(proof.siblings) != self.depth:
            raise MalformedInclusionProofError(
                f"Path must have exactly {self.depth} siblings"
            )
        root = self._root if claimed_root is None else claimed_root
        return proof.verify(leaf, root)

    def get_state(self) -> dict:
        """Serializable summary of the tree."""
        return {
            "depth": self.depth,
            "max_leaves": self.max_leaves,
            "num_leaves": len(self.leaves),
            "root": hex(self._root),
        }

    def __len__(self) -> int:
        return len(self.leaves)

    def __repr__(self) -> str:
        return (
            f"MerkleTree(depth={self.depth}, "
            f"leaves={len(self.leaves)}/{self.max_leaves}, "
            f"root={hex(self._root)[:18]}...)"
        )
